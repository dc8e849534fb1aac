"""
Logging Metrics Sink

Keeps per-collection record counts and operation timings in memory and logs
each one as it is recorded. Used as the default sink and by the test suite.
"""

import logging
import statistics
import time
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field

from backup_recovery.core.base import MetricsSink

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TimingResult(BaseModel):
    """
    Result of a timed operation.

    Attributes:
        operation_name: Name the timing was recorded under
        execution_time: Time taken in seconds
        timestamp: When the operation finished
        success: Whether the operation completed without raising
    """
    operation_name: str
    execution_time: float = Field(description="Execution time in seconds")
    timestamp: datetime = Field(default_factory=datetime.now)
    success: bool = True


class TimingSummary(BaseModel):
    """Aggregated timings recorded under one name."""
    operation_name: str
    total_operations: int = 0
    failed_operations: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    max_execution_time: float = 0.0


class LoggingMetricsSink(MetricsSink):
    """
    Metrics sink that logs and remembers everything it receives.

    Example:
        ```python
        metrics = LoggingMetricsSink()
        manager = BackupManager(storage, issuer, object_store, metrics)
        await manager.run_backup()
        print(metrics.counts["abc.def.entities"])
        ```

    Attributes:
        counts: name -> last value counted under that name
        timings: Every timing recorded, in completion order
    """

    def __init__(self, log_level: int = logging.INFO):
        self._log_level = log_level
        self.counts: Dict[str, int] = {}
        self.timings: List[TimingResult] = []

    def count(self, name: str, value: int) -> None:
        self.counts[name] = value
        logger.log(self._log_level, f"count {name}={value}")

    async def timer(self, name: str, operation: Awaitable[T]) -> T:
        start_time = time.time()
        success = False
        try:
            result = await operation
            success = True
            return result
        finally:
            elapsed = time.time() - start_time
            self.timings.append(TimingResult(operation_name=name, execution_time=elapsed, success=success))
            status = "succeeded" if success else "failed"
            logger.log(self._log_level, f"timer {name} {status} in {elapsed * 1000:.2f}ms")

    def get_timing_summary(self, name: str) -> Optional[TimingSummary]:
        """Aggregate the timings recorded under ``name``, or None if there are none."""
        results = [r for r in self.timings if r.operation_name == name]
        if not results:
            return None
        times = [r.execution_time for r in results]
        return TimingSummary(
            operation_name=name,
            total_operations=len(results),
            failed_operations=sum(1 for r in results if not r.success),
            total_execution_time=sum(times),
            average_execution_time=statistics.mean(times),
            max_execution_time=max(times)
        )

    def get_summary(self) -> Dict[str, Any]:
        """Counts plus aggregated timings for every name seen."""
        names = sorted(set(r.operation_name for r in self.timings))
        return {
            "counts": dict(self.counts),
            "timings": {name: self.get_timing_summary(name) for name in names}
        }

    def clear(self) -> None:
        self.counts.clear()
        self.timings.clear()
