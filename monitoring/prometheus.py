"""
Prometheus Metrics Sink

Exposes backup counts and timings as Prometheus metrics on a private
registry and pushes them to a Pushgateway once a run is over. Metric names
carry dots and collection names, so they are recorded as the ``name`` label
of a small fixed set of metric families.
"""

import logging
import time
from typing import Awaitable, Optional, TypeVar

from prometheus_client import CollectorRegistry, Counter, Gauge, push_to_gateway

from backup_recovery.core.base import MetricsSink

logger = logging.getLogger(__name__)

T = TypeVar('T')


class PrometheusMetricsSink(MetricsSink):
    """
    Metrics sink backed by prometheus-client.

    Example:
        ```python
        metrics = PrometheusMetricsSink(
            pushgateway_url="pushgateway:9091",
            job_name="storage-backups"
        )
        await BackupManager(storage, issuer, object_store, metrics).run_backup()
        metrics.push()
        ```
    """

    def __init__(
        self,
        pushgateway_url: Optional[str] = None,
        job_name: str = "storage-backups",
        namespace: str = "storage_backups",
        registry: Optional[CollectorRegistry] = None
    ):
        self.pushgateway_url = pushgateway_url
        self.job_name = job_name
        self.registry = registry or CollectorRegistry()

        self._records = Gauge(
            "records",
            "Records written by the last operation on a collection",
            ["name"],
            namespace=namespace,
            registry=self.registry
        )
        self._duration = Gauge(
            "operation_duration_seconds",
            "Wall time of the last operation recorded under a name",
            ["name"],
            namespace=namespace,
            registry=self.registry
        )
        self._failures = Counter(
            "operation_failures",
            "Timed operations that raised",
            ["name"],
            namespace=namespace,
            registry=self.registry
        )
        self._last_success = Gauge(
            "last_success_timestamp_seconds",
            "Unix time the last successful operation under a name finished",
            ["name"],
            namespace=namespace,
            registry=self.registry
        )

    @classmethod
    def from_settings(cls, monitoring_settings) -> "PrometheusMetricsSink":
        """Build from ``config.settings.MonitoringSettings``."""
        return cls(
            pushgateway_url=monitoring_settings.pushgateway_url,
            job_name=monitoring_settings.job_name
        )

    def count(self, name: str, value: int) -> None:
        self._records.labels(name=name).set(value)

    async def timer(self, name: str, operation: Awaitable[T]) -> T:
        start_time = time.time()
        try:
            result = await operation
        except Exception:
            self._failures.labels(name=name).inc()
            raise
        finally:
            self._duration.labels(name=name).set(time.time() - start_time)
        self._last_success.labels(name=name).set_to_current_time()
        return result

    def push(self) -> None:
        """
        Push the registry to the configured Pushgateway.

        Does nothing when no Pushgateway URL is configured.
        """
        if not self.pushgateway_url:
            logger.debug("No pushgateway configured, skipping metrics push")
            return
        push_to_gateway(self.pushgateway_url, job=self.job_name, registry=self.registry)
        logger.info(f"Pushed metrics for job {self.job_name} to {self.pushgateway_url}")
