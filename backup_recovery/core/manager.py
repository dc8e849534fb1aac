"""
Backup Manager

Main orchestration class for backup, restore and verify runs. Wires the
catalog resolver, fan-out scheduler, transfer pipeline, restore engine and
verify engine to injected storage, credential, object store and metrics
collaborators.
"""

import functools
import logging
from typing import List, Optional

from ..config import BackupRecoveryConfig
from ..models.entities import CollectionKind, PhaseReport, VerificationResult
from ..models.parameters import FilterSpec, RestoreTarget
from .base import CredentialIssuer, MetricsSink, ObjectStore, StorageService
from .catalog import CatalogResolver
from .restore import RestoreEngine
from .scheduler import FanOutScheduler
from .transfer import TransferPipeline
from .verify import VerifyEngine

logger = logging.getLogger(__name__)


class BackupManager:
    """
    Runs backup, restore and verify phases.

    This is the main entry point for all backup operations. Backups and
    restores fan out over the same bounded scheduler; verify compares two
    live tables directly.

    Example:
        ```python
        manager = BackupManager(
            storage=AzureStorageService(account_keys),
            issuer=AccountKeyCredentialIssuer(account_keys),
            object_store=S3ObjectStore(bucket="backups"),
            metrics=LoggingMetricsSink(),
            config=BackupRecoveryConfig(concurrency=20)
        )

        # Back up everything except one account
        report = await manager.run_backup(FilterSpec(ignore=NameFilter(accounts=["scratch"])))

        # Restore one table under a new name
        await manager.run_restore(tables=[RestoreTarget(name="abc/def", remap="abc/qqq")])

        # Compare the two
        result = await manager.run_verify("abc/def", "abc/qqq", diffs=True)
        ```
    """

    def __init__(
        self,
        storage: StorageService,
        issuer: CredentialIssuer,
        object_store: ObjectStore,
        metrics: MetricsSink,
        config: Optional[BackupRecoveryConfig] = None
    ):
        """
        Initialize BackupManager.

        Args:
            storage: Accounts and collections being backed up or restored
            issuer: Issues scoped credentials per collection
            object_store: Holds snapshot objects
            metrics: Receives per-collection counts and timings
            config: Runtime tunables (uses defaults if None)
        """
        self._config = config or BackupRecoveryConfig()
        self._resolver = CatalogResolver(storage)
        self._scheduler = FanOutScheduler(
            concurrency=self._config.concurrency,
            failure_policy=self._config.failure_policy,
            show_progress=self._config.show_progress
        )
        self._pipeline = TransferPipeline(storage, issuer, object_store, metrics, self._config)
        self._restore_engine = RestoreEngine(storage, issuer, object_store, self._config)
        self._verify_engine = VerifyEngine(storage, issuer, self._config)

        logger.info(f"BackupManager initialized with {self._config!r}")

    @property
    def config(self) -> BackupRecoveryConfig:
        return self._config

    async def run_backup(self, filters: Optional[FilterSpec] = None) -> PhaseReport:
        """
        Back up every collection selected by ``filters``.

        All filters are validated against discovery before the first
        transfer starts.

        Returns:
            PhaseReport whose results are TransferResult objects

        Raises:
            ConfigValidationError: If an ignore entry is outside its universe
            TransferError: If discovery or a transfer fails
        """
        filters = filters or FilterSpec()
        logger.info("Beginning backup.")
        items = await self._resolver.resolve_work_items(filters)
        tasks = [
            (f"{item.kind.value} {item.qualified_name}", functools.partial(self._pipeline.backup, item, index))
            for index, item in enumerate(items)
        ]
        report = await self._scheduler.run("backup", tasks)
        total = sum(result.item_count for result in report.results)
        logger.info(f"Backup complete: {report.completed} collections, {total} records")
        return report

    async def run_restore(
        self,
        tables: Optional[List[RestoreTarget]] = None,
        containers: Optional[List[RestoreTarget]] = None
    ) -> PhaseReport:
        """
        Restore the given tables and containers.

        Returns:
            PhaseReport whose results are RestoreResult objects

        Raises:
            ConfigValidationError: If a name or remap is malformed
            RestoreConflictError: If a destination already holds data
            IntegrityError: If a restored blob does not match its snapshot
            TransferError: If a snapshot is missing or a write fails
        """
        requests = (
            [target.to_request(CollectionKind.TABLE) for target in tables or []]
            + [target.to_request(CollectionKind.CONTAINER) for target in containers or []]
        )
        logger.info(f"Beginning restore of {len(requests)} collections.")
        tasks = [
            (f"{request.kind.value} {request.name} -> {request.target}",
             functools.partial(self._restore_engine.restore, request, index))
            for index, request in enumerate(requests)
        ]
        report = await self._scheduler.run("restore", tasks)
        total = sum(result.records_restored for result in report.results)
        logger.info(f"Restore complete: {report.completed} collections, {total} records")
        return report

    async def run_verify(self, table1: str, table2: str, diffs: bool = False) -> VerificationResult:
        """Compare two live tables by row content."""
        logger.info(f"Verifying {table1} against {table2}")
        return await self._verify_engine.verify(table1, table2, diffs)
