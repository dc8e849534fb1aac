"""
Command Line Interface

Entry point of the ``storage-backups`` command:

    storage-backups [--config PATH] [--log-level LEVEL] backup
    storage-backups [--config PATH] [--log-level LEVEL] restore
    storage-backups [--config PATH] [--log-level LEVEL] verify [--table1 T] [--table2 T] [--diffs]
    storage-backups [--config PATH] [--log-level LEVEL] cp <source> <destination>
    storage-backups [--config PATH] show-config

Exits 0 on success and 1 on any failure, with the error message on stderr.
"""

import argparse
import asyncio
import logging
import sys
from typing import Callable, Dict, List, Optional, Tuple

from config.settings import BackupSettings, load_settings, settings_to_yaml
from monitoring.metrics import LoggingMetricsSink
from storage_clients.azure import AzureStorageService
from storage_clients.s3 import S3ObjectStore

from .config import BackupRecoveryConfig
from .core.base import MetricsSink, ObjectStore
from .core.manager import BackupManager
from .endpoints import copy, endpoint
from .exceptions import ConfigValidationError
from .models.parameters import VerifyParams

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s] - %(message)s'
NOISY_LOGGERS = ["azure", "azure.core.pipeline.policies.http_logging_policy", "botocore", "boto3", "urllib3"]


def configure_logging(level: str) -> None:
    """Configure root logging and quiet the storage SDKs."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storage-backups",
        description="Back up storage account tables and containers to S3, and restore them."
    )
    parser.add_argument("--config", help="YAML configuration file (default: environment only)")
    parser.add_argument("--log-level", help="Logging level (overrides monitoring.log_level)")

    commands = parser.add_subparsers(dest="command", metavar="command")
    commands.required = True

    commands.add_parser("backup", help="Back up every selected table and container")
    commands.add_parser("restore", help="Restore the configured tables and containers")

    verify = commands.add_parser("verify", help="Compare two tables by row content")
    verify.add_argument("--table1", help="First account/table (overrides verify.table1)")
    verify.add_argument("--table2", help="Second account/table (overrides verify.table2)")
    verify.add_argument("--diffs", action="store_true", default=None, help="Print per-row diffs")

    cp = commands.add_parser("cp", help="Copy snapshot data between endpoints")
    cp.add_argument("source", help="Source URL (file:///path.zst or s3://bucket/key)")
    cp.add_argument("destination", help="Destination URL (file:///path.zst or s3://bucket/key)")

    commands.add_parser("show-config", help="Print the effective configuration (secrets redacted)")
    return parser


def build_metrics(settings: BackupSettings) -> MetricsSink:
    """Prometheus sink when a Pushgateway is configured, logging sink otherwise."""
    if settings.monitoring.pushgateway_url:
        from monitoring.prometheus import PrometheusMetricsSink
        return PrometheusMetricsSink.from_settings(settings.monitoring)
    return LoggingMetricsSink()


def build_manager(settings: BackupSettings) -> Tuple[BackupManager, MetricsSink, List[Callable[[], None]]]:
    """
    Wire the Azure and S3 collaborators from settings.

    Returns:
        ``(manager, metrics sink, cleanup callbacks)``
    """
    if not settings.azure.accounts:
        raise ConfigValidationError("No storage accounts configured (azure.accounts)")
    storage = AzureStorageService.from_settings(settings.azure)
    object_store = S3ObjectStore.from_settings(settings.s3)
    metrics = build_metrics(settings)
    manager = BackupManager(
        storage=storage,
        issuer=storage.issuer,
        object_store=object_store,
        metrics=metrics,
        config=BackupRecoveryConfig.from_settings(settings)
    )
    return manager, metrics, [storage.close, object_store.close]


def build_object_store_factory(
    settings: BackupSettings
) -> Tuple[Callable[[str], ObjectStore], Dict[str, S3ObjectStore]]:
    """
    Object store for any bucket, sharing the configured S3 connection settings.

    Returns:
        ``(factory, opened stores by bucket)``; the caller closes the opened stores
    """
    opened: Dict[str, S3ObjectStore] = {}

    def factory(bucket: str) -> ObjectStore:
        if bucket not in opened:
            opened[bucket] = S3ObjectStore.from_settings(settings.s3.model_copy(update={"bucket": bucket}))
        return opened[bucket]

    return factory, opened


async def run_backup(manager: BackupManager, settings: BackupSettings) -> None:
    await manager.run_backup(settings.filters)


async def run_restore(manager: BackupManager, settings: BackupSettings) -> None:
    await manager.run_restore(tables=settings.restore.tables, containers=settings.restore.containers)


async def run_verify(manager: BackupManager, settings: BackupSettings, args: argparse.Namespace) -> None:
    table1 = args.table1 or settings.verify.table1
    table2 = args.table2 or settings.verify.table2
    diffs = settings.verify.diffs if args.diffs is None else args.diffs
    if not table1 or not table2:
        raise ConfigValidationError("verify needs both verify.table1 and verify.table2")
    params = VerifyParams(table1=table1, table2=table2, diffs=diffs)

    result = await manager.run_verify(params.table1, params.table2, params.diffs)
    print(f"{params.table1}: {result.table1_rows} rows")
    print(f"{params.table2}: {result.table2_rows} rows")
    print(f"common: {result.common_rows}, only in {params.table1}: {result.only_in_table1}, "
          f"only in {params.table2}: {result.only_in_table2}")
    if params.diffs:
        for digest, diff in result.diffs.items():
            print(f"{digest}: {diff}")


async def run_cp(
    settings: BackupSettings,
    args: argparse.Namespace,
    factory: Callable[[str], ObjectStore]
) -> int:
    source = endpoint(args.source, factory, compression_level=settings.compression_level)
    destination = endpoint(
        args.destination,
        factory,
        storage_class=settings.s3.storage_class,
        compression_level=settings.compression_level
    )
    return await copy(source, destination)


def run_command(settings: BackupSettings, args: argparse.Namespace) -> None:
    if args.command == "show-config":
        print(settings_to_yaml(settings), end="")
        return
    if args.command == "cp":
        factory, opened = build_object_store_factory(settings)
        try:
            asyncio.run(run_cp(settings, args, factory))
        finally:
            for store in opened.values():
                store.close()
        return

    manager, metrics, cleanup = build_manager(settings)
    try:
        if args.command == "backup":
            asyncio.run(run_backup(manager, settings))
        elif args.command == "restore":
            asyncio.run(run_restore(manager, settings))
        elif args.command == "verify":
            asyncio.run(run_verify(manager, settings, args))
    finally:
        push = getattr(metrics, "push", None)
        if push is not None:
            try:
                push()
            except Exception as e:
                logger.error(f"Failed to push metrics: {e}")
        for close in cleanup:
            close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the command line.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
        configure_logging(args.log_level or settings.monitoring.log_level)
        run_command(settings, args)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(str(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
