"""
Backup and Recovery Module

Backs up storage accounts (tables and blob containers) into compressed
snapshots in an object store, restores snapshots into empty collections, and
verifies that two tables hold the same rows.

Features:
- Discovery of accounts and collections with include/ignore filters
- Streaming backup: paginate, encode as JSON lines, zstd-compress, multipart upload
- Bounded fan-out across collections with fail-fast or continue policies
- Restore with optional remap, refusing non-empty destinations
- Blob integrity check against the MD5 captured at backup time
- Row content comparison with volatile fields stripped
- Copy of snapshot data between local files and object storage

Typical usage:

    from backup_recovery import BackupManager, BackupRecoveryConfig, FilterSpec, NameFilter
    from storage_clients import AzureStorageService, S3ObjectStore
    from monitoring import LoggingMetricsSink

    storage = AzureStorageService.from_settings(settings.azure)
    manager = BackupManager(
        storage=storage,
        issuer=storage.issuer,
        object_store=S3ObjectStore(bucket="foo-backup"),
        metrics=LoggingMetricsSink(),
        config=BackupRecoveryConfig(concurrency=20)
    )
    report = await manager.run_backup(FilterSpec(ignore=NameFilter(accounts=["scratch"])))
"""

# Configuration
from .config import BackupRecoveryConfig

# Core
from .core import (
    BackupManager,
    CatalogResolver,
    TransferPipeline,
    FanOutScheduler,
    RestoreEngine,
    VerifyEngine,
    TokenProvider
)

# Endpoints
from .endpoints import endpoint, copy, FileEndpoint, ObjectStoreEndpoint

# Models
from .models import (
    CollectionKind,
    AccessLevel,
    FailurePolicy,
    WorkItem,
    RestoreRequest,
    TransferResult,
    RestoreResult,
    VerificationResult,
    PhaseReport,
    NameFilter,
    FilterSpec,
    RestoreTarget
)

# Exceptions
from .exceptions import (
    BackupRecoveryError,
    ConfigValidationError,
    TransferError,
    RestoreConflictError,
    IntegrityError,
    PhaseFailedError
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    'BackupRecoveryConfig',

    # Core
    'BackupManager',
    'CatalogResolver',
    'TransferPipeline',
    'FanOutScheduler',
    'RestoreEngine',
    'VerifyEngine',
    'TokenProvider',

    # Endpoints
    'endpoint',
    'copy',
    'FileEndpoint',
    'ObjectStoreEndpoint',

    # Models
    'CollectionKind',
    'AccessLevel',
    'FailurePolicy',
    'WorkItem',
    'RestoreRequest',
    'TransferResult',
    'RestoreResult',
    'VerificationResult',
    'PhaseReport',
    'NameFilter',
    'FilterSpec',
    'RestoreTarget',

    # Exceptions
    'BackupRecoveryError',
    'ConfigValidationError',
    'TransferError',
    'RestoreConflictError',
    'IntegrityError',
    'PhaseFailedError'
]
