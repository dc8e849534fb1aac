"""
Backup Recovery Configuration

Centralized runtime tunables for backup, restore and verify phases. The
operator-facing settings (file/env driven) live in ``config.settings``; this
dataclass is the validated subset the core engines consume.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List
import logging

from .exceptions import ConfigValidationError
from .models.entities import FailurePolicy

logger = logging.getLogger(__name__)

# Service-generated fields that differ between otherwise identical rows
DEFAULT_VOLATILE_FIELDS = ["Timestamp", "etag", "odata.etag", "odata.metadata"]


@dataclass
class BackupRecoveryConfig:
    """
    Configuration for backup and recovery operations.

    Concurrency Settings:
        concurrency: Maximum collections transferred at once, shared by tables
            and containers (default: 10)
        insert_concurrency: Maximum in-flight inserts/uploads while replaying
            one snapshot (default: 50)
        failure_policy: FAIL_FAST aborts a phase on the first failure,
            CONTINUE runs every task and reports failures at the end

    Transfer Settings:
        page_size: Items requested per page (default: 1000)
        storage_class: Object storage class for snapshots (default: STANDARD_IA)
        compression_level: zstd level 1-22 (default: 3)
        credential_refresh_margin_seconds: Refresh scoped credentials this long
            before they expire (default: 300)

    Reporting Settings:
        heartbeat_interval: Log restore progress every N records (default: 1000)
        show_progress: Show a progress bar per phase
        volatile_fields: Row fields stripped before verify hashing

    Example:
        ```python
        config = BackupRecoveryConfig(concurrency=20, page_size=500)
        manager = BackupManager(storage, issuer, object_store, config=config)
        ```
    """

    # Concurrency Settings
    concurrency: int = 10
    insert_concurrency: int = 50
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST

    # Transfer Settings
    page_size: int = 1000
    storage_class: str = "STANDARD_IA"
    compression_level: int = 3
    credential_refresh_margin_seconds: float = 300.0

    # Reporting Settings
    heartbeat_interval: int = 1000
    show_progress: bool = False
    volatile_fields: List[str] = field(default_factory=lambda: list(DEFAULT_VOLATILE_FIELDS))

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.failure_policy, str):
            self.failure_policy = FailurePolicy(self.failure_policy)
        self.validate()

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ConfigValidationError: If any configuration parameter is invalid
        """
        if not isinstance(self.concurrency, int) or self.concurrency <= 0:
            raise ConfigValidationError(f"concurrency must be a positive integer, got {self.concurrency!r}")
        if self.concurrency > 100:
            logger.warning(f"High concurrency ({self.concurrency}) keeps many network streams open")

        if self.insert_concurrency <= 0:
            raise ConfigValidationError("insert_concurrency must be positive")

        if self.page_size <= 0:
            raise ConfigValidationError("page_size must be positive")

        if not 1 <= self.compression_level <= 22:
            raise ConfigValidationError("compression_level must be between 1 and 22")

        if self.credential_refresh_margin_seconds < 0:
            raise ConfigValidationError("credential_refresh_margin_seconds cannot be negative")

        if self.heartbeat_interval <= 0:
            raise ConfigValidationError("heartbeat_interval must be positive")

        if not self.storage_class:
            raise ConfigValidationError("storage_class must be set")

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'BackupRecoveryConfig':
        """
        Create configuration from a dictionary.

        Args:
            config_dict: Dictionary containing configuration parameters

        Returns:
            BackupRecoveryConfig instance
        """
        known = {name for name in cls.__dataclass_fields__}
        unknown = sorted(set(config_dict) - known)
        if unknown:
            raise ConfigValidationError(f"Unknown configuration keys: {unknown}", invalid_names=unknown)
        return cls(**config_dict)

    @classmethod
    def from_settings(cls, settings) -> 'BackupRecoveryConfig':
        """
        Build the runtime configuration from operator settings.

        Args:
            settings: A ``config.settings.BackupSettings`` instance
        """
        return cls(
            concurrency=settings.concurrency,
            insert_concurrency=settings.insert_concurrency,
            failure_policy=settings.failure_policy,
            page_size=settings.page_size,
            storage_class=settings.s3.storage_class,
            compression_level=settings.compression_level,
            credential_refresh_margin_seconds=settings.azure.refresh_margin_seconds,
            heartbeat_interval=settings.heartbeat_interval,
            show_progress=settings.show_progress,
            volatile_fields=list(settings.verify.volatile_fields),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary with enum values as strings."""
        result = asdict(self)
        result['failure_policy'] = self.failure_policy.value
        return result

    def __repr__(self) -> str:
        """String representation of configuration."""
        return (
            f"BackupRecoveryConfig("
            f"concurrency={self.concurrency}, "
            f"page_size={self.page_size}, "
            f"storage_class={self.storage_class}, "
            f"failure_policy={self.failure_policy.value}"
            f")"
        )
