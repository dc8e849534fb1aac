"""
Pydantic Settings for Storage Backup Operations

This module provides strongly-typed configuration settings using Pydantic,
with support for environment variables and YAML configuration files.
"""

from typing import Dict, Any, Optional, List, Union
from pathlib import Path
import os

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from backup_recovery.config import DEFAULT_VOLATILE_FIELDS
from backup_recovery.models.entities import FailurePolicy
from backup_recovery.models.parameters import FilterSpec, NameFilter, RestoreTarget


class RestoreSettings(BaseModel):
    """
    Snapshots to restore.

    Each entry names a snapshot source as ``account/collection`` and an
    optional ``remap`` destination in the same form.
    """
    tables: List[RestoreTarget] = Field(default_factory=list,
                                        description="Tables to restore")
    containers: List[RestoreTarget] = Field(default_factory=list,
                                            description="Containers to restore")

    @field_validator("tables", "containers", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []


class VerifySettings(BaseModel):
    """
    Table comparison settings.

    ``volatile_fields`` are stripped from every row before hashing; they are
    the fields the service rewrites on every insert.
    """
    table1: Optional[str] = Field(None, description="First account/table to compare")
    table2: Optional[str] = Field(None, description="Second account/table to compare")
    diffs: bool = Field(False, description="Print structural diffs for common rows")
    volatile_fields: List[str] = Field(default_factory=lambda: list(DEFAULT_VOLATILE_FIELDS),
                                       description="Fields ignored when hashing rows")


class S3Settings(BaseModel):
    """
    Object store settings for snapshots.

    Credentials are optional; when omitted the standard AWS credential chain
    (environment, shared credentials file, instance profile) is used.
    """
    bucket: str = Field("", description="Bucket holding snapshots")
    region: Optional[str] = Field(None, description="AWS region of the bucket")
    endpoint_url: Optional[str] = Field(None, description="Custom S3 endpoint (e.g. MinIO)")
    storage_class: str = Field("STANDARD_IA", description="Storage class for snapshot objects")
    part_size_mb: int = Field(8, description="Multipart upload part size in MiB (minimum 5)")
    access_key_id: Optional[str] = Field(None, description="Explicit access key id")
    secret_access_key: Optional[str] = Field(None, description="Explicit secret access key")
    session_token: Optional[str] = Field(None, description="Explicit session token")
    max_workers: int = Field(8, description="Threads used for blocking S3 calls")


class AzureSettings(BaseModel):
    """
    Storage account settings.

    ``accounts`` maps account name to its shared key; discovery only ever
    sees accounts listed here.
    """
    accounts: Dict[str, str] = Field(default_factory=dict,
                                     description="Account name -> shared key")
    endpoint_suffix: str = Field("core.windows.net", description="Storage endpoint suffix")
    sas_lifetime_seconds: int = Field(3600, description="Lifetime of issued SAS tokens")
    refresh_margin_seconds: float = Field(300.0,
                                          description="Refresh SAS tokens this long before expiry")
    max_workers: int = Field(16, description="Threads used for blocking storage calls")


class MonitoringSettings(BaseModel):
    """
    Logging and metrics settings.
    """
    log_level: str = Field("INFO", description="Root logging level")
    pushgateway_url: Optional[str] = Field(None,
                                           description="Prometheus Pushgateway; metrics are logged only when unset")
    job_name: str = Field("storage-backups", description="Pushgateway job name")


class BackupSettings(BaseSettings):
    """
    Main settings class consolidating every configuration category.

    Values come from (highest priority first) explicit keyword arguments,
    which is how a YAML file is applied, then ``BACKUPS_`` environment
    variables, then defaults. Nested values use ``__`` in variable names.

    Usage:
        # Load from environment variables and defaults
        settings = BackupSettings()

        # Load from YAML file
        settings = BackupSettings.from_yaml('backups.yaml')

        # Environment override of a nested value
        # BACKUPS_S3__BUCKET=my-backups
        bucket = settings.s3.bucket
    """
    include: NameFilter = Field(default_factory=NameFilter,
                                description="Accounts, tables and containers to include (empty = all)")
    ignore: NameFilter = Field(default_factory=NameFilter,
                               description="Accounts, tables and containers to skip")
    restore: RestoreSettings = Field(default_factory=RestoreSettings,
                                     description="Snapshots to restore")
    verify: VerifySettings = Field(default_factory=VerifySettings,
                                   description="Table comparison settings")
    s3: S3Settings = Field(default_factory=S3Settings, description="Snapshot object store")
    azure: AzureSettings = Field(default_factory=AzureSettings, description="Storage accounts")
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings,
                                           description="Logging and metrics")

    concurrency: int = Field(10, description="Collections transferred at once")
    insert_concurrency: int = Field(50, description="In-flight writes per restored collection")
    page_size: int = Field(1000, description="Items requested per page")
    compression_level: int = Field(3, description="zstd compression level")
    heartbeat_interval: int = Field(1000, description="Log restore progress every N records")
    failure_policy: FailurePolicy = Field(FailurePolicy.FAIL_FAST,
                                          description="fail_fast or continue")
    show_progress: bool = Field(False, description="Show a progress bar per phase")

    class Config:
        env_prefix = "BACKUPS_"
        case_sensitive = False
        env_nested_delimiter = "__"

    @property
    def filters(self) -> FilterSpec:
        """Include/ignore filters of a backup run."""
        return FilterSpec(include=self.include, ignore=self.ignore)

    @classmethod
    def from_yaml(cls, yaml_file: Union[str, Path]) -> "BackupSettings":
        """Load settings from YAML file"""
        with open(yaml_file, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)


def load_settings(config_path: Optional[str] = None) -> BackupSettings:
    """
    Load settings from file and/or environment variables.

    Args:
        config_path: Path to YAML configuration file. If None, settings come
            from environment variables and defaults only.

    Returns:
        BackupSettings object with loaded configuration

    Raises:
        FileNotFoundError: If ``config_path`` is given but does not exist

    Example:
        # Load from specific config file
        settings = load_settings("/etc/backups/config.yaml")

        # Load from environment variables and defaults
        settings = load_settings()
    """
    if config_path:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        return BackupSettings.from_yaml(config_path)
    return BackupSettings()


def settings_to_yaml(settings: BackupSettings, redact_secrets: bool = True) -> str:
    """
    Render settings as YAML.

    Shared keys and S3 secrets are replaced with ``***`` unless
    ``redact_secrets`` is False.
    """
    data: Dict[str, Any] = settings.model_dump(mode="json")
    if redact_secrets:
        data["azure"]["accounts"] = {name: "***" for name in data["azure"]["accounts"]}
        for key in ("access_key_id", "secret_access_key", "session_token"):
            if data["s3"].get(key):
                data["s3"][key] = "***"
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)
