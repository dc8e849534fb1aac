"""
Configuration Module

This module provides centralized configuration management for storage backups:
- Include/ignore filters for backup runs
- Restore targets and verify parameters
- Object store (S3) and storage account (Azure) connection settings
- Logging and metrics settings
- Concurrency and transfer tunables

Settings load from a YAML file and ``BACKUPS_`` environment variables,
validated with Pydantic.
"""

from .settings import (
    BackupSettings,
    RestoreSettings,
    VerifySettings,
    S3Settings,
    AzureSettings,
    MonitoringSettings,
    load_settings,
    settings_to_yaml
)

__all__ = [
    'BackupSettings',
    'RestoreSettings',
    'VerifySettings',
    'S3Settings',
    'AzureSettings',
    'MonitoringSettings',
    'load_settings',
    'settings_to_yaml'
]
