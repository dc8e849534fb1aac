"""
Backup Recovery Core

Collaborator interfaces, the catalog resolver, transfer pipeline, fan-out
scheduler, restore and verify engines, and the orchestrating manager.
"""

from .base import (
    CollectionClient,
    StorageService,
    CredentialIssuer,
    ObjectSink,
    ObjectSource,
    ObjectStore,
    MetricsSink
)
from .credentials import TokenProvider
from .catalog import CatalogResolver, resolve_accounts, filter_collections, validate_ignored_collections
from .transfer import TransferPipeline
from .scheduler import FanOutScheduler
from .restore import RestoreEngine
from .verify import VerifyEngine, structural_diff
from .manager import BackupManager

__all__ = [
    'CollectionClient',
    'StorageService',
    'CredentialIssuer',
    'ObjectSink',
    'ObjectSource',
    'ObjectStore',
    'MetricsSink',
    'TokenProvider',
    'CatalogResolver',
    'resolve_accounts',
    'filter_collections',
    'validate_ignored_collections',
    'TransferPipeline',
    'FanOutScheduler',
    'RestoreEngine',
    'VerifyEngine',
    'structural_diff',
    'BackupManager'
]
