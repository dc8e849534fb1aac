"""
Backup Recovery Models

Exports all data models, entities, and parameters for backup operations.
"""

from .entities import (
    CollectionKind,
    AccessLevel,
    FailurePolicy,
    ContinuationCursor,
    CollectionListing,
    Page,
    ScopedCredential,
    WorkItem,
    RestoreRequest,
    TransferResult,
    RestoreResult,
    VerificationResult,
    PhaseReport,
    snapshot_key,
    split_qualified_name
)

from .parameters import (
    NameFilter,
    FilterSpec,
    RestoreTarget,
    VerifyParams
)

__all__ = [
    # Enums
    'CollectionKind',
    'AccessLevel',
    'FailurePolicy',

    # Entities
    'ContinuationCursor',
    'CollectionListing',
    'Page',
    'ScopedCredential',
    'WorkItem',
    'RestoreRequest',
    'TransferResult',
    'RestoreResult',
    'VerificationResult',
    'PhaseReport',
    'snapshot_key',
    'split_qualified_name',

    # Parameters
    'NameFilter',
    'FilterSpec',
    'RestoreTarget',
    'VerifyParams'
]
