"""
Backup Recovery Exceptions

Defines the exception hierarchy for backup, restore, verify and copy
operations. Every error is fatal to the phase that raises it; there is no
automatic retry at this layer, so these types exist to let the CLI boundary
report a precise message and to let tests assert on the failure mode.
"""

import json
from typing import Optional, Dict, Any, List


def format_names(names: List[str]) -> str:
    """Render a list of names the way operators see them in error messages."""
    return json.dumps(list(names), separators=(",", ":"))


class BackupRecoveryError(Exception):
    """
    Base exception for all backup and recovery operations.

    Attributes:
        message: Human-readable error message
        collection_name: Qualified ``account/collection`` name involved (if applicable)
        context: Additional context information as key-value pairs

    Example:
        ```python
        try:
            await manager.run_backup(filters)
        except BackupRecoveryError as e:
            logger.error(f"Backup error for {e.collection_name}: {e.message}")
        ```
    """

    def __init__(
        self,
        message: str,
        collection_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.collection_name = collection_name
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.collection_name:
            parts.append(f"Collection: {self.collection_name}")
        if self.context:
            parts.append(f"Context: {self.context}")
        return " | ".join(parts)


class ConfigValidationError(BackupRecoveryError):
    """
    Operator-supplied configuration does not match reality.

    Raised before any transfer starts, most commonly when an ``ignore`` entry
    names an account or collection that is not part of the resolved universe.

    Additional Attributes:
        invalid_names: Names that failed validation
        valid_names: The full set they were validated against

    Example:
        ```python
        raise ConfigValidationError(
            'Ignored accounts ["foobarbaz"] are not in set ["abc","aaa"]',
            invalid_names=["foobarbaz"],
            valid_names=["abc", "aaa"]
        )
        ```
    """

    def __init__(
        self,
        message: str,
        invalid_names: Optional[List[str]] = None,
        valid_names: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, None, context)
        self.invalid_names = list(invalid_names or [])
        self.valid_names = list(valid_names or [])


class TransferError(BackupRecoveryError):
    """
    A network or service failure while moving data.

    Covers discovery listing, pagination, blob fetches, compression and
    object uploads or downloads. The underlying exception is chained as
    ``__cause__``.

    Additional Attributes:
        snapshot_key: Object store key being written or read (if applicable)
    """

    def __init__(
        self,
        message: str,
        collection_name: Optional[str] = None,
        snapshot_key: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, collection_name, context)
        self.snapshot_key = snapshot_key


class RestoreConflictError(BackupRecoveryError):
    """
    Restore destination already holds data.

    Raised after the destination collection reported "already exists" and a
    single-item probe found content. No write has been issued when this is
    raised.

    Additional Attributes:
        source_name: Qualified name of the snapshot being restored
        target_name: Qualified name of the non-empty destination
    """

    def __init__(self, source_name: str, target_name: str):
        super().__init__(
            f"Refusing to restore {source_name} to {target_name}. {target_name} not empty!",
            target_name
        )
        self.source_name = source_name
        self.target_name = target_name


class IntegrityError(BackupRecoveryError):
    """
    Content hash reported by the destination differs from the backed-up hash.

    Additional Attributes:
        account: Destination account
        container: Destination container
        blob_name: Blob whose upload did not round-trip
        expected_hash: Content MD5 captured at backup time
        actual_hash: Content MD5 reported by the upload
    """

    def __init__(
        self,
        account: str,
        container: str,
        blob_name: str,
        expected_hash: Optional[str] = None,
        actual_hash: Optional[str] = None
    ):
        super().__init__(
            f"Uploaded MD5 differed from that in backup of {account}/{container} blob {blob_name}",
            f"{account}/{container}",
            {"expected": expected_hash, "actual": actual_hash}
        )
        self.account = account
        self.container = container
        self.blob_name = blob_name
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash


class PhaseFailedError(BackupRecoveryError):
    """
    One or more tasks of a phase failed under the ``continue`` failure policy.

    Additional Attributes:
        phase: Name of the phase (``backup``, ``restore``)
        failures: List of ``(task label, exception)`` pairs in completion order
    """

    def __init__(self, phase: str, failures: List[tuple]):
        labels = [label for label, _ in failures]
        super().__init__(
            f"{len(failures)} {phase} task(s) failed: {format_names(labels)}",
            None,
            {"first_error": str(failures[0][1])} if failures else None
        )
        self.phase = phase
        self.failures = list(failures)
