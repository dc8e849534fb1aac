"""
Backup Recovery Entities

Defines data models for backup, restore and verify operations: the units of
work the scheduler dispatches, the pagination cursors and pages the storage
collaborators return, scoped credentials, and operation outcomes.

These models use Pydantic for validation and provide a type-safe interface
between the core engines and their collaborators.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple
from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ConfigValidationError


class CollectionKind(str, Enum):
    """
    Kind of storage collection.

    Kinds:
        TABLE: Set of rows, each an arbitrary field -> value mapping
        CONTAINER: Set of named blobs with metadata, type and content
    """
    TABLE = "table"
    CONTAINER = "container"

    @property
    def record_label(self) -> str:
        """Metric suffix used when counting records of this kind."""
        return "entities" if self == CollectionKind.TABLE else "blobs"


class AccessLevel(str, Enum):
    """Access level requested for a scoped credential."""
    READ_ONLY = "read-only"
    READ_WRITE = "read-write"


class FailurePolicy(str, Enum):
    """
    What the fan-out scheduler does when a task fails.

    Policies:
        FAIL_FAST: Stop dispatching on the first failure and raise it
        CONTINUE: Run every task, then raise all failures together
    """
    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"


def snapshot_key(account: str, kind: CollectionKind, name: str) -> str:
    """Object store key of the snapshot for one collection."""
    return f"{account}/{CollectionKind(kind).value}/{name}"


def split_qualified_name(qualified_name: str) -> Tuple[str, str]:
    """
    Split an ``account/collection`` name into its two parts.

    Raises:
        ConfigValidationError: If the name does not have exactly two non-empty parts
    """
    parts = qualified_name.split("/")
    if len(parts) != 2 or not all(parts):
        raise ConfigValidationError(
            f"Expected a name of the form account/collection, got {qualified_name!r}",
            invalid_names=[qualified_name]
        )
    return parts[0], parts[1]


class ContinuationCursor(BaseModel):
    """
    Opaque pagination token pair.

    A collection is read completely by presenting the cursor of each
    response to the next request until the two parts are no longer both
    present. Services that paginate with a single token carry it in both
    parts (see ``single``).
    """
    model_config = ConfigDict(frozen=True)

    first: Optional[str] = Field(default=None, description="First token part")
    second: Optional[str] = Field(default=None, description="Second token part")

    @classmethod
    def single(cls, token: Optional[str]) -> "ContinuationCursor":
        """Cursor for services that return one continuation token."""
        return cls(first=token, second=token)

    @property
    def has_more(self) -> bool:
        """True while another page must be requested."""
        return bool(self.first) and bool(self.second)


class CollectionListing(BaseModel):
    """One page of collection names returned by discovery."""
    names: List[str] = Field(default_factory=list, description="Collection names on this page")
    continuation_token: Optional[str] = Field(default=None, description="Token for the next page")


class Page(BaseModel):
    """
    One page of collection content.

    For tables each item is a row mapping. For containers each item is a
    blob descriptor holding at least ``name``; content is fetched separately.
    """
    items: List[Dict[str, Any]] = Field(default_factory=list, description="Rows or blob descriptors")
    cursor: ContinuationCursor = Field(default_factory=ContinuationCursor, description="Cursor for the next page")


class ScopedCredential(BaseModel):
    """
    Time-limited credential restricted to one collection and access level.

    Example:
        ```python
        credential = ScopedCredential(
            token="sv=2019-02-02&sig=...",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            level=AccessLevel.READ_ONLY,
            account="abc",
            collection="def"
        )
        ```
    """
    token: str = Field(..., description="Opaque token presented to the storage service")
    expires_at: datetime = Field(..., description="Absolute expiry (timezone aware)")
    level: AccessLevel = Field(default=AccessLevel.READ_ONLY, description="Granted access level")
    account: str = Field(..., description="Account the credential is scoped to")
    collection: str = Field(..., description="Collection the credential is scoped to")

    def expires_within(self, margin: timedelta) -> bool:
        """Check whether the credential expires before now + margin."""
        return self.expires_at <= datetime.now(timezone.utc) + margin


class WorkItem(BaseModel):
    """
    One collection scheduled for transfer.

    Attributes:
        account: Account holding the collection
        kind: Table or container
        name: Collection name within the account
        remap_target: Optional ``account/collection`` destination (restore only)
    """
    model_config = ConfigDict(frozen=True)

    account: str = Field(..., description="Account name")
    kind: CollectionKind = Field(..., description="Collection kind")
    name: str = Field(..., description="Collection name")
    remap_target: Optional[str] = Field(default=None, description="Remap destination")

    @property
    def qualified_name(self) -> str:
        """``account/name`` form used in filters and messages."""
        return f"{self.account}/{self.name}"

    @property
    def snapshot_key(self) -> str:
        """Object store key this item is written to."""
        return snapshot_key(self.account, self.kind, self.name)


class RestoreRequest(BaseModel):
    """
    One snapshot to restore.

    Attributes:
        kind: Table or container
        name: ``account/collection`` of the snapshot source
        remap: ``account/collection`` destination (defaults to ``name``)
    """
    kind: CollectionKind = Field(..., description="Collection kind")
    name: str = Field(..., description="Source account/collection")
    remap: Optional[str] = Field(default=None, description="Destination account/collection")

    @property
    def target(self) -> str:
        """Effective destination name."""
        return self.remap or self.name

    @property
    def snapshot_key(self) -> str:
        """Object store key of the snapshot being restored."""
        account, collection = split_qualified_name(self.name)
        return snapshot_key(account, self.kind, collection)


class TransferResult(BaseModel):
    """
    Result of backing up one work item.

    Example:
        ```python
        result = TransferResult(
            work_item=item,
            snapshot_key="abc/table/def",
            item_count=3,
            execution_time_ms=12.5
        )
        ```
    """
    work_item: WorkItem = Field(..., description="Item that was transferred")
    snapshot_key: str = Field(..., description="Key the snapshot was written to")
    item_count: int = Field(default=0, ge=0, description="Records written")
    execution_time_ms: float = Field(default=0.0, ge=0.0, description="Execution time in milliseconds")

    @property
    def execution_time_seconds(self) -> float:
        """Get execution time in seconds."""
        return self.execution_time_ms / 1000.0


class RestoreResult(BaseModel):
    """Result of restoring one snapshot."""
    kind: CollectionKind = Field(..., description="Collection kind")
    source_name: str = Field(..., description="Snapshot source account/collection")
    target_name: str = Field(..., description="Destination account/collection")
    records_restored: int = Field(default=0, ge=0, description="Records written to the destination")
    execution_time_ms: float = Field(default=0.0, ge=0.0, description="Execution time in milliseconds")

    @property
    def execution_time_seconds(self) -> float:
        """Get execution time in seconds."""
        return self.execution_time_ms / 1000.0


class VerificationResult(BaseModel):
    """
    Result of comparing two tables by row content hash.

    Attributes:
        table1: First qualified table name
        table2: Second qualified table name
        table1_rows: Rows read from the first table
        table2_rows: Rows read from the second table
        common_rows: Distinct content hashes present in both tables
        only_in_table1: Distinct hashes present only in the first table
        only_in_table2: Distinct hashes present only in the second table
        diffs: Structural differences for rows whose hash is in both tables
        stripped_fields: Volatile fields removed before hashing
    """
    table1: str = Field(..., description="First table")
    table2: str = Field(..., description="Second table")
    table1_rows: int = Field(default=0, ge=0, description="Row count of first table")
    table2_rows: int = Field(default=0, ge=0, description="Row count of second table")
    common_rows: int = Field(default=0, ge=0, description="Hashes in both tables")
    only_in_table1: int = Field(default=0, ge=0, description="Hashes only in first table")
    only_in_table2: int = Field(default=0, ge=0, description="Hashes only in second table")
    diffs: Dict[str, Any] = Field(default_factory=dict, description="Hash -> structural diff")
    stripped_fields: List[str] = Field(default_factory=list, description="Fields ignored when hashing")
    verified_at: datetime = Field(default_factory=datetime.now, description="Verification timestamp")

    @property
    def has_diffs(self) -> bool:
        """Check if any common row produced a non-empty diff."""
        return len(self.diffs) > 0

    @property
    def row_counts_match(self) -> bool:
        """Check if both tables hold the same number of rows."""
        return self.table1_rows == self.table2_rows


class PhaseReport(BaseModel):
    """Outcome of one scheduler phase."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    phase: str = Field(..., description="Phase name")
    total_tasks: int = Field(default=0, ge=0, description="Tasks submitted")
    results: List[Any] = Field(default_factory=list, description="Task results in completion order")
    execution_time_ms: float = Field(default=0.0, ge=0.0, description="Phase wall time in milliseconds")

    @property
    def completed(self) -> int:
        """Number of tasks that finished successfully."""
        return len(self.results)
