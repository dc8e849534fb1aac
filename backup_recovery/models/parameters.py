"""
Backup Recovery Parameters

Defines parameter classes for backup, restore and verify phases, providing
type-safe configuration for the operator-supplied filters and targets.
"""

from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from .entities import CollectionKind, RestoreRequest, split_qualified_name


class NameFilter(BaseModel):
    """
    Set of account names and qualified collection names.

    Table and container entries are qualified as ``account/collection``.

    Example:
        ```python
        NameFilter(accounts=["abc"], tables=["abc/qed"], containers=[])
        ```
    """
    accounts: List[str] = Field(default_factory=list, description="Account names")
    tables: List[str] = Field(default_factory=list, description="Qualified table names")
    containers: List[str] = Field(default_factory=list, description="Qualified container names")

    @field_validator("accounts", "tables", "containers", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        """YAML ``key:`` with no value arrives as None."""
        return v or []

    def collections(self, kind: CollectionKind) -> List[str]:
        """Qualified names for one collection kind."""
        return self.tables if kind == CollectionKind.TABLE else self.containers


class FilterSpec(BaseModel):
    """
    Include and ignore filters for a backup run.

    An empty ``include`` list means "everything discovered". Every ``ignore``
    entry must exist in the resolved universe or the run fails before any
    transfer starts.

    Example:
        ```python
        filters = FilterSpec(
            include=NameFilter(accounts=["abc"]),
            ignore=NameFilter(tables=["abc/fed"])
        )
        ```
    """
    include: NameFilter = Field(default_factory=NameFilter, description="Names to include")
    ignore: NameFilter = Field(default_factory=NameFilter, description="Names to ignore")


class RestoreTarget(BaseModel):
    """
    One ``{name, remap}`` restore entry as written in configuration.

    Attributes:
        name: Source ``account/collection`` of the snapshot
        remap: Destination ``account/collection`` (defaults to ``name``)
    """
    name: str = Field(..., description="Source account/collection")
    remap: Optional[str] = Field(default=None, description="Destination account/collection")

    def to_request(self, kind: CollectionKind) -> RestoreRequest:
        """Build the restore request for this entry."""
        return RestoreRequest(kind=kind, name=self.name, remap=self.remap)


class VerifyParams(BaseModel):
    """
    Parameters for a verify run.

    Attributes:
        table1: First ``account/table``
        table2: Second ``account/table``
        diffs: Whether to print per-row structural diffs
    """
    table1: str = Field(..., description="First account/table")
    table2: str = Field(..., description="Second account/table")
    diffs: bool = Field(default=False, description="Print structural diffs")

    @field_validator("table1", "table2")
    @classmethod
    def qualified_table(cls, v):
        """Reject names that are not ``account/table`` before any table is read."""
        split_qualified_name(v)
        return v
