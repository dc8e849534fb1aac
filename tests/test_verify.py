"""
Tests for table comparison.
"""

import pytest

from backup_recovery.config import BackupRecoveryConfig
from backup_recovery.core.verify import VerifyEngine, structural_diff
from backup_recovery.exceptions import ConfigValidationError, TransferError
from backup_recovery.models.parameters import RestoreTarget
from storage_clients.memory import InMemoryStorageService


def stamped(rows, stamp):
    return [dict(row, Timestamp=stamp, **{"odata.etag": f"W/{stamp}"}) for row in rows]


@pytest.fixture
def twin_storage():
    rows = [{"PartitionKey": "p", "RowKey": str(i), "value": i} for i in range(5)]
    return InMemoryStorageService(tables={
        "abc": {
            "left": stamped(rows, "2024-01-01T00:00:00Z"),
            "right": stamped(list(reversed(rows)), "2024-06-01T12:00:00Z"),
            "short": stamped(rows[:3], "2024-06-01T12:00:00Z"),
        }
    })


@pytest.mark.asyncio
async def test_equal_after_stripping_volatile_fields(twin_storage, issuer):
    engine = VerifyEngine(twin_storage, issuer, BackupRecoveryConfig(page_size=2))

    result = await engine.verify("abc/left", "abc/right", diffs=True)

    assert result.table1_rows == result.table2_rows == 5
    assert result.row_counts_match
    assert result.common_rows == 5
    assert result.only_in_table1 == result.only_in_table2 == 0
    assert not result.has_diffs
    assert "Timestamp" in result.stripped_fields


@pytest.mark.asyncio
async def test_counts_rows_present_on_one_side(twin_storage, issuer):
    result = await VerifyEngine(twin_storage, issuer).verify("abc/left", "abc/short")

    assert result.table1_rows == 5
    assert result.table2_rows == 3
    assert result.common_rows == 3
    assert result.only_in_table1 == 2
    assert result.only_in_table2 == 0
    assert not result.row_counts_match


@pytest.mark.asyncio
async def test_volatile_fields_are_configurable(twin_storage, issuer):
    engine = VerifyEngine(twin_storage, issuer, BackupRecoveryConfig(volatile_fields=[]))
    result = await engine.verify("abc/left", "abc/right")
    assert result.common_rows == 0
    assert result.only_in_table1 == 5


@pytest.mark.asyncio
async def test_restored_table_verifies_against_source(storage, make_manager):
    storage.add_account("qqq")
    manager = make_manager(storage)
    await manager.run_backup()
    await manager.run_restore(tables=[RestoreTarget(name="abc/def", remap="qqq/def")])

    result = await manager.run_verify("abc/def", "qqq/def", diffs=True)

    assert result.table1_rows == result.table2_rows == 3
    assert result.common_rows == 3
    assert result.diffs == {}


@pytest.mark.asyncio
async def test_malformed_table_name(twin_storage, issuer):
    with pytest.raises(ConfigValidationError):
        await VerifyEngine(twin_storage, issuer).verify("left", "abc/right")


@pytest.mark.asyncio
async def test_missing_table_is_transfer_error(twin_storage, issuer):
    with pytest.raises(TransferError, match="Failed to read table abc/nope"):
        await VerifyEngine(twin_storage, issuer).verify("abc/left", "abc/nope")


def test_structural_diff():
    assert structural_diff({"a": 1, "b": 2}, {"a": 1, "b": 2}) == {}
    assert structural_diff({"a": 1, "b": 2}, {"a": 3, "c": 4}) == {
        "only_left": ["b"],
        "only_right": ["c"],
        "changed": {"a": [1, 3]},
    }
