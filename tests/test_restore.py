"""
Tests for restoring snapshots into tables and containers.
"""

import logging

import pytest

from backup_recovery.config import BackupRecoveryConfig
from backup_recovery.core.restore import BoundedWriter, RestoreEngine
from backup_recovery.exceptions import (
    ConfigValidationError,
    IntegrityError,
    RestoreConflictError,
    TransferError
)
from backup_recovery.models.entities import AccessLevel, CollectionKind, RestoreRequest
from backup_recovery.models.parameters import RestoreTarget


@pytest.fixture
def engine(storage, issuer, object_store, config):
    return RestoreEngine(storage, issuer, object_store, config)


@pytest.mark.asyncio
async def test_backup_then_restore_with_remap(storage, make_manager, entities):
    storage.add_account("qqq")
    storage.add_account("ddd")
    manager = make_manager(storage)
    await manager.run_backup()

    report = await manager.run_restore(tables=[
        RestoreTarget(name="abc/def", remap="qqq/def"),
        RestoreTarget(name="abc/fed", remap="qqq/fed"),
        RestoreTarget(name="abc/qed", remap="qqq/qed"),
        RestoreTarget(name="aaa/bbb", remap="ddd/bbb"),
    ])

    assert report.completed == 4
    assert storage.tables["qqq"]["def"] == entities["abc"]["def"]
    assert storage.tables["qqq"]["fed"] == entities["abc"]["fed"]
    assert storage.tables["qqq"]["qed"] == []
    assert storage.tables["ddd"]["bbb"] == entities["aaa"]["bbb"]


@pytest.mark.asyncio
async def test_restore_without_remap_recreates_source(storage, make_manager, entities):
    manager = make_manager(storage)
    await manager.run_backup()
    del storage.tables["abc"]["def"]

    await manager.run_restore(tables=[RestoreTarget(name="abc/def")])

    assert storage.tables["abc"]["def"] == entities["abc"]["def"]


@pytest.mark.asyncio
async def test_large_restore_keeps_every_row(issuer, object_store, metrics):
    from storage_clients.memory import InMemoryStorageService
    from backup_recovery.core.manager import BackupManager

    rows = [{"baz": f"bing-{i}"} for i in range(1004)]
    storage = InMemoryStorageService(tables={"foo": {"bar": rows}}, accounts=["restored"])
    manager = BackupManager(
        storage, issuer, object_store, metrics, BackupRecoveryConfig(page_size=10, insert_concurrency=8)
    )
    await manager.run_backup()
    await manager.run_restore(tables=[RestoreTarget(name="foo/bar", remap="restored/bar")])

    restored = storage.tables["restored"]["bar"]
    assert len(restored) == 1004
    assert restored == rows


@pytest.mark.asyncio
async def test_truncated_snapshot_is_transfer_error(issuer, object_store, metrics):
    from storage_clients.memory import InMemoryStorageService
    from backup_recovery.core.manager import BackupManager

    rows = [{"baz": f"bing-{i}", "n": i} for i in range(3000)]
    storage = InMemoryStorageService(tables={"foo": {"bar": rows}}, accounts=["restored"])
    manager = BackupManager(storage, issuer, object_store, metrics, BackupRecoveryConfig(page_size=500))
    await manager.run_backup()
    body = object_store.objects["foo/table/bar"]
    object_store.objects["foo/table/bar"] = body[:len(body) // 2]

    with pytest.raises(TransferError, match="Snapshot foo/table/bar is truncated") as exc_info:
        await manager.run_restore(tables=[RestoreTarget(name="foo/bar", remap="restored/bar")])
    assert exc_info.value.snapshot_key == "foo/table/bar"
    assert len(storage.tables["restored"]["bar"]) < len(rows)


@pytest.mark.asyncio
async def test_refuses_non_empty_destination(storage, make_manager):
    manager = make_manager(storage)
    await manager.run_backup()
    before = len(storage.tables["aaa"]["bbb"])
    inserts = storage.inserts

    with pytest.raises(RestoreConflictError) as exc_info:
        await manager.run_restore(tables=[RestoreTarget(name="abc/def", remap="aaa/bbb")])

    assert str(exc_info.value).startswith("Refusing to restore abc/def to aaa/bbb. aaa/bbb not empty!")
    assert len(storage.tables["aaa"]["bbb"]) == before
    assert storage.inserts == inserts


@pytest.mark.asyncio
async def test_existing_empty_destination_is_accepted(storage, make_manager, entities):
    manager = make_manager(storage)
    await manager.run_backup()

    await manager.run_restore(tables=[RestoreTarget(name="abc/def", remap="abc/qed")])

    assert storage.tables["abc"]["qed"] == entities["abc"]["def"]


@pytest.mark.asyncio
async def test_missing_snapshot_is_transfer_error(engine, storage):
    storage.add_account("qqq")
    with pytest.raises(TransferError, match="not found"):
        await engine.restore(RestoreRequest(kind=CollectionKind.TABLE, name="abc/never", remap="qqq/never"))


@pytest.mark.parametrize("name, remap", [
    ("abc", None),
    ("abc/def/extra", None),
    ("abc/def", "qqq"),
    ("/def", None),
])
@pytest.mark.asyncio
async def test_malformed_names_rejected_before_any_call(engine, storage, issuer, name, remap):
    with pytest.raises(ConfigValidationError):
        await engine.restore(RestoreRequest(kind=CollectionKind.TABLE, name=name, remap=remap))
    assert issuer.issued == []
    assert storage.tokens_used == []


@pytest.mark.asyncio
async def test_writes_with_read_write_credential_for_destination(storage, make_manager, issuer):
    storage.add_account("qqq")
    manager = make_manager(storage)
    await manager.run_backup()
    issuer.issued.clear()

    await manager.run_restore(tables=[RestoreTarget(name="abc/def", remap="qqq/def")])

    assert [(c.account, c.collection, c.level) for c in issuer.issued] == [
        ("qqq", "def", AccessLevel.READ_WRITE)
    ]


@pytest.mark.asyncio
async def test_insert_failure_stops_restore(storage, make_manager):
    storage.add_account("qqq")
    manager = make_manager(storage)
    await manager.run_backup()
    storage.fail_insert_after = storage.inserts + 1

    with pytest.raises(TransferError, match="Restore of table abc/def -> qqq/def failed"):
        await manager.run_restore(tables=[RestoreTarget(name="abc/def", remap="qqq/def")])


@pytest.mark.asyncio
async def test_heartbeat_logs_every_interval(storage, make_manager, caplog):
    storage.add_account("qqq")
    manager = make_manager(storage)
    await manager.run_backup()

    with caplog.at_level(logging.INFO, logger="backup_recovery.core.restore"):
        await manager.run_restore(tables=[RestoreTarget(name="abc/def", remap="qqq/def")])

    beats = [r.getMessage() for r in caplog.records if "records processed" in r.getMessage()]
    assert beats == ["table abc/def -> qqq/def: 2 records processed"]


@pytest.mark.asyncio
async def test_container_round_trip(storage_with_containers, make_manager):
    storage = storage_with_containers
    storage.add_account("qqq")
    storage.put_blob("abc", "contA", "3", b"with meta", metadata={"owner": "ci"}, blob_type="AppendBlob")
    manager = make_manager(storage)
    await manager.run_backup()

    report = await manager.run_restore(containers=[RestoreTarget(name="abc/contA", remap="qqq/contA")])

    restored = storage.containers["qqq"]["contA"]
    assert report.results[0].records_restored == 3
    assert {name: blob["content"] for name, blob in restored.items()} == {
        "1": b"aaa1", "2": b"aaa2", "3": b"with meta"
    }
    assert restored["3"]["metadata"] == {"owner": "ci"}
    assert restored["3"]["type"] == "AppendBlob"


@pytest.mark.asyncio
async def test_md5_mismatch_raises_integrity_error(storage_with_containers, make_manager):
    storage = storage_with_containers
    storage.add_account("qqq")
    manager = make_manager(storage)
    await manager.run_backup()
    storage.reported_md5_override = "AAAAAAAAAAAAAAAAAAAAAA=="

    with pytest.raises(IntegrityError) as exc_info:
        await manager.run_restore(containers=[RestoreTarget(name="abc/contB", remap="qqq/contB")])

    assert "Uploaded MD5 differed from that in backup of qqq/contB blob" in str(exc_info.value)
    assert exc_info.value.actual_hash == "AAAAAAAAAAAAAAAAAAAAAA=="


@pytest.mark.asyncio
async def test_bounded_writer_limits_in_flight_writes():
    import asyncio

    running = 0
    peak = 0

    async def write(_):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.001)
        running -= 1

    writer = BoundedWriter(3)
    for i in range(20):
        await writer.submit(write, i)
    await writer.drain()
    assert peak == 3


@pytest.mark.asyncio
async def test_bounded_writer_raises_first_failure():
    async def write(i):
        if i == 2:
            raise ValueError("bad row")

    writer = BoundedWriter(1)
    with pytest.raises(ValueError, match="bad row"):
        for i in range(10):
            await writer.submit(write, i)
        await writer.drain()
