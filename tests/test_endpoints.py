"""
Tests for data endpoints and copy.
"""

import pytest

from backup_recovery.endpoints import FileEndpoint, ObjectStoreEndpoint, copy, endpoint
from backup_recovery.exceptions import ConfigValidationError, TransferError
from backup_recovery.utils.compression import CompressionHandler

CONTENT = b'{"nr":1}\n{"nr":2}\n{"nr":3}\n'


async def collect(records):
    return [record async for record in records]


async def source_records():
    for nr in (1, 2, 3):
        yield {"nr": nr}


def file_url(path):
    return f"file://{path}"


@pytest.fixture
def stores(object_store):
    def factory(bucket):
        assert bucket == "foo-backup"
        return object_store
    return factory


class TestEndpointFactory:
    def test_invalid_protocol(self):
        with pytest.raises(ConfigValidationError, match="invalid data URL"):
            endpoint("foobar:///xyz")

    def test_file_url(self, tmp_path):
        ep = endpoint(file_url(tmp_path / "abc.zst"))
        assert isinstance(ep, FileEndpoint)
        assert ep.filename == str(tmp_path / "abc.zst")

    def test_file_url_with_hostname(self):
        with pytest.raises(ConfigValidationError, match="cannot have hostnames"):
            endpoint("file://somehost/abc.zst")

    def test_file_url_needs_zst_suffix(self):
        with pytest.raises(ConfigValidationError, match="must end with .zst"):
            endpoint("file:///tmp/abc.json")

    def test_s3_url(self, stores, object_store):
        ep = endpoint("s3://foo-backup/abc/table/def", stores)
        assert isinstance(ep, ObjectStoreEndpoint)
        assert ep.key == "abc/table/def"
        assert ep.object_store is object_store

    def test_s3_url_without_key(self, stores):
        with pytest.raises(ConfigValidationError):
            endpoint("s3://foo-backup", stores)

    def test_s3_url_without_object_store(self):
        with pytest.raises(ConfigValidationError, match="no object store"):
            endpoint("s3://foo-backup/abc/table/def")


class TestFileEndpoint:
    @pytest.mark.asyncio
    async def test_read_file(self, tmp_path):
        path = tmp_path / "test-data1.zst"
        path.write_bytes(CompressionHandler().compress_data(CONTENT))
        records = await collect(FileEndpoint(file_url(path)).read())
        assert records == [{"nr": 1}, {"nr": 2}, {"nr": 3}]

    @pytest.mark.asyncio
    async def test_write_file(self, tmp_path):
        path = tmp_path / "test-data1.zst"
        count = await FileEndpoint(file_url(path)).write(source_records())
        assert count == 3
        assert CompressionHandler().decompress_data(path.read_bytes()) == CONTENT
        assert not (tmp_path / "test-data1.zst.partial").exists()

    @pytest.mark.asyncio
    async def test_read_into_write(self, tmp_path):
        path1 = tmp_path / "test-data1.zst"
        path2 = tmp_path / "test-data2.zst"
        path1.write_bytes(CompressionHandler().compress_data(CONTENT))

        count = await copy(FileEndpoint(file_url(path1)), FileEndpoint(file_url(path2)))

        assert count == 3
        assert CompressionHandler().decompress_data(path2.read_bytes()) == CONTENT

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(TransferError, match="Cannot read"):
            await collect(FileEndpoint(file_url(tmp_path / "missing.zst")).read())

    @pytest.mark.asyncio
    async def test_failed_write_leaves_existing_file(self, tmp_path):
        path = tmp_path / "keep.zst"
        path.write_bytes(b"original")

        async def broken():
            yield {"nr": 1}
            raise RuntimeError("source failed")

        with pytest.raises(RuntimeError):
            await FileEndpoint(file_url(path)).write(broken())
        assert path.read_bytes() == b"original"
        assert not (tmp_path / "keep.zst.partial").exists()

    @pytest.mark.asyncio
    async def test_truncated_file_is_not_copied(self, tmp_path):
        body = CompressionHandler().compress_data(b"".join(b'{"nr":%d}\n' % i for i in range(3000)))
        source = tmp_path / "cut.zst"
        source.write_bytes(body[:len(body) // 2])
        destination = tmp_path / "out.zst"

        with pytest.raises(TransferError, match="is truncated"):
            await copy(FileEndpoint(file_url(source)), FileEndpoint(file_url(destination)))
        assert not destination.exists()
        assert not (tmp_path / "out.zst.partial").exists()


class TestObjectStoreEndpoint:
    @pytest.mark.asyncio
    async def test_copy_file_to_object_store_and_back(self, tmp_path, stores, object_store):
        path = tmp_path / "snapshot.zst"
        path.write_bytes(CompressionHandler().compress_data(CONTENT))

        await copy(endpoint(file_url(path)), endpoint("s3://foo-backup/abc/table/def", stores))
        assert CompressionHandler().decompress_data(object_store.objects["abc/table/def"]) == CONTENT

        out = tmp_path / "back.zst"
        await copy(endpoint("s3://foo-backup/abc/table/def", stores), endpoint(file_url(out)))
        assert CompressionHandler().decompress_data(out.read_bytes()) == CONTENT

    @pytest.mark.asyncio
    async def test_restores_a_copied_snapshot(self, tmp_path, stores, storage, make_manager):
        from backup_recovery.models.parameters import RestoreTarget

        path = tmp_path / "edited.zst"
        path.write_bytes(CompressionHandler().compress_data(b'{"edited":true}\n'))
        await copy(endpoint(file_url(path)), endpoint("s3://foo-backup/abc/table/new", stores))
        storage.add_account("qqq")

        await make_manager(storage).run_restore(tables=[RestoreTarget(name="abc/new", remap="qqq/new")])

        assert storage.tables["qqq"]["new"] == [{"edited": True}]

    @pytest.mark.asyncio
    async def test_failed_write_aborts_upload(self, stores, object_store):
        async def broken():
            yield {"nr": 1}
            raise RuntimeError("source failed")

        with pytest.raises(RuntimeError):
            await endpoint("s3://foo-backup/abc/table/def", stores).write(broken())
        assert object_store.aborted == ["abc/table/def"]
        assert "abc/table/def" not in object_store.objects

    @pytest.mark.asyncio
    async def test_missing_object(self, stores):
        with pytest.raises(TransferError, match="not found"):
            await collect(endpoint("s3://foo-backup/abc/table/none", stores).read())
