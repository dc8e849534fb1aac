"""
Data Endpoints

An endpoint is a place snapshot data can be read from or written to, named by
a URL. Every endpoint holds the snapshot body format: zstd-compressed
newline-delimited JSON. ``copy`` streams records from one endpoint to
another, which lets operators pull a snapshot down to a local file, inspect
or edit it, and push it back.

Supported URLs:
    file:///path/name.zst   local file (no hostname, must end in .zst)
    s3://bucket/key         object in an S3 bucket
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, Optional
from urllib.parse import urlparse

from .core.base import ObjectStore
from .exceptions import ConfigValidationError, TransferError
from .utils.compression import StreamCompressor, StreamDecompressor
from .utils.records import LineDecoder, encode_record

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 256 * 1024


async def _decode_stream(chunks: AsyncIterable[bytes], url: str) -> AsyncIterator[Dict[str, Any]]:
    decompressor = StreamDecompressor()
    decoder = LineDecoder()
    async for chunk in chunks:
        for record in decoder.feed(decompressor.decompress(chunk)):
            yield record
    try:
        decompressor.finish()
    except ValueError as e:
        raise TransferError(f"Snapshot {url} is truncated: {e}") from e
    for record in decoder.finish():
        yield record


class Endpoint(ABC):
    """Readable and writable record stream behind a URL."""

    def __init__(self, url: str, compression_level: int = 3):
        self.url = url
        self.compression_level = compression_level

    @abstractmethod
    def read(self) -> AsyncIterator[Dict[str, Any]]:
        """Iterate over the records stored at this endpoint."""
        pass

    @abstractmethod
    async def write(self, records: AsyncIterable[Dict[str, Any]]) -> int:
        """
        Replace the data at this endpoint with ``records``.

        Returns:
            Number of records written
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.url!r})"


class FileEndpoint(Endpoint):
    """
    Snapshot body in a local ``.zst`` file.

    Writes go to a ``.partial`` file next to the target which replaces the
    target only once every record is written.
    """

    def __init__(self, url: str, compression_level: int = 3):
        super().__init__(url, compression_level)
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise ConfigValidationError(f"invalid data URL {url}")
        if parsed.netloc:
            raise ConfigValidationError(f"file URLs cannot have hostnames (use file:///): {url}")
        if not parsed.path.endswith(".zst"):
            raise ConfigValidationError(f"pathname must end with .zst: {url}")
        self.filename = parsed.path

    async def _chunks(self) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        try:
            handle = open(self.filename, "rb")
        except OSError as e:
            raise TransferError(f"Cannot read {self.url}: {e}") from e
        try:
            while True:
                chunk = await loop.run_in_executor(None, handle.read, READ_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    def read(self) -> AsyncIterator[Dict[str, Any]]:
        return _decode_stream(self._chunks(), self.url)

    async def write(self, records: AsyncIterable[Dict[str, Any]]) -> int:
        loop = asyncio.get_running_loop()
        partial = f"{self.filename}.partial"
        compressor = StreamCompressor(self.compression_level)
        count = 0
        try:
            handle = open(partial, "wb")
        except OSError as e:
            raise TransferError(f"Cannot write {self.url}: {e}") from e
        try:
            with handle:
                async for record in records:
                    chunk = compressor.compress(encode_record(record))
                    if chunk:
                        await loop.run_in_executor(None, handle.write, chunk)
                    count += 1
                await loop.run_in_executor(None, handle.write, compressor.flush())
            os.replace(partial, self.filename)
        except BaseException:
            if os.path.exists(partial):
                os.remove(partial)
            raise
        logger.info(f"Wrote {count} records to {self.filename}")
        return count


class ObjectStoreEndpoint(Endpoint):
    """
    Snapshot body stored under one key of an object store.

    A failed write aborts the upload, leaving any existing object untouched.
    """

    def __init__(
        self,
        url: str,
        object_store: ObjectStore,
        key: str,
        storage_class: Optional[str] = None,
        compression_level: int = 3
    ):
        super().__init__(url, compression_level)
        self.object_store = object_store
        self.key = key
        self.storage_class = storage_class

    async def _chunks(self) -> AsyncIterator[bytes]:
        source = await self.object_store.open_read(self.key)
        try:
            async for chunk in source:
                yield chunk
        finally:
            await source.close()

    def read(self) -> AsyncIterator[Dict[str, Any]]:
        return _decode_stream(self._chunks(), self.url)

    async def write(self, records: AsyncIterable[Dict[str, Any]]) -> int:
        sink = await self.object_store.open_write(self.key, self.storage_class)
        compressor = StreamCompressor(self.compression_level)
        count = 0
        try:
            async for record in records:
                chunk = compressor.compress(encode_record(record))
                if chunk:
                    await sink.write(chunk)
                count += 1
            await sink.write(compressor.flush())
            await sink.close()
        except BaseException:
            await sink.abort()
            raise
        logger.info(f"Wrote {count} records to {self.url}")
        return count


def endpoint(
    url: str,
    object_store_factory: Optional[Callable[[str], ObjectStore]] = None,
    storage_class: Optional[str] = None,
    compression_level: int = 3
) -> Endpoint:
    """
    Create the endpoint named by ``url``.

    Args:
        url: ``file:///...`` or ``s3://bucket/key``
        object_store_factory: Builds the object store for a bucket name;
            required for ``s3://`` URLs
        storage_class: Storage class for objects written to an object store
        compression_level: zstd level for writes

    Raises:
        ConfigValidationError: If the URL is not a supported data URL
    """
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return FileEndpoint(url, compression_level)
    if parsed.scheme == "s3":
        key = parsed.path.lstrip("/")
        if not parsed.netloc or not key:
            raise ConfigValidationError(f"invalid data URL {url}: expected s3://bucket/key")
        if object_store_factory is None:
            raise ConfigValidationError(f"no object store configured for {url}")
        return ObjectStoreEndpoint(
            url,
            object_store_factory(parsed.netloc),
            key,
            storage_class=storage_class,
            compression_level=compression_level
        )
    raise ConfigValidationError(f"invalid data URL {url}")


async def copy(source: Endpoint, destination: Endpoint) -> int:
    """
    Stream every record of ``source`` into ``destination``.

    Returns:
        Number of records copied
    """
    logger.info(f"Copying {source.url} to {destination.url}")
    count = await destination.write(source.read())
    logger.info(f"Copied {count} records from {source.url} to {destination.url}")
    return count
