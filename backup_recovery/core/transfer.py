"""
Transfer Pipeline

Backs up one collection into one snapshot object: pages are read with a
read-only scoped credential, each item becomes one JSON line, lines are
zstd-compressed as they are produced, and compressed chunks are handed to a
concurrent upload through a small bounded queue. A failure anywhere aborts
the upload so the previous snapshot under the key stays intact.
"""

import asyncio
import logging
import time
from typing import Optional

from .credentials import TokenProvider
from ..config import BackupRecoveryConfig
from ..exceptions import BackupRecoveryError, TransferError
from ..models.entities import (
    AccessLevel,
    CollectionKind,
    ContinuationCursor,
    TransferResult,
    WorkItem
)
from ..utils.compression import StreamCompressor
from ..utils.progress import choose_symbol
from ..utils.records import encode_blob_record, encode_record
from .base import (
    CollectionClient,
    CredentialIssuer,
    MetricsSink,
    ObjectSink,
    ObjectStore,
    StorageService
)

logger = logging.getLogger(__name__)


class UploadPump:
    """
    Feeds compressed chunks to an object sink from a background task.

    ``put`` blocks once ``max_pending`` chunks are queued, which bounds the
    memory held between compression and upload. A write failure is held and
    raised from the next ``put`` or from ``finish``.
    """

    def __init__(self, sink: ObjectSink, max_pending: int = 4):
        self._sink = sink
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._task: Optional[asyncio.Task] = None
        self._error: Optional[BaseException] = None

    def start(self) -> None:
        self._task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            if self._error is not None:
                continue
            try:
                await self._sink.write(chunk)
            except Exception as e:
                self._error = e

    async def put(self, chunk: bytes) -> None:
        if self._error is not None:
            raise self._error
        if chunk:
            await self._queue.put(chunk)

    async def finish(self) -> None:
        """Wait until every queued chunk has been written."""
        await self._queue.put(None)
        await self._task
        if self._error is not None:
            raise self._error

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()


class TransferPipeline:
    """
    Backs up work items into the object store.

    Example:
        ```python
        pipeline = TransferPipeline(storage, issuer, object_store, metrics, config)
        result = await pipeline.backup(WorkItem(account="abc", kind="table", name="def"))
        print(f"{result.snapshot_key}: {result.item_count} rows")
        ```
    """

    def __init__(
        self,
        storage: StorageService,
        issuer: CredentialIssuer,
        object_store: ObjectStore,
        metrics: MetricsSink,
        config: Optional[BackupRecoveryConfig] = None
    ):
        self._storage = storage
        self._issuer = issuer
        self._object_store = object_store
        self._metrics = metrics
        self._config = config or BackupRecoveryConfig()

    async def backup(self, item: WorkItem, index: int = 0) -> TransferResult:
        """
        Write the snapshot for one work item.

        Args:
            item: Collection to back up
            index: Position of the item in its phase, used to pick a log symbol

        Returns:
            TransferResult with the number of records written

        Raises:
            TransferError: If reading, compressing or uploading fails
        """
        symbol = choose_symbol(index)
        key = item.snapshot_key
        logger.info(f"Beginning backup of {item.kind.value} {item.qualified_name} with symbol {symbol}")

        start_time = time.time()
        provider = TokenProvider(
            self._issuer,
            item.account,
            item.name,
            AccessLevel.READ_ONLY,
            item.kind,
            self._config.credential_refresh_margin_seconds
        )
        client = self._storage.collection(item.account, item.kind, item.name, provider)

        count = await self._metrics.timer(
            f"backup-{item.kind.value}.{item.account}.{item.name}",
            self._stream(item, client, key, symbol)
        )
        self._metrics.count(f"{item.account}.{item.name}.{item.kind.record_label}", count)

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"Finished backup of {item.qualified_name} ({symbol}): {count} records in {elapsed_ms:.0f}ms")
        return TransferResult(
            work_item=item,
            snapshot_key=key,
            item_count=count,
            execution_time_ms=elapsed_ms
        )

    async def _encode_item(self, item: WorkItem, client: CollectionClient, entry: dict) -> bytes:
        if item.kind == CollectionKind.TABLE:
            return encode_record(entry)
        name = entry["name"]
        blob = await client.get_blob(name)
        return encode_blob_record(name, blob)

    async def _stream(self, item: WorkItem, client: CollectionClient, key: str, symbol: str) -> int:
        """Paginate, compress and upload; returns the record count."""
        try:
            sink = await self._object_store.open_write(key, self._config.storage_class)
        except BackupRecoveryError:
            raise
        except Exception as e:
            raise TransferError(
                f"Failed to open upload for {item.qualified_name}: {e}",
                collection_name=item.qualified_name,
                snapshot_key=key
            ) from e

        pump = UploadPump(sink)
        pump.start()
        compressor = StreamCompressor(self._config.compression_level)
        count = 0
        pages = 0

        try:
            cursor: Optional[ContinuationCursor] = None
            while True:
                page = await client.query_page(cursor, self._config.page_size)
                pages += 1
                for entry in page.items:
                    line = await self._encode_item(item, client, entry)
                    await pump.put(compressor.compress(line))
                    count += 1
                logger.debug(f"{symbol} {item.qualified_name}: page {pages}, {count} records so far")
                if not page.cursor.has_more:
                    break
                cursor = page.cursor

            await pump.put(compressor.flush())
            await pump.finish()
            await sink.close()
        except Exception as e:
            pump.cancel()
            await self._abort(sink, item)
            if isinstance(e, BackupRecoveryError):
                raise
            raise TransferError(
                f"Backup of {item.kind.value} {item.qualified_name} failed: {e}",
                collection_name=item.qualified_name,
                snapshot_key=key,
                context={"records_written": count, "pages_read": pages}
            ) from e

        return count

    async def _abort(self, sink: ObjectSink, item: WorkItem) -> None:
        try:
            await sink.abort()
        except Exception as e:
            # The original failure is the one reported
            logger.warning(f"Failed to abort upload for {item.qualified_name}: {e}")
