"""
Restore Engine

Replays one snapshot into a destination table or container. The destination
is created first; if it already existed it must be empty, otherwise the
restore is refused before any write. The snapshot is streamed through zstd
decompression and line parsing, and records are written with bounded
concurrency. Restored blobs are checked against the content MD5 captured at
backup time.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .credentials import TokenProvider
from ..config import BackupRecoveryConfig
from ..exceptions import (
    BackupRecoveryError,
    IntegrityError,
    RestoreConflictError,
    TransferError
)
from ..models.entities import (
    AccessLevel,
    CollectionKind,
    RestoreRequest,
    RestoreResult,
    split_qualified_name
)
from ..utils.compression import StreamDecompressor
from ..utils.progress import Heartbeat, choose_symbol
from ..utils.records import LineDecoder, decode_blob_content
from .base import CollectionClient, CredentialIssuer, ObjectStore, StorageService

logger = logging.getLogger(__name__)


class BoundedWriter:
    """
    Runs record writes concurrently with at most ``limit`` in flight.

    The first failed write is remembered; later ``submit`` calls raise it so
    no further writes are started, and ``drain`` raises it once every
    in-flight write has settled.
    """

    def __init__(self, limit: int):
        self._semaphore = asyncio.Semaphore(limit)
        self._tasks: Set[asyncio.Task] = set()
        self._error: Optional[BaseException] = None

    async def submit(self, write: Callable[..., Awaitable[Any]], *args) -> None:
        if self._error is not None:
            raise self._error
        await self._semaphore.acquire()
        if self._error is not None:
            self._semaphore.release()
            raise self._error
        task = asyncio.ensure_future(write(*args))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._semaphore.release()
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and self._error is None:
            self._error = error

    async def settle(self) -> None:
        """Wait for in-flight writes without raising their failures."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def drain(self) -> None:
        """Wait for in-flight writes, then raise the first failure if any."""
        await self.settle()
        if self._error is not None:
            raise self._error


class RestoreEngine:
    """
    Restores snapshots into tables and containers.

    Example:
        ```python
        engine = RestoreEngine(storage, issuer, object_store, config)
        result = await engine.restore(
            RestoreRequest(kind=CollectionKind.TABLE, name="abc/def", remap="abc/qqq")
        )
        ```
    """

    def __init__(
        self,
        storage: StorageService,
        issuer: CredentialIssuer,
        object_store: ObjectStore,
        config: Optional[BackupRecoveryConfig] = None
    ):
        self._storage = storage
        self._issuer = issuer
        self._object_store = object_store
        self._config = config or BackupRecoveryConfig()

    async def restore(self, request: RestoreRequest, index: int = 0) -> RestoreResult:
        """
        Restore one snapshot.

        Args:
            request: Snapshot source and optional remap destination
            index: Position of the request in its phase, used to pick a log symbol

        Returns:
            RestoreResult with the number of records written

        Raises:
            ConfigValidationError: If ``name`` or ``remap`` is not ``account/collection``
            RestoreConflictError: If the destination already holds data
            IntegrityError: If a restored blob's MD5 differs from the snapshot
            TransferError: If the snapshot cannot be read or a write fails
        """
        split_qualified_name(request.name)
        target_account, target_name = split_qualified_name(request.target)
        key = request.snapshot_key
        symbol = choose_symbol(index)
        label = f"{request.kind.value} {request.name} -> {request.target}"
        logger.info(f"Beginning restore of {label} with symbol {symbol}")

        start_time = time.time()
        provider = TokenProvider(
            self._issuer,
            target_account,
            target_name,
            AccessLevel.READ_WRITE,
            request.kind,
            self._config.credential_refresh_margin_seconds
        )
        client = self._storage.collection(target_account, request.kind, target_name, provider)

        try:
            await self._ensure_empty_destination(client, request)
            restored = await self._replay(request, client, key, target_account, target_name, label)
        except BackupRecoveryError:
            raise
        except Exception as e:
            raise TransferError(
                f"Restore of {label} failed: {e}",
                collection_name=request.target,
                snapshot_key=key
            ) from e

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"Finished restore of {label} ({symbol}): {restored} records in {elapsed_ms:.0f}ms")
        return RestoreResult(
            kind=request.kind,
            source_name=request.name,
            target_name=request.target,
            records_restored=restored,
            execution_time_ms=elapsed_ms
        )

    async def _ensure_empty_destination(self, client: CollectionClient, request: RestoreRequest) -> None:
        created = await client.create()
        if created:
            logger.debug(f"Created {request.kind.value} {request.target}")
            return
        probe = await client.query_page(None, 1)
        if probe.items:
            raise RestoreConflictError(request.name, request.target)
        logger.debug(f"{request.kind.value} {request.target} already exists but is empty")

    async def _replay(
        self,
        request: RestoreRequest,
        client: CollectionClient,
        key: str,
        target_account: str,
        target_name: str,
        label: str
    ) -> int:
        source = await self._object_store.open_read(key)
        decompressor = StreamDecompressor()
        decoder = LineDecoder()
        writer = BoundedWriter(self._config.insert_concurrency)
        heartbeat = Heartbeat(label, self._config.heartbeat_interval, logger)

        if request.kind == CollectionKind.TABLE:
            async def write(record: Dict[str, Any]) -> None:
                await client.insert_item(record)
                heartbeat.tick()
        else:
            async def write(record: Dict[str, Any]) -> None:
                await self._restore_blob(client, record, target_account, target_name)
                heartbeat.tick()

        try:
            async for chunk in source:
                for record in decoder.feed(decompressor.decompress(chunk)):
                    await writer.submit(write, record)
            try:
                decompressor.finish()
            except ValueError as e:
                raise TransferError(
                    f"Snapshot {key} is truncated: {e}",
                    collection_name=request.target,
                    snapshot_key=key
                ) from e
            for record in decoder.finish():
                await writer.submit(write, record)
        except Exception:
            await writer.settle()
            raise
        finally:
            await source.close()

        await writer.drain()
        return heartbeat.count

    async def _restore_blob(
        self,
        client: CollectionClient,
        record: Dict[str, Any],
        account: str,
        container: str
    ) -> None:
        name = record["name"]
        info = record.get("info") or {}
        actual = await client.put_blob(name, {
            "content": decode_blob_content(info),
            "contentType": info.get("contentType"),
            "metadata": info.get("metadata") or {},
            "type": info.get("type")
        })
        expected = info.get("contentMD5")
        if actual != expected:
            raise IntegrityError(account, container, name, expected, actual)
