"""
In-Memory Collaborators

Fully functional in-process storage service, credential issuer and object
store. They back the test suite and dry runs, and they behave like the real
services where the engines can tell the difference: tables paginate with a
two-part continuation cursor, containers with a single marker, uploads stay
invisible until closed, and blob uploads report a content MD5.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from backup_recovery.core.base import (
    CollectionClient,
    CredentialIssuer,
    ObjectSink,
    ObjectSource,
    ObjectStore,
    StorageService
)
from backup_recovery.exceptions import TransferError
from backup_recovery.models.entities import (
    AccessLevel,
    CollectionKind,
    CollectionListing,
    ContinuationCursor,
    Page,
    ScopedCredential
)
from backup_recovery.utils.checksum import content_md5

logger = logging.getLogger(__name__)


class InMemoryCredentialIssuer(CredentialIssuer):
    """
    Issues opaque tokens and records every issue.

    Attributes:
        issued: Every credential issued, in order
        lifetime: Lifetime of issued credentials
        fail_with: If set, raised by the next issue instead of issuing
    """

    def __init__(self, lifetime_seconds: float = 3600.0):
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self.issued: List[ScopedCredential] = []
        self.fail_with: Optional[Exception] = None
        self.delay: float = 0.0

    async def issue_credential(
        self,
        account: str,
        collection: str,
        level: AccessLevel,
        kind: CollectionKind = CollectionKind.TABLE
    ) -> ScopedCredential:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        credential = ScopedCredential(
            token=f"{level.value}:{account}/{collection}:{uuid.uuid4().hex}",
            expires_at=datetime.now(timezone.utc) + self.lifetime,
            level=level,
            account=account,
            collection=collection
        )
        self.issued.append(credential)
        return credential


class InMemoryCollectionClient(CollectionClient):
    """Client over one table or container of an ``InMemoryStorageService``."""

    def __init__(self, service: "InMemoryStorageService", account: str, kind: CollectionKind, name: str, token_provider):
        self._service = service
        self.account = account
        self.kind = kind
        self.name = name
        self._token_provider = token_provider

    async def _authorize(self) -> str:
        token = await self._token_provider.get_token()
        self._service.tokens_used.append((self.account, self.kind, self.name, token))
        return token

    def _require_account(self) -> None:
        if self.account not in self._service.accounts:
            raise LookupError(f"No such account {self.account}")

    def _table(self) -> List[Dict[str, Any]]:
        self._require_account()
        tables = self._service.tables[self.account]
        if self.name not in tables:
            raise LookupError(f"No such table {self.account}/{self.name}")
        return tables[self.name]

    def _container(self) -> "OrderedDict[str, Dict[str, Any]]":
        self._require_account()
        containers = self._service.containers[self.account]
        if self.name not in containers:
            raise LookupError(f"No such container {self.account}/{self.name}")
        return containers[self.name]

    async def query_page(self, cursor: Optional[ContinuationCursor], page_size: int) -> Page:
        await self._authorize()
        self._service.page_requests += 1
        if self.kind == CollectionKind.TABLE:
            rows = self._table()
            # The row key part of the cursor is an index into the rows
            start = int(cursor.second) if cursor is not None and cursor.second else 0
            end = start + page_size
            items = [dict(row) for row in rows[start:end]]
            if end < len(rows):
                next_cursor = ContinuationCursor(first="partition", second=str(end))
            else:
                next_cursor = ContinuationCursor()
            return Page(items=items, cursor=next_cursor)

        names = list(self._container())
        start = int(cursor.first) if cursor is not None and cursor.first else 0
        end = start + page_size
        items = [{"name": name} for name in names[start:end]]
        next_cursor = ContinuationCursor.single(str(end) if end < len(names) else None)
        return Page(items=items, cursor=next_cursor)

    async def get_blob(self, name: str) -> Dict[str, Any]:
        await self._authorize()
        blob = self._container()[name]
        return {
            "content": blob["content"],
            "contentMD5": blob["contentMD5"],
            "metadata": dict(blob["metadata"]),
            "type": blob["type"]
        }

    async def create(self) -> bool:
        await self._authorize()
        self._require_account()
        if self.kind == CollectionKind.TABLE:
            if self.name in self._service.tables[self.account]:
                return False
            self._service.tables[self.account][self.name] = []
            return True
        if self.name in self._service.containers[self.account]:
            return False
        self._service.containers[self.account][self.name] = OrderedDict()
        return True

    async def insert_item(self, row: Dict[str, Any]) -> None:
        await self._authorize()
        if self._service.fail_insert_after is not None and self._service.inserts >= self._service.fail_insert_after:
            raise RuntimeError("insert rejected")
        self._table().append(dict(row))
        self._service.inserts += 1

    async def put_blob(self, name: str, info: Dict[str, Any]) -> Optional[str]:
        await self._authorize()
        content = info.get("content") or b""
        self._container()[name] = {
            "content": content,
            "contentMD5": content_md5(content),
            "metadata": dict(info.get("metadata") or {}),
            "type": info.get("type") or "BlockBlob"
        }
        return self._service.reported_md5_override or content_md5(content)


class InMemoryStorageService(StorageService):
    """
    Accounts of tables and containers held in dictionaries.

    Example:
        ```python
        storage = InMemoryStorageService(
            tables={"abc": {"def": [{"a": "b"}], "qed": []}},
            containers={"abc": {"contA": {"1": b"aaa1"}}}
        )
        ```

    Attributes:
        tables: account -> table -> rows
        containers: account -> container -> blob name -> blob
        tokens_used: ``(account, kind, name, token)`` for every authorized call
    """

    def __init__(
        self,
        tables: Optional[Dict[str, Dict[str, List[Dict[str, Any]]]]] = None,
        containers: Optional[Dict[str, Dict[str, Dict[str, bytes]]]] = None,
        accounts: Optional[List[str]] = None,
        listing_page_size: int = 1000
    ):
        self.accounts: List[str] = []
        self.tables: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
        self.containers: Dict[str, "OrderedDict[str, OrderedDict[str, Dict[str, Any]]]"] = {}
        self.listing_page_size = listing_page_size
        self.tokens_used: List[tuple] = []
        self.page_requests = 0
        self.inserts = 0
        self.fail_insert_after: Optional[int] = None
        self.reported_md5_override: Optional[str] = None
        self.fail_listing: Optional[Exception] = None

        for account, account_tables in (tables or {}).items():
            self.add_account(account)
            for name, rows in account_tables.items():
                self.tables[account][name] = [dict(row) for row in rows]
        for account, account_containers in (containers or {}).items():
            self.add_account(account)
            for name, blobs in account_containers.items():
                self.containers[account][name] = OrderedDict()
                for blob_name, content in blobs.items():
                    self.put_blob(account, name, blob_name, content)
        for account in accounts or []:
            self.add_account(account)

    def add_account(self, account: str) -> None:
        if account not in self.accounts:
            self.accounts.append(account)
            self.tables[account] = {}
            self.containers[account] = OrderedDict()

    def put_blob(
        self,
        account: str,
        container: str,
        name: str,
        content: bytes,
        metadata: Optional[Dict[str, str]] = None,
        blob_type: str = "BlockBlob"
    ) -> None:
        """Seed one blob directly."""
        self.containers[account].setdefault(container, OrderedDict())[name] = {
            "content": content,
            "contentMD5": content_md5(content),
            "metadata": dict(metadata or {}),
            "type": blob_type
        }

    async def list_accounts(self) -> List[str]:
        return list(self.accounts)

    async def list_collections(
        self,
        account: str,
        kind: CollectionKind,
        continuation_token: Optional[str] = None
    ) -> CollectionListing:
        if self.fail_listing is not None:
            raise self.fail_listing
        source = self.tables if kind == CollectionKind.TABLE else self.containers
        names = list(source.get(account, {}))
        start = int(continuation_token) if continuation_token else 0
        end = start + self.listing_page_size
        return CollectionListing(
            names=names[start:end],
            continuation_token=str(end) if end < len(names) else None
        )

    def collection(self, account: str, kind: CollectionKind, name: str, token_provider) -> InMemoryCollectionClient:
        return InMemoryCollectionClient(self, account, CollectionKind(kind), name, token_provider)


class InMemoryObjectSink(ObjectSink):
    """Buffers writes; publishes to the store only on ``close``."""

    def __init__(self, store: "InMemoryObjectStore", key: str, storage_class: Optional[str]):
        self._store = store
        self.key = key
        self.storage_class = storage_class
        self._parts: List[bytes] = []
        self.closed = False
        self.aborted = False

    async def write(self, chunk: bytes) -> None:
        if self._store.fail_writes_after is not None and len(self._parts) >= self._store.fail_writes_after:
            raise ConnectionError(f"upload of {self.key} interrupted")
        self._parts.append(bytes(chunk))
        self._store.writes += 1

    async def close(self) -> None:
        self._store.objects[self.key] = b"".join(self._parts)
        self._store.storage_classes[self.key] = self.storage_class
        self.closed = True

    async def abort(self) -> None:
        self._parts = []
        self.aborted = True
        self._store.aborted.append(self.key)


class InMemoryObjectSource(ObjectSource):
    """Serves a stored body in fixed-size chunks."""

    def __init__(self, body: bytes, chunk_size: int):
        self._body = body
        self._offset = 0
        self._chunk_size = chunk_size

    async def read(self) -> bytes:
        chunk = self._body[self._offset:self._offset + self._chunk_size]
        self._offset += len(chunk)
        return chunk


class InMemoryObjectStore(ObjectStore):
    """
    Object store backed by a dictionary.

    Attributes:
        objects: key -> body of every closed upload
        storage_classes: key -> storage class it was written with
        aborted: keys of aborted uploads
    """

    def __init__(self, read_chunk_size: int = 64 * 1024):
        self.objects: Dict[str, bytes] = {}
        self.storage_classes: Dict[str, Optional[str]] = {}
        self.aborted: List[str] = []
        self.writes = 0
        self.fail_writes_after: Optional[int] = None
        self.read_chunk_size = read_chunk_size

    async def open_write(self, key: str, storage_class: Optional[str] = None) -> InMemoryObjectSink:
        return InMemoryObjectSink(self, key, storage_class)

    async def open_read(self, key: str) -> InMemoryObjectSource:
        if key not in self.objects:
            raise TransferError(f"Snapshot {key} not found", snapshot_key=key)
        return InMemoryObjectSource(self.objects[key], self.read_chunk_size)
