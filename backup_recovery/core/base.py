"""
Collaborator Interfaces

Abstract base classes for everything the core engines talk to: the storage
service holding accounts and collections, the credential issuer, the object
store that keeps snapshots, and the metrics sink. The core never imports a
concrete SDK; implementations live in ``storage_clients`` and ``monitoring``.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, TypeVar

from ..models.entities import (
    AccessLevel,
    CollectionKind,
    CollectionListing,
    ContinuationCursor,
    Page,
    ScopedCredential
)

T = TypeVar('T')


class CollectionClient(ABC):
    """
    Handle on one table or container, bound to a scoped credential.

    Table items are row mappings. Container items are blob descriptors whose
    content is fetched with ``get_blob``.
    """

    @abstractmethod
    async def query_page(self, cursor: Optional[ContinuationCursor], page_size: int) -> Page:
        """
        Fetch one page of items.

        Args:
            cursor: Cursor returned by the previous page (None for the first)
            page_size: Maximum number of items to return

        Returns:
            Page whose cursor has both parts set while more pages remain
        """
        pass

    @abstractmethod
    async def get_blob(self, name: str) -> Dict[str, Any]:
        """
        Fetch one blob.

        Returns:
            Mapping with ``content`` (bytes), ``contentMD5``, ``metadata`` and ``type``
        """
        pass

    @abstractmethod
    async def create(self) -> bool:
        """Create the collection. Returns False if it already existed."""
        pass

    @abstractmethod
    async def insert_item(self, row: Dict[str, Any]) -> None:
        """Insert one table row."""
        pass

    @abstractmethod
    async def put_blob(self, name: str, info: Dict[str, Any]) -> Optional[str]:
        """
        Upload one blob.

        Args:
            name: Blob name
            info: Mapping with ``content`` (bytes), ``metadata`` and ``type``

        Returns:
            Content MD5 reported by the service
        """
        pass


class StorageService(ABC):
    """Accounts and collections of the storage being backed up."""

    @abstractmethod
    async def list_accounts(self) -> List[str]:
        """Names of every account this service can reach."""
        pass

    @abstractmethod
    async def list_collections(
        self,
        account: str,
        kind: CollectionKind,
        continuation_token: Optional[str] = None
    ) -> CollectionListing:
        """One page of collection names of ``kind`` in ``account``."""
        pass

    @abstractmethod
    def collection(
        self,
        account: str,
        kind: CollectionKind,
        name: str,
        token_provider
    ) -> CollectionClient:
        """
        Client for one collection.

        Args:
            token_provider: ``TokenProvider`` supplying the
                scoped credential for every call the client makes
        """
        pass


class CredentialIssuer(ABC):
    """Issues time-limited credentials scoped to one collection."""

    @abstractmethod
    async def issue_credential(
        self,
        account: str,
        collection: str,
        level: AccessLevel,
        kind: CollectionKind = CollectionKind.TABLE
    ) -> ScopedCredential:
        """
        Issue a credential for ``account/collection`` at ``level``.

        ``kind`` tells the issuer which service the collection lives in;
        storage services sign tables and containers differently.
        """
        pass


class ObjectSink(ABC):
    """
    Streaming upload of one object.

    Nothing becomes visible under the key until ``close`` succeeds. ``abort``
    discards everything written so far.
    """

    @abstractmethod
    async def write(self, chunk: bytes) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def abort(self) -> None:
        pass


class ObjectSource(ABC):
    """Streaming download of one object."""

    @abstractmethod
    async def read(self) -> bytes:
        """Next chunk of the body; ``b""`` once the body is exhausted."""
        pass

    async def close(self) -> None:
        """Release the underlying stream."""
        return None

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read()
            if not chunk:
                break
            yield chunk


class ObjectStore(ABC):
    """Keyed store for snapshot objects."""

    @abstractmethod
    async def open_write(self, key: str, storage_class: Optional[str] = None) -> ObjectSink:
        pass

    @abstractmethod
    async def open_read(self, key: str) -> ObjectSource:
        """
        Open ``key`` for reading.

        Raises:
            TransferError: If the object does not exist or cannot be read
        """
        pass


class MetricsSink(ABC):
    """Receives per-collection counts and timings."""

    @abstractmethod
    def count(self, name: str, value: int) -> None:
        pass

    @abstractmethod
    async def timer(self, name: str, operation: Awaitable[T]) -> T:
        """Await ``operation``, record its duration under ``name`` and return its result."""
        pass
