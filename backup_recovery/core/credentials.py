"""
Scoped Credential Provider

Lazily obtains and refreshes a time-limited credential for one collection.
Every storage call asks the provider for a token; the provider goes back to
the issuer only when no credential is held or the held one is about to
expire.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from .base import CredentialIssuer
from ..models.entities import AccessLevel, CollectionKind, ScopedCredential

logger = logging.getLogger(__name__)


class TokenProvider:
    """
    Expiry-aware token source bound to ``(account, collection, level, kind)``.

    Concurrent callers that find the credential stale share a single
    in-flight refresh. If that refresh fails, every caller waiting on it
    receives the same exception and the next call starts a fresh attempt.

    Example:
        ```python
        provider = TokenProvider(issuer, "abc", "def", AccessLevel.READ_ONLY)
        token = await provider.get_token()
        ```
    """

    def __init__(
        self,
        issuer: CredentialIssuer,
        account: str,
        collection: str,
        level: AccessLevel = AccessLevel.READ_ONLY,
        kind: CollectionKind = CollectionKind.TABLE,
        refresh_margin_seconds: float = 300.0
    ):
        self._issuer = issuer
        self.account = account
        self.collection = collection
        self.level = level
        self.kind = kind
        self._margin = timedelta(seconds=refresh_margin_seconds)
        self._credential: Optional[ScopedCredential] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _is_fresh(self) -> bool:
        return self._credential is not None and not self._credential.expires_within(self._margin)

    async def _refresh(self) -> ScopedCredential:
        logger.debug(f"Issuing {self.level.value} credential for {self.account}/{self.collection}")
        credential = await self._issuer.issue_credential(
            self.account, self.collection, self.level, self.kind
        )
        self._credential = credential
        self.refresh_count += 1
        return credential

    async def get_credential(self) -> ScopedCredential:
        """Current credential, refreshing first if it is missing or near expiry."""
        if self._is_fresh():
            return self._credential

        async with self._lock:
            if self._is_fresh():
                return self._credential
            if self._refresh_task is None or self._refresh_task.done():
                self._refresh_task = asyncio.ensure_future(self._refresh())
            task = self._refresh_task

        try:
            return await asyncio.shield(task)
        finally:
            async with self._lock:
                if self._refresh_task is task and task.done():
                    self._refresh_task = None

    async def get_token(self) -> str:
        """Token string of the current credential."""
        credential = await self.get_credential()
        return credential.token
