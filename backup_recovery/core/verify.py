"""
Verify Engine

Compares two live tables by content. Volatile service-generated fields are
stripped from every row, the remainder is hashed, and the two hash sets are
compared. This is a migration sanity check, not a reconciliation tool: rows
found in only one table are counted, not listed.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from .credentials import TokenProvider
from ..config import BackupRecoveryConfig
from ..exceptions import BackupRecoveryError, TransferError
from ..models.entities import (
    AccessLevel,
    CollectionKind,
    ContinuationCursor,
    VerificationResult,
    split_qualified_name
)
from ..utils.checksum import row_content_hash, strip_fields
from .base import CredentialIssuer, StorageService

logger = logging.getLogger(__name__)


def structural_diff(left: Dict[str, Any], right: Dict[str, Any]) -> Dict[str, Any]:
    """
    Field-level difference between two rows.

    Returns:
        Mapping with ``only_left``, ``only_right`` and ``changed`` entries;
        empty when the rows are equal
    """
    diff: Dict[str, Any] = {}
    only_left = sorted(set(left) - set(right))
    only_right = sorted(set(right) - set(left))
    changed = {
        key: [left[key], right[key]]
        for key in sorted(set(left) & set(right))
        if left[key] != right[key]
    }
    if only_left:
        diff["only_left"] = only_left
    if only_right:
        diff["only_right"] = only_right
    if changed:
        diff["changed"] = changed
    return diff


class VerifyEngine:
    """
    Content-hash comparison of two tables.

    Example:
        ```python
        engine = VerifyEngine(storage, issuer, config)
        result = await engine.verify("abc/def", "abc/qqq", diffs=True)
        print(result.table1_rows, result.table2_rows, result.has_diffs)
        ```
    """

    def __init__(
        self,
        storage: StorageService,
        issuer: CredentialIssuer,
        config: Optional[BackupRecoveryConfig] = None
    ):
        self._storage = storage
        self._issuer = issuer
        self._config = config or BackupRecoveryConfig()

    async def read_table(self, qualified_name: str) -> Tuple[int, Dict[str, Dict[str, Any]]]:
        """
        Read every row of a table.

        Returns:
            ``(row count, content hash -> stripped row)``
        """
        account, table = split_qualified_name(qualified_name)
        provider = TokenProvider(
            self._issuer,
            account,
            table,
            AccessLevel.READ_ONLY,
            CollectionKind.TABLE,
            self._config.credential_refresh_margin_seconds
        )
        client = self._storage.collection(account, CollectionKind.TABLE, table, provider)

        rows = 0
        hashed: Dict[str, Dict[str, Any]] = {}
        try:
            cursor: Optional[ContinuationCursor] = None
            while True:
                page = await client.query_page(cursor, self._config.page_size)
                for row in page.items:
                    stripped = strip_fields(row, self._config.volatile_fields)
                    hashed[row_content_hash(stripped)] = stripped
                    rows += 1
                if not page.cursor.has_more:
                    break
                cursor = page.cursor
        except BackupRecoveryError:
            raise
        except Exception as e:
            raise TransferError(
                f"Failed to read table {qualified_name}: {e}",
                collection_name=qualified_name
            ) from e

        logger.info(f"Read {rows} rows ({len(hashed)} distinct) from {qualified_name}")
        return rows, hashed

    async def verify(self, table1: str, table2: str, diffs: bool = False) -> VerificationResult:
        """
        Compare two tables.

        Args:
            table1: First ``account/table``
            table2: Second ``account/table``
            diffs: Log the structural diff of every common row that has one

        Returns:
            VerificationResult with counts and diffs
        """
        rows1, hashed1 = await self.read_table(table1)
        rows2, hashed2 = await self.read_table(table2)

        common = set(hashed1) & set(hashed2)
        found: Dict[str, Any] = {}
        for digest in sorted(common):
            diff = structural_diff(hashed1[digest], hashed2[digest])
            if diff:
                found[digest] = diff
                if diffs:
                    logger.info(f"Diff for row {digest}: {diff}")

        result = VerificationResult(
            table1=table1,
            table2=table2,
            table1_rows=rows1,
            table2_rows=rows2,
            common_rows=len(common),
            only_in_table1=len(set(hashed1) - common),
            only_in_table2=len(set(hashed2) - common),
            diffs=found,
            stripped_fields=list(self._config.volatile_fields)
        )
        logger.info(f"{table1}: {rows1} rows, {table2}: {rows2} rows, {len(common)} common, {len(found)} diffs")
        if result.only_in_table1 or result.only_in_table2:
            logger.warning(
                f"{result.only_in_table1} rows only in {table1}, {result.only_in_table2} rows only in {table2}"
            )
        return result
