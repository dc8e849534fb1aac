"""
Checksum Calculation Utilities

Content hashes used by verify (row identity) and by container restore
(blob MD5 round-trip check).
"""

import base64
import hashlib
import json
import logging
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)


def canonical_json(row: Dict[str, Any]) -> str:
    """Stable JSON rendering: sorted keys, compact separators."""
    return json.dumps(row, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def strip_fields(row: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Copy of ``row`` without the given fields."""
    excluded = set(fields)
    return {key: value for key, value in row.items() if key not in excluded}


def row_content_hash(row: Dict[str, Any]) -> str:
    """
    SHA-256 hex digest of a row's canonical JSON.

    Two rows with the same fields and values hash identically regardless of
    field order.
    """
    return hashlib.sha256(canonical_json(row).encode("utf-8")).hexdigest()


def content_md5(data: bytes) -> str:
    """Base64 encoded MD5 digest, the form blob services report."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")
