"""
Snapshot Record Codec

A snapshot body is newline-delimited JSON: exactly one compact JSON object
per line, each line terminated by ``\\n``. Table rows are written as their
field mapping; container blobs as ``{"name": ..., "info": {...}}`` with the
content base64 encoded.
"""

import base64
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List
from uuid import UUID

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    """Encode the non-JSON scalar types storage SDKs hand back."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_record(record: Dict[str, Any]) -> bytes:
    """Serialize one record as a compact JSON line (UTF-8, trailing newline)."""
    line = json.dumps(record, separators=(",", ":"), ensure_ascii=False, default=_json_default)
    return line.encode("utf-8") + b"\n"


def decode_record(line: bytes) -> Dict[str, Any]:
    """Parse one JSON line."""
    return json.loads(line)


def encode_blob_record(name: str, blob: Dict[str, Any]) -> bytes:
    """
    Serialize a fetched blob.

    Args:
        name: Blob name
        blob: Mapping with ``content`` (bytes) plus ``contentMD5``,
            ``metadata`` and ``type``
    """
    info = dict(blob)
    content = info.get("content") or b""
    if isinstance(content, str):
        content = content.encode("utf-8")
    info["content"] = base64.b64encode(content).decode("ascii")
    return encode_record({"name": name, "info": info})


def decode_blob_content(info: Dict[str, Any]) -> bytes:
    """Content bytes of a blob record's ``info``."""
    return base64.b64decode(info.get("content") or "")


class LineDecoder:
    """
    Split a stream of byte chunks into parsed records.

    Chunks may end anywhere, including in the middle of a multi-byte
    character; incomplete trailing data is held until the next chunk.
    Blank lines are skipped.

    Example:
        ```python
        decoder = LineDecoder()
        for chunk in chunks:
            for record in decoder.feed(chunk):
                handle(record)
        for record in decoder.finish():
            handle(record)
        ```
    """

    def __init__(self):
        self._buffer = b""
        self.records_decoded = 0

    def feed(self, chunk: bytes) -> Iterator[Dict[str, Any]]:
        """Yield every record completed by ``chunk``."""
        if not chunk:
            return
        self._buffer += chunk
        lines: List[bytes] = self._buffer.split(b"\n")
        self._buffer = lines.pop()
        for line in lines:
            if line.strip():
                self.records_decoded += 1
                yield decode_record(line)

    def finish(self) -> Iterator[Dict[str, Any]]:
        """Yield a final record that lacked a trailing newline."""
        remaining, self._buffer = self._buffer, b""
        if remaining.strip():
            self.records_decoded += 1
            yield decode_record(remaining)
