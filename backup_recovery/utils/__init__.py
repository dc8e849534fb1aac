"""
Backup Recovery Utilities

Exports streaming compression, the snapshot record codec, content checksums
and progress reporting helpers.
"""

from .checksum import canonical_json, strip_fields, row_content_hash, content_md5
from .compression import CompressionHandler, StreamCompressor, StreamDecompressor
from .records import (
    encode_record,
    decode_record,
    encode_blob_record,
    decode_blob_content,
    LineDecoder
)
from .progress import choose_symbol, Heartbeat

__all__ = [
    'canonical_json',
    'strip_fields',
    'row_content_hash',
    'content_md5',
    'CompressionHandler',
    'StreamCompressor',
    'StreamDecompressor',
    'encode_record',
    'decode_record',
    'encode_blob_record',
    'decode_blob_content',
    'LineDecoder',
    'choose_symbol',
    'Heartbeat'
]
