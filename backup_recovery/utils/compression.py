"""
Compression Utilities

Provides streaming zstd compression and decompression for snapshot bodies.
Snapshots are compressed incrementally as records are produced and
decompressed incrementally as chunks arrive, so no operation ever holds a
whole collection in memory.
"""

import logging
from typing import Optional

import zstandard as zstd

logger = logging.getLogger(__name__)

# zstd frame magic number: 0x28, 0xB5, 0x2F, 0xFD
ZSTD_MAGIC = b'\x28\xB5\x2F\xFD'


class StreamCompressor:
    """
    Incremental zstd compressor producing a single frame.

    Example:
        ```python
        compressor = StreamCompressor(level=3)
        for line in lines:
            chunk = compressor.compress(line)
            if chunk:
                await sink.write(chunk)
        await sink.write(compressor.flush())
        ```
    """

    def __init__(self, level: int = 3):
        self._cobj = zstd.ZstdCompressor(level=level).compressobj()
        self._finished = False
        self.bytes_in = 0
        self.bytes_out = 0

    def compress(self, data: bytes) -> bytes:
        """Feed bytes; returns whatever compressed output is ready (may be empty)."""
        if self._finished:
            raise ValueError("compressor already flushed")
        self.bytes_in += len(data)
        out = self._cobj.compress(data)
        self.bytes_out += len(out)
        return out

    def flush(self) -> bytes:
        """Finish the frame and return the remaining compressed bytes."""
        if self._finished:
            return b""
        self._finished = True
        out = self._cobj.flush()
        self.bytes_out += len(out)
        ratio = (1 - self.bytes_out / self.bytes_in) * 100 if self.bytes_in > 0 else 0
        logger.debug(
            f"Compressed {self.bytes_in} bytes to {self.bytes_out} bytes ({ratio:.1f}% reduction)"
        )
        return out


class StreamDecompressor:
    """Incremental zstd decompressor for a single frame."""

    def __init__(self):
        self._dobj = zstd.ZstdDecompressor().decompressobj()
        self.bytes_in = 0
        self.bytes_out = 0

    def decompress(self, data: bytes) -> bytes:
        """Feed compressed bytes; returns whatever plain output is ready."""
        if not data:
            return b""
        self.bytes_in += len(data)
        out = self._dobj.decompress(data)
        self.bytes_out += len(out)
        return out

    @property
    def finished(self) -> bool:
        """True once the end of the frame was seen, or if no input arrived at all."""
        return self.bytes_in == 0 or self._dobj.eof

    def finish(self) -> None:
        """
        Check that the input ended with a complete frame.

        Raises:
            ValueError: If the frame was cut short
        """
        if not self.finished:
            raise ValueError(f"zstd frame truncated after {self.bytes_in} compressed bytes")


class CompressionHandler:
    """
    Factory for streaming compressors plus helpers for in-memory data.

    Example:
        ```python
        handler = CompressionHandler(compression_level=3)
        compressor = handler.compressor()
        body = handler.compress_data(b'{"a":1}\\n')
        assert handler.decompress_data(body) == b'{"a":1}\\n'
        ```
    """

    def __init__(self, compression_level: int = 3):
        """
        Initialize compression handler.

        Args:
            compression_level: zstd level from 1 (fastest) to 22 (best)
        """
        if not 1 <= compression_level <= 22:
            raise ValueError("compression_level must be between 1 and 22")
        self.compression_level = compression_level

    def compressor(self) -> StreamCompressor:
        """New streaming compressor at the configured level."""
        return StreamCompressor(self.compression_level)

    def decompressor(self) -> StreamDecompressor:
        """New streaming decompressor."""
        return StreamDecompressor()

    def compress_data(self, data: bytes) -> bytes:
        """Compress in-memory data into one frame."""
        compressor = self.compressor()
        return compressor.compress(data) + compressor.flush()

    def decompress_data(self, data: bytes) -> bytes:
        """
        Decompress in-memory data.

        Zero-length input decompresses to zero-length output.
        """
        if not data:
            return b""
        if not self.is_compressed(data):
            raise ValueError("data is not a zstd frame")
        decompressor = StreamDecompressor()
        out = decompressor.decompress(data)
        decompressor.finish()
        return out

    @staticmethod
    def is_compressed(data: Optional[bytes]) -> bool:
        """Check for the zstd frame magic number."""
        return bool(data) and data[:4] == ZSTD_MAGIC
