"""
Tests for compression, the record codec, checksums and progress helpers.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from backup_recovery.utils.checksum import canonical_json, content_md5, row_content_hash, strip_fields
from backup_recovery.utils.compression import (
    CompressionHandler,
    StreamCompressor,
    StreamDecompressor
)
from backup_recovery.utils.progress import GLYPHS, Heartbeat, choose_symbol
from backup_recovery.utils.records import (
    LineDecoder,
    decode_blob_content,
    encode_blob_record,
    encode_record
)


class TestCompression:
    def test_streamed_output_is_one_frame(self):
        compressor = StreamCompressor(level=3)
        body = b"".join(compressor.compress(b'{"nr":%d}\n' % i) for i in range(1, 4)) + compressor.flush()
        assert CompressionHandler().decompress_data(body) == b'{"nr":1}\n{"nr":2}\n{"nr":3}\n'

    def test_flush_twice_returns_nothing(self):
        compressor = StreamCompressor()
        compressor.flush()
        assert compressor.flush() == b""
        with pytest.raises(ValueError):
            compressor.compress(b"late")

    def test_decompress_in_small_chunks(self):
        data = b"".join(b"line %d\n" % i for i in range(2000))
        body = CompressionHandler(compression_level=9).compress_data(data)
        decompressor = StreamDecompressor()
        out = b"".join(decompressor.decompress(body[i:i + 7]) for i in range(0, len(body), 7))
        assert out == data

    def test_finish_accepts_complete_frame(self):
        body = CompressionHandler().compress_data(b"line\n" * 100)
        decompressor = StreamDecompressor()
        decompressor.decompress(body)
        assert decompressor.finished
        decompressor.finish()

    def test_finish_rejects_cut_frame(self):
        body = CompressionHandler().compress_data(b"".join(b"line %d\n" % i for i in range(2000)))
        decompressor = StreamDecompressor()
        decompressor.decompress(body[:len(body) // 2])
        assert not decompressor.finished
        with pytest.raises(ValueError, match="truncated"):
            decompressor.finish()

    def test_decompress_data_rejects_cut_frame(self):
        body = CompressionHandler().compress_data(b"".join(b"row %d\n" % i for i in range(2000)))
        with pytest.raises(ValueError, match="truncated"):
            CompressionHandler().decompress_data(body[:-2])

    def test_empty_input(self):
        handler = CompressionHandler()
        assert handler.decompress_data(b"") == b""
        assert handler.decompress_data(handler.compress_data(b"")) == b""

    def test_rejects_plain_data(self):
        with pytest.raises(ValueError):
            CompressionHandler().decompress_data(b'{"a":1}\n')

    def test_level_bounds(self):
        with pytest.raises(ValueError):
            CompressionHandler(compression_level=0)
        with pytest.raises(ValueError):
            CompressionHandler(compression_level=23)

    def test_is_compressed(self):
        handler = CompressionHandler()
        assert handler.is_compressed(handler.compress_data(b"x"))
        assert not handler.is_compressed(b"x")
        assert not handler.is_compressed(None)


class TestRecords:
    def test_compact_utf8_line(self):
        assert encode_record({"a": "b\n", "ü": 1}) == '{"a":"b\\n","ü":1}\n'.encode("utf-8")

    def test_sdk_scalar_types(self):
        line = encode_record({
            "when": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "amount": Decimal("1.5"),
            "raw": b"\x00\x01",
        })
        assert line == (
            b'{"when":"2024-01-02T03:04:05+00:00",'
            b'"id":"12345678-1234-5678-1234-567812345678",'
            b'"amount":1.5,"raw":"AAE="}\n'
        )

    def test_unserializable_type_raises(self):
        with pytest.raises(TypeError):
            encode_record({"x": object()})

    def test_blob_record(self):
        line = encode_blob_record("1", {"content": b"aaa1", "contentMD5": "md5", "metadata": {}, "type": "BlockBlob"})
        decoder = LineDecoder()
        [record] = list(decoder.feed(line))
        assert record["name"] == "1"
        assert record["info"]["contentMD5"] == "md5"
        assert decode_blob_content(record["info"]) == b"aaa1"

    def test_decoder_handles_split_lines_and_multibyte_characters(self):
        data = encode_record({"k": "héllo"}) + encode_record({"k": "wörld"})
        decoder = LineDecoder()
        records = []
        for i in range(len(data)):
            records.extend(decoder.feed(data[i:i + 1]))
        records.extend(decoder.finish())
        assert records == [{"k": "héllo"}, {"k": "wörld"}]
        assert decoder.records_decoded == 2

    def test_decoder_skips_blank_lines_and_keeps_unterminated_tail(self):
        decoder = LineDecoder()
        records = list(decoder.feed(b'{"a":1}\n\n{"a":2}'))
        assert records == [{"a": 1}]
        assert list(decoder.finish()) == [{"a": 2}]
        assert list(decoder.finish()) == []


class TestChecksum:
    def test_hash_ignores_field_order(self):
        assert row_content_hash({"a": 1, "b": 2}) == row_content_hash({"b": 2, "a": 1})
        assert row_content_hash({"a": 1}) != row_content_hash({"a": 2})

    def test_canonical_json(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_strip_fields_copies(self):
        row = {"a": 1, "Timestamp": "t"}
        assert strip_fields(row, ["Timestamp", "absent"]) == {"a": 1}
        assert row == {"a": 1, "Timestamp": "t"}

    def test_content_md5_is_base64(self):
        assert content_md5(b"") == "1B2M2Y8AsgTpgAmY7PhCfg=="


class TestProgress:
    def test_symbols_cycle(self):
        assert choose_symbol(0) == GLYPHS[0]
        assert choose_symbol(len(GLYPHS) + 1) == GLYPHS[1]

    def test_heartbeat_logs_on_interval_boundaries(self, caplog):
        heartbeat = Heartbeat("abc/def", interval=3)
        with caplog.at_level(logging.INFO, logger="backup_recovery.utils.progress"):
            for _ in range(7):
                heartbeat.tick()
            heartbeat.tick(5)
        messages = [r.getMessage() for r in caplog.records]
        assert messages == [
            "abc/def: 3 records processed",
            "abc/def: 6 records processed",
            "abc/def: 12 records processed",
        ]
        assert heartbeat.count == 12
        assert heartbeat.beats == 4

    def test_heartbeat_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            Heartbeat("x", interval=0)
