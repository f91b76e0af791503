"""
Unit tests for Steam chunk payload decoding.

Skipped unless the ``steam`` extra is installed.
"""
import struct
import zlib
from io import BytesIO
from zipfile import ZIP_DEFLATED, ZipFile

import pytest

pytest.importorskip("steam.client")
zstandard = pytest.importorskip("zstandard")

from steam_depot.steam_transport import decode_chunk  # noqa: E402

DATA = b"Stardew Valley chunk payload " * 40


class TestDecodeChunk:
    def test_zip(self):
        buffer = BytesIO()
        with ZipFile(buffer, "w", ZIP_DEFLATED) as zf:
            zf.writestr("z", DATA)

        assert decode_chunk(buffer.getvalue()) == DATA

    def test_zstd(self):
        footer = struct.pack("<II", zlib.crc32(DATA), len(DATA)) + b"\x00" * 4 + b"zsv"
        payload = b"VSZa" + b"\x00" * 4 + zstandard.ZstdCompressor().compress(DATA) + footer

        assert decode_chunk(payload) == DATA

    def test_zstd_crc_mismatch(self):
        footer = struct.pack("<II", zlib.crc32(DATA) ^ 1, len(DATA)) + b"\x00" * 4 + b"zsv"
        payload = b"VSZa" + b"\x00" * 4 + zstandard.ZstdCompressor().compress(DATA) + footer

        with pytest.raises(ValueError, match="CRC32"):
            decode_chunk(payload)

    def test_lzma_bad_footer(self):
        with pytest.raises(ValueError, match="invalid footer"):
            decode_chunk(b"VZa" + b"\x00" * 20 + b"xx")
