"""Tests for CDN archive index parser."""

import struct

import pytest

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.formats.cdn_archive import CdnArchiveBuilder, CdnArchiveParser, is_archive_group


def _key(n: int) -> bytes:
    return n.to_bytes(2, 'big') * 8


class TestCdnArchiveParser:
    """Test CDN archive index parsing."""

    def test_parse_built_index(self):
        data = (
            CdnArchiveBuilder()
            .add(_key(2), offset=500, size=30)
            .add(_key(1), offset=0, size=500)
            .build()
        )

        index = CdnArchiveParser().parse(data)

        assert index.footer.entry_count == 2
        assert index.footer.key_bytes == 16
        assert index.footer.offset_bytes == 4
        assert not index.footer.is_archive_group
        assert [(e.encoding_key, e.offset, e.size) for e in index.entries] == [
            (_key(1), 0, 500),
            (_key(2), 500, 30),
        ]
        assert index.entries[0].archive_index is None

    def test_multiple_pages(self):
        """Entries continue across pages; page padding is skipped."""
        builder = CdnArchiveBuilder(page_size_kb=1)
        for i in range(1, 100):
            builder.add(_key(i), offset=i * 100, size=100)

        index = CdnArchiveParser().parse(builder.build())

        assert len(index.entries) == 99
        assert index.entries[-1].encoding_key == _key(99)
        assert index.entries[-1].offset == 9900

    def test_empty_index(self):
        index = CdnArchiveParser().parse(CdnArchiveBuilder().build())
        assert index.entries == []

    def test_entry_count_mismatch(self):
        data = bytearray(CdnArchiveBuilder().add(_key(1), 0, 10).build())
        data[-12:-8] = struct.pack('<I', 5)
        with pytest.raises(DecodeError, match="footer declares 5"):
            CdnArchiveParser().parse(bytes(data))

    def test_too_short(self):
        with pytest.raises(DecodeError, match="too short"):
            CdnArchiveParser().parse(b'\x00' * 10)

    def test_unsupported_layout(self):
        data = bytearray(CdnArchiveBuilder().add(_key(1), 0, 10).build())
        data[-16] = 9
        with pytest.raises(DecodeError, match="Unsupported archive index layout"):
            CdnArchiveParser().parse(bytes(data))

    def test_archive_group_detection(self):
        data = bytearray(CdnArchiveBuilder().build())
        assert not is_archive_group(bytes(data))
        data[-16] = 6
        assert is_archive_group(bytes(data))
