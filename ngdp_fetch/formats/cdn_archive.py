"""CDN archive index format parser.

An archive index maps encoding keys to (offset, size) ranges inside one
CDN archive. The file is a run of fixed-size pages of sorted entries,
a table of contents holding the last key and a hash per page, and a
28-byte footer describing the field widths.

Archive-groups use 6-byte offsets (2-byte archive index + 4-byte
offset) and are detected from the footer.
"""

from __future__ import annotations

import hashlib
import struct
from io import BytesIO
from typing import BinaryIO

import structlog
from pydantic import BaseModel, Field

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.formats.base import FormatParser

logger = structlog.get_logger()


class CdnArchiveEntry(BaseModel):
    """CDN archive index entry."""

    encoding_key: bytes = Field(description="Encoding key (variable length)")
    archive_index: int | None = Field(default=None, description="Archive index (only for archive-groups)")
    offset: int = Field(description="Offset in archive data file")
    size: int = Field(description="Encoded size")


class CdnArchiveFooter(BaseModel):
    """CDN archive index footer."""

    toc_hash: bytes = Field(description="Table of contents hash (first 8 bytes of MD5)")
    version: int = Field(description="Index format version")
    reserved: bytes = Field(description="Reserved bytes")
    page_size_kb: int = Field(description="Page size in KB")
    offset_bytes: int = Field(description="Offset field size (4 for archives, 6 for archive-groups)")
    size_bytes: int = Field(description="Size field size")
    key_bytes: int = Field(description="Key length in bytes")
    footer_hash_bytes: int = Field(description="Per-page hash length")
    entry_count: int = Field(description="Number of entries")
    footer_hash: bytes = Field(description="Footer hash")

    @property
    def is_archive_group(self) -> bool:
        """Check if this is an archive-group (6-byte offsets)."""
        return self.offset_bytes == 6

    @property
    def entry_size(self) -> int:
        return self.key_bytes + self.offset_bytes + self.size_bytes


class CdnArchiveIndex(BaseModel):
    """Complete CDN archive index structure."""

    footer: CdnArchiveFooter = Field(description="Index footer")
    entries: list[CdnArchiveEntry] = Field(description="Archive entries")


class CdnArchiveParser(FormatParser[CdnArchiveIndex]):
    """Parser for CDN archive index and archive-group formats."""

    FOOTER_SIZE = 28

    def parse(self, data: bytes | BinaryIO) -> CdnArchiveIndex:
        """Parse CDN archive index or archive-group file.

        Args:
            data: Binary data or stream

        Returns:
            Parsed CDN archive index
        """
        all_data = self._as_bytes(data)
        footer = self._parse_footer(all_data)
        entries = self._parse_entries(all_data, footer)
        return CdnArchiveIndex(footer=footer, entries=entries)

    def _parse_footer(self, data: bytes) -> CdnArchiveFooter:
        """Parse archive index footer from end of file."""
        if len(data) < self.FOOTER_SIZE:
            raise DecodeError(f"Data too short for footer: {len(data)} < {self.FOOTER_SIZE}")

        footer_data = data[-self.FOOTER_SIZE:]
        footer = CdnArchiveFooter(
            toc_hash=footer_data[0:8],
            version=footer_data[8],
            reserved=footer_data[9:11],
            page_size_kb=footer_data[11],
            offset_bytes=footer_data[12],
            size_bytes=footer_data[13],
            key_bytes=footer_data[14],
            footer_hash_bytes=footer_data[15],
            # Entry count is the one little-endian field
            entry_count=struct.unpack('<I', footer_data[16:20])[0],
            footer_hash=footer_data[20:28]
        )

        if footer.offset_bytes not in (4, 5, 6) or footer.size_bytes == 0 or footer.key_bytes == 0:
            raise DecodeError(
                f"Unsupported archive index layout: offset={footer.offset_bytes} "
                f"size={footer.size_bytes} key={footer.key_bytes}"
            )
        if footer.page_size_kb == 0:
            raise DecodeError("Archive index declares zero page size")

        return footer

    def _parse_entries(self, data: bytes, footer: CdnArchiveFooter) -> list[CdnArchiveEntry]:
        """Parse entries page by page, stopping each page at its zero padding."""
        page_size = footer.page_size_kb * 1024
        toc_entry_size = footer.key_bytes + footer.footer_hash_bytes
        body_size = len(data) - self.FOOTER_SIZE
        page_count = body_size // (page_size + toc_entry_size)
        empty_key = b'\x00' * footer.key_bytes

        entries: list[CdnArchiveEntry] = []
        for page_index in range(page_count):
            page = data[page_index * page_size:(page_index + 1) * page_size]
            pos = 0
            while pos + footer.entry_size <= page_size and len(entries) < footer.entry_count:
                encoding_key = page[pos:pos + footer.key_bytes]
                if encoding_key == empty_key:
                    break
                entries.append(self._parse_entry(page[pos:pos + footer.entry_size], footer))
                pos += footer.entry_size

        if len(entries) != footer.entry_count:
            raise DecodeError(f"Archive index holds {len(entries)} entries, footer declares {footer.entry_count}")

        logger.debug(
            "archive_index_parsed",
            archive_group=footer.is_archive_group,
            pages=page_count,
            entries=len(entries)
        )
        return entries

    def _parse_entry(self, raw: bytes, footer: CdnArchiveFooter) -> CdnArchiveEntry:
        pos = footer.key_bytes
        archive_index = None
        if footer.is_archive_group:
            archive_index = struct.unpack('>H', raw[pos:pos + 2])[0]
            pos += 2
            offset_width = 4
        else:
            offset_width = footer.offset_bytes

        offset = int.from_bytes(raw[pos:pos + offset_width], 'big')
        pos += offset_width
        size = int.from_bytes(raw[pos:pos + footer.size_bytes], 'big')

        return CdnArchiveEntry(
            encoding_key=raw[:footer.key_bytes],
            archive_index=archive_index,
            offset=offset,
            size=size
        )


class CdnArchiveBuilder:
    """Builder for regular (4-byte offset) archive indexes."""

    def __init__(self, page_size_kb: int = 4):
        self.page_size_kb = page_size_kb
        self.entries: list[tuple[bytes, int, int]] = []

    def add(self, encoding_key: bytes, offset: int, size: int) -> CdnArchiveBuilder:
        self.entries.append((encoding_key, offset, size))
        return self

    def build(self) -> bytes:
        """Serialize pages, table of contents and footer."""
        page_size = self.page_size_kb * 1024
        entry_size = 16 + 4 + 4
        per_page = page_size // entry_size

        ordered = sorted(self.entries)
        pages: list[list[tuple[bytes, int, int]]] = [
            ordered[i:i + per_page] for i in range(0, len(ordered), per_page)
        ] or [[]]

        result = BytesIO()
        toc_keys = BytesIO()
        toc_hashes = BytesIO()
        for page_entries in pages:
            page = b''.join(key + struct.pack('>II', offset, size) for key, offset, size in page_entries)
            page = page.ljust(page_size, b'\x00')
            result.write(page)
            toc_keys.write(page_entries[-1][0] if page_entries else b'\x00' * 16)
            toc_hashes.write(hashlib.md5(page).digest()[:8])

        toc = toc_keys.getvalue() + toc_hashes.getvalue()
        result.write(toc)
        result.write(hashlib.md5(toc).digest()[:8])
        result.write(struct.pack('BBBBBBBB', 1, 0, 0, self.page_size_kb, 4, 4, 16, 8))
        result.write(struct.pack('<I', len(ordered)))
        result.write(b'\x00' * 8)
        return result.getvalue()


def is_archive_group(data: bytes) -> bool:
    """Check if data is an archive-group (6-byte offsets)."""
    return len(data) >= 28 and data[-16] == 6
