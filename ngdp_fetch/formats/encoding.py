"""Encoding format parser for NGDP/CASC."""

from __future__ import annotations

import hashlib
import struct
from io import BytesIO
from typing import BinaryIO

import structlog
from pydantic import BaseModel, Field

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.formats.base import FormatParser, read_exact

logger = structlog.get_logger()


class EncodingHeader(BaseModel):
    """Encoding file header."""

    magic: bytes = Field(description="Magic bytes (EN)")
    version: int = Field(description="Format version")
    ckey_size: int = Field(description="Content key size in bytes")
    ekey_size: int = Field(description="Encoding key size in bytes")
    ckey_page_size_kb: int = Field(description="CKey page size in KB")
    ekey_page_size_kb: int = Field(description="EKey page size in KB")
    ckey_page_count: int = Field(description="Number of CKey pages")
    ekey_page_count: int = Field(description="Number of EKey pages")
    unknown: int = Field(description="Unknown field")
    espec_size: int = Field(description="ESpec table size in bytes")


class CKeyPageEntry(BaseModel):
    """CKey page entry mapping content to encoding keys."""

    content_key: bytes = Field(description="Content key (MD5 hash)")
    encoding_keys: list[bytes] = Field(description="Encoding keys in stored order")
    file_size: int = Field(description="Decompressed file size")


class EncodingFile(BaseModel):
    """Complete encoding file structure (content key side)."""

    header: EncodingHeader = Field(description="File header")
    espec_table: list[str] = Field(description="ESpec string table")
    ckey_index: list[tuple[bytes, bytes]] = Field(description="CKey page index (first_key, checksum)")
    entries: list[CKeyPageEntry] = Field(description="All CKey page entries in page order")


class EncodingParser(FormatParser[EncodingFile]):
    """Parser for encoding format.

    Layout: header, ESpec table, CKey index, CKey pages, EKey index,
    EKey pages. Only the content key side is needed for resolution, so
    the EKey section is left unread.
    """

    ENCODING_MAGIC = b'EN'
    HEADER_SIZE = 22
    ENTRY_FIXED_SIZE = 6

    def parse(self, data: bytes | BinaryIO) -> EncodingFile:
        """Parse encoding file and every CKey page.

        Args:
            data: Binary data or stream

        Returns:
            Parsed encoding file

        Raises:
            DecodeError: On bad magic, truncation or page checksum mismatch
        """
        stream = self._as_stream(data)

        header = self._parse_header(stream)
        espec_table = self._parse_espec_table(stream, header)
        ckey_index = self._parse_page_index(stream, header.ckey_page_count, header.ckey_size)

        page_size = header.ckey_page_size_kb * 1024
        entries: list[CKeyPageEntry] = []
        for page_index, (first_key, checksum) in enumerate(ckey_index):
            page_data = read_exact(stream, page_size, f"CKey page {page_index}")
            if hashlib.md5(page_data).digest() != checksum:
                raise DecodeError(f"CKey page {page_index} checksum mismatch")

            page_entries = self._parse_ckey_page(page_data, header, page_index)
            if page_entries and page_entries[0].content_key != first_key:
                logger.warning(
                    "encoding_page_first_key_mismatch",
                    page_index=page_index,
                    expected=first_key.hex(),
                    actual=page_entries[0].content_key.hex()
                )
            entries.extend(page_entries)

        logger.debug("encoding_parsed", pages=len(ckey_index), entries=len(entries))

        return EncodingFile(
            header=header,
            espec_table=espec_table,
            ckey_index=ckey_index,
            entries=entries
        )

    def _parse_header(self, stream: BinaryIO) -> EncodingHeader:
        """Parse encoding file header."""
        header_data = read_exact(stream, self.HEADER_SIZE, "encoding header")

        magic = header_data[0:2]
        if magic != self.ENCODING_MAGIC:
            raise DecodeError(f"Invalid encoding magic: {magic!r}")

        version = header_data[2]
        ckey_size = header_data[3]
        ekey_size = header_data[4]
        ckey_page_size_kb, ekey_page_size_kb = struct.unpack('>HH', header_data[5:9])
        ckey_page_count, ekey_page_count = struct.unpack('>II', header_data[9:17])
        unknown = header_data[17]
        espec_size = struct.unpack('>I', header_data[18:22])[0]

        if ckey_size == 0 or ekey_size == 0:
            raise DecodeError("Encoding header declares zero-length keys")
        if ckey_page_count and ckey_page_size_kb == 0:
            raise DecodeError("Encoding header declares zero-size CKey pages")

        return EncodingHeader(
            magic=magic,
            version=version,
            ckey_size=ckey_size,
            ekey_size=ekey_size,
            ckey_page_size_kb=ckey_page_size_kb,
            ekey_page_size_kb=ekey_page_size_kb,
            ckey_page_count=ckey_page_count,
            ekey_page_count=ekey_page_count,
            unknown=unknown,
            espec_size=espec_size
        )

    def _parse_espec_table(self, stream: BinaryIO, header: EncodingHeader) -> list[str]:
        """Parse ESpec string table."""
        if header.espec_size == 0:
            return []

        espec_data = read_exact(stream, header.espec_size, "ESpec table")
        especs = espec_data.split(b'\x00')
        return [spec.decode('ascii', errors='replace') for spec in especs if spec]

    def _parse_page_index(self, stream: BinaryIO, page_count: int, key_size: int) -> list[tuple[bytes, bytes]]:
        index: list[tuple[bytes, bytes]] = []
        for _ in range(page_count):
            first_key = read_exact(stream, key_size, "page index key")
            checksum = read_exact(stream, 16, "page index checksum")
            index.append((first_key, checksum))
        return index

    def _parse_ckey_page(self, page_data: bytes, header: EncodingHeader, page_index: int) -> list[CKeyPageEntry]:
        """Parse one CKey page.

        Entry layout: key count (1 byte), file size (40-bit big-endian),
        content key, then key count encoding keys. A zero key count
        starts the page padding.
        """
        entries: list[CKeyPageEntry] = []
        offset = 0

        while offset < len(page_data):
            key_count = page_data[offset]
            if key_count == 0:
                break

            entry_size = self.ENTRY_FIXED_SIZE + header.ckey_size + key_count * header.ekey_size
            if offset + entry_size > len(page_data):
                raise DecodeError(f"CKey page {page_index} entry at {offset} extends beyond page")

            size_high = page_data[offset + 1]
            size_low = struct.unpack('>I', page_data[offset + 2:offset + 6])[0]
            pos = offset + self.ENTRY_FIXED_SIZE

            content_key = page_data[pos:pos + header.ckey_size]
            pos += header.ckey_size

            encoding_keys = [
                page_data[pos + i * header.ekey_size:pos + (i + 1) * header.ekey_size]
                for i in range(key_count)
            ]

            entries.append(CKeyPageEntry(
                content_key=content_key,
                encoding_keys=encoding_keys,
                file_size=(size_high << 32) | size_low
            ))
            offset += entry_size

        return entries


class EncodingBuilder:
    """Builder for encoding files with a content key section only."""

    def __init__(self, page_size_kb: int = 1):
        self.page_size_kb = page_size_kb
        self._entries: dict[bytes, CKeyPageEntry] = {}

    def add(self, content_key: bytes, encoding_keys: list[bytes], file_size: int = 0) -> EncodingBuilder:
        """Add a content key entry."""
        self._entries[content_key] = CKeyPageEntry(
            content_key=content_key,
            encoding_keys=list(encoding_keys),
            file_size=file_size
        )
        return self

    def build(self) -> bytes:
        """Serialize to encoding file bytes, entries sorted by content key."""
        page_size = self.page_size_kb * 1024
        pages: list[tuple[bytes, bytearray]] = []

        for ckey in sorted(self._entries):
            entry = self._entries[ckey]
            encoded = (
                bytes([len(entry.encoding_keys)])
                + struct.pack('>BI', (entry.file_size >> 32) & 0xFF, entry.file_size & 0xFFFFFFFF)
                + entry.content_key
                + b''.join(entry.encoding_keys)
            )
            if len(encoded) > page_size:
                raise ValueError("Entry does not fit in a page")
            if not pages or len(pages[-1][1]) + len(encoded) > page_size:
                pages.append((entry.content_key, bytearray()))
            pages[-1][1].extend(encoded)

        result = BytesIO()
        result.write(b'EN')
        result.write(struct.pack('>BBB', 1, 16, 16))
        result.write(struct.pack('>HH', self.page_size_kb, self.page_size_kb))
        result.write(struct.pack('>II', len(pages), 0))
        result.write(b'\x00')
        result.write(struct.pack('>I', 0))

        padded = [bytes(page).ljust(page_size, b'\x00') for _, page in pages]
        for (first_key, _), page in zip(pages, padded, strict=True):
            result.write(first_key)
            result.write(hashlib.md5(page).digest())
        for page in padded:
            result.write(page)

        return result.getvalue()
