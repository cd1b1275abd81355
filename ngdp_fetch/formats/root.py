"""Root format parser for NGDP/CASC."""

from __future__ import annotations

import struct
from io import BytesIO
from typing import BinaryIO

import structlog
from pydantic import BaseModel, Field

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.core.types import ContentFlags
from ngdp_fetch.formats.base import FormatParser, read_exact

logger = structlog.get_logger()

ROOT_MAGICS = (b'MFST', b'TSFM')


class RootRecord(BaseModel):
    """Root file record."""

    file_id: int = Field(description="File Data ID")
    content_key: bytes = Field(description="Content key (16 bytes)")
    name_hash: int | None = Field(default=None, description="Jenkins name hash, absent for NoNameHash blocks")


class RootBlock(BaseModel):
    """Root file block."""

    content_flags: int = Field(description="Content flags")
    locale_flags: int = Field(description="Locale flags")
    records: list[RootRecord] = Field(description="File records")

    @property
    def has_name_hashes(self) -> bool:
        return not self.content_flags & ContentFlags.NO_NAME_HASH


class RootHeader(BaseModel):
    """Root file header."""

    version: int = Field(description="Root format version")
    magic: bytes | None = Field(default=None, description="Magic bytes (MFST)")
    header_size: int | None = Field(default=None, description="Header size (v3+)")
    version_field: int | None = Field(default=None, description="Version field (v3+)")
    total_files: int | None = Field(default=None, description="Total file count")
    named_files: int | None = Field(default=None, description="Named file count")


class RootFile(BaseModel):
    """Complete root file structure."""

    header: RootHeader = Field(description="File header")
    blocks: list[RootBlock] = Field(description="Data blocks")


def decode_file_ids(deltas: list[int]) -> list[int]:
    """Expand File Data ID deltas: each id is previous + 1 + delta."""
    file_ids: list[int] = []
    current_id = -1
    for delta in deltas:
        current_id = current_id + 1 + delta
        file_ids.append(current_id)
    return file_ids


def encode_file_ids(file_ids: list[int]) -> list[int]:
    """Inverse of decode_file_ids."""
    deltas: list[int] = []
    previous = -1
    for file_id in file_ids:
        deltas.append(file_id - previous - 1)
        previous = file_id
    return deltas


class RootParser(FormatParser[RootFile]):
    """Parser for root format.

    Three layouts are recognised:

    - v1: no magic, records interleave content key and name hash
    - v2: MFST magic with total/named counts, keys then hashes per block
    - v3: MFST magic with explicit header size and split content flags
    """

    V3_HEADER_THRESHOLD = 1000

    def parse(self, data: bytes | BinaryIO) -> RootFile:
        """Parse root file.

        Args:
            data: Binary data or stream

        Returns:
            Parsed root file
        """
        raw = self._as_bytes(data)
        stream = BytesIO(raw)

        header = self._parse_header(stream, raw)

        blocks: list[RootBlock] = []
        while stream.tell() < len(raw):
            blocks.append(self._parse_block(stream, header.version))

        logger.debug(
            "root_parsed",
            version=header.version,
            blocks=len(blocks),
            records=sum(len(b.records) for b in blocks)
        )
        return RootFile(header=header, blocks=blocks)

    def _detect_version(self, data: bytes) -> int:
        """Detect root file version from data."""
        if len(data) < 4 or data[0:4] not in ROOT_MAGICS:
            return 1
        if len(data) < 12:
            raise DecodeError("Incomplete root header")

        # v3 headers start with a small header size and version where v2 has file counts
        value1, value2 = struct.unpack('<II', data[4:12])
        if 20 <= value1 < self.V3_HEADER_THRESHOLD and value2 in (1, 2):
            return 3
        return 2

    def _parse_header(self, stream: BinaryIO, raw: bytes) -> RootHeader:
        version = self._detect_version(raw)
        if version == 1:
            return RootHeader(version=1)

        magic = read_exact(stream, 4, "root magic")

        if version == 2:
            total_files, named_files = struct.unpack('<II', read_exact(stream, 8, "root v2 header"))
            return RootHeader(version=2, magic=magic, total_files=total_files, named_files=named_files)

        header_size, version_field, total_files, named_files = struct.unpack(
            '<IIII', read_exact(stream, 16, "root v3 header")
        )
        stream.seek(header_size)

        return RootHeader(
            version=3,
            magic=magic,
            header_size=header_size,
            version_field=version_field,
            total_files=total_files,
            named_files=named_files
        )

    def _parse_block(self, stream: BinaryIO, version: int) -> RootBlock:
        """Parse a single root block."""
        num_records = struct.unpack('<I', read_exact(stream, 4, "root block record count"))[0]

        if version == 3:
            locale_flags, cf1, cf2 = struct.unpack('<III', read_exact(stream, 12, "root block flags"))
            cf3 = read_exact(stream, 1, "root block flags")[0]
            content_flags = cf1 | cf2 | (cf3 << 17)
        else:
            content_flags, locale_flags = struct.unpack('<II', read_exact(stream, 8, "root block flags"))

        deltas = list(struct.unpack(
            f'<{num_records}i', read_exact(stream, 4 * num_records, "root block file ids")
        ))
        file_ids = decode_file_ids(deltas)

        if version == 1:
            records = []
            for file_id in file_ids:
                content_key = read_exact(stream, 16, "root record content key")
                name_hash = struct.unpack('<Q', read_exact(stream, 8, "root record name hash"))[0]
                records.append(RootRecord(file_id=file_id, content_key=content_key, name_hash=name_hash))
            return RootBlock(content_flags=content_flags, locale_flags=locale_flags, records=records)

        keys_data = read_exact(stream, 16 * num_records, "root block content keys")
        content_keys = [keys_data[i * 16:(i + 1) * 16] for i in range(num_records)]

        name_hashes: list[int | None] = [None] * num_records
        if not content_flags & ContentFlags.NO_NAME_HASH:
            name_hashes = list(struct.unpack(
                f'<{num_records}Q', read_exact(stream, 8 * num_records, "root block name hashes")
            ))

        records = [
            RootRecord(file_id=file_id, content_key=ckey, name_hash=name_hash)
            for file_id, ckey, name_hash in zip(file_ids, content_keys, name_hashes, strict=True)
        ]
        return RootBlock(content_flags=content_flags, locale_flags=locale_flags, records=records)


class RootBuilder:
    """Builder for root manifest files."""

    def __init__(self, version: int = 2):
        if version not in (1, 2, 3):
            raise ValueError(f"Unsupported root version: {version}")
        self.version = version
        self.blocks: list[RootBlock] = []

    def add_block(
        self,
        records: list[RootRecord],
        locale_flags: int,
        content_flags: int = 0,
    ) -> RootBuilder:
        """Add a block of records (file ids must ascend)."""
        self.blocks.append(RootBlock(content_flags=content_flags, locale_flags=locale_flags, records=records))
        return self

    def build(self) -> bytes:
        """Build root binary data."""
        result = BytesIO()
        total = sum(len(b.records) for b in self.blocks)
        named = sum(len(b.records) for b in self.blocks if b.has_name_hashes)

        if self.version == 2:
            result.write(b'TSFM')
            result.write(struct.pack('<II', total, named))
        elif self.version == 3:
            result.write(b'TSFM')
            result.write(struct.pack('<IIIII', 24, 2, total, named, 0))

        for block in self.blocks:
            count = len(block.records)
            result.write(struct.pack('<I', count))
            if self.version == 3:
                result.write(struct.pack('<IIIB', block.locale_flags, block.content_flags, 0, 0))
            else:
                result.write(struct.pack('<II', block.content_flags, block.locale_flags))

            for delta in encode_file_ids([r.file_id for r in block.records]):
                result.write(struct.pack('<i', delta))

            if self.version == 1:
                for record in block.records:
                    result.write(record.content_key)
                    result.write(struct.pack('<Q', record.name_hash or 0))
                continue

            for record in block.records:
                result.write(record.content_key)
            if block.has_name_hashes:
                for record in block.records:
                    result.write(struct.pack('<Q', record.name_hash or 0))

        return result.getvalue()
