"""Install format parser for NGDP/CASC."""

from __future__ import annotations

import struct
from io import BytesIO
from typing import BinaryIO

import structlog
from pydantic import BaseModel, Field

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.formats.base import FormatParser, read_cstring, read_exact

logger = structlog.get_logger()


class InstallTag(BaseModel):
    """Install manifest tag with bitmask for file association."""

    name: str = Field(description="Tag name (e.g., Windows, enUS)")
    tag_type: int = Field(description="Tag type identifier")
    bit_mask: bytes = Field(description="Bitmask indicating which files have this tag")

    def has_file(self, file_index: int) -> bool:
        """Check if file at given index has this tag (LSB first within a byte)."""
        byte_index = file_index // 8
        if byte_index >= len(self.bit_mask):
            return False
        return (self.bit_mask[byte_index] & (1 << (file_index % 8))) != 0


class InstallEntry(BaseModel):
    """Install manifest file entry."""

    filename: str = Field(description="File path")
    content_key: bytes = Field(description="MD5 content key")
    size: int = Field(description="File size in bytes")
    file_type: int | None = Field(default=None, description="File type byte (V2 only)")
    tags: list[str] = Field(default_factory=list, description="List of tag names")


class InstallFile(BaseModel):
    """Complete install manifest structure."""

    version: int = Field(description="Format version")
    hash_size: int = Field(description="Hash size in bytes")
    entries: list[InstallEntry] = Field(description="File entries")
    tags: list[InstallTag] = Field(description="Tag definitions")


class InstallParser(FormatParser[InstallFile]):
    """Parser for install format."""

    HEADER_SIZE = 10

    def parse(self, data: bytes | BinaryIO) -> InstallFile:
        """Parse install manifest.

        Args:
            data: Binary data or stream

        Returns:
            Parsed install manifest
        """
        stream = self._as_stream(data)

        header_data = read_exact(stream, self.HEADER_SIZE, "install header")
        magic = header_data[0:2]
        if magic != b'IN':
            raise DecodeError(f"Invalid magic: {magic.hex()}, expected 494E (IN)")

        version = header_data[2]
        hash_size = header_data[3]
        tag_count = struct.unpack('>H', header_data[4:6])[0]
        entry_count = struct.unpack('>I', header_data[6:10])[0]

        if version == 0 or version > 2:
            raise DecodeError(f"Unsupported install version: {version}")

        logger.debug("install_header_parsed",
                     version=version, hash_size=hash_size,
                     tag_count=tag_count, entry_count=entry_count)

        mask_size = (entry_count + 7) // 8

        tags: list[InstallTag] = []
        for _ in range(tag_count):
            tag_name = read_cstring(stream)
            tag_type = struct.unpack('>H', read_exact(stream, 2, f"tag type for {tag_name}"))[0]
            bit_mask = read_exact(stream, mask_size, f"bit mask for {tag_name}")
            tags.append(InstallTag(name=tag_name, tag_type=tag_type, bit_mask=bit_mask))

        entries: list[InstallEntry] = []
        for i in range(entry_count):
            filename = read_cstring(stream)
            content_key = read_exact(stream, hash_size, f"content key for {filename}")
            file_size = struct.unpack('>I', read_exact(stream, 4, f"file size for {filename}"))[0]

            file_type = None
            if version >= 2:
                file_type = read_exact(stream, 1, f"file type for {filename}")[0]

            entries.append(InstallEntry(
                filename=filename,
                content_key=content_key,
                size=file_size,
                file_type=file_type,
                tags=[tag.name for tag in tags if tag.has_file(i)]
            ))

        return InstallFile(version=version, hash_size=hash_size, entries=entries, tags=tags)


class InstallBuilder:
    """Builder for install manifest files."""

    def __init__(self, version: int = 1):
        self.version = version
        self.tags: list[tuple[str, int]] = []
        self.entries: list[InstallEntry] = []

    def add_tag(self, name: str, tag_type: int = 1) -> InstallBuilder:
        self.tags.append((name, tag_type))
        return self

    def add_entry(self, filename: str, content_key: bytes, size: int = 0,
                  tags: list[str] | None = None, file_type: int = 0) -> InstallBuilder:
        self.entries.append(InstallEntry(
            filename=filename,
            content_key=content_key,
            size=size,
            file_type=file_type if self.version >= 2 else None,
            tags=tags or []
        ))
        return self

    def build(self) -> bytes:
        """Build install manifest binary data."""
        result = BytesIO()
        result.write(b'IN')
        result.write(struct.pack('BB', self.version, 16))
        result.write(struct.pack('>HI', len(self.tags), len(self.entries)))

        mask_size = (len(self.entries) + 7) // 8
        for name, tag_type in self.tags:
            mask = bytearray(mask_size)
            for i, entry in enumerate(self.entries):
                if name in entry.tags:
                    mask[i // 8] |= 1 << (i % 8)
            result.write(name.encode('utf-8') + b'\x00')
            result.write(struct.pack('>H', tag_type))
            result.write(bytes(mask))

        for entry in self.entries:
            result.write(entry.filename.encode('utf-8') + b'\x00')
            result.write(entry.content_key)
            result.write(struct.pack('>I', entry.size))
            if entry.file_type is not None:
                result.write(struct.pack('B', entry.file_type))

        return result.getvalue()
