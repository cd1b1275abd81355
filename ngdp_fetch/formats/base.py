"""Base classes for format parsers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Generic, TypeVar

import structlog
from pydantic import BaseModel

from ngdp_fetch.core.errors import DecodeError

logger = structlog.get_logger()

T = TypeVar("T", bound=BaseModel)


class FormatParser(ABC, Generic[T]):
    """Base class for format parsers."""

    @abstractmethod
    def parse(self, data: bytes | BinaryIO) -> T:
        """Parse binary data.

        Args:
            data: Binary data or stream

        Returns:
            Parsed format object

        Raises:
            DecodeError: If the data is malformed or truncated
        """
        ...

    def parse_file(self, path: str | Path) -> T:
        """Parse format from file.

        Args:
            path: File path

        Returns:
            Parsed format object
        """
        try:
            with open(path, "rb") as f:
                return self.parse(f)
        except OSError as e:
            logger.error("format_read_failed", path=str(path), error=str(e))
            raise DecodeError(f"Cannot read file {path}: {e}") from e

    @staticmethod
    def _as_stream(data: bytes | BinaryIO) -> BinaryIO:
        if isinstance(data, (bytes, bytearray, memoryview)):
            return BytesIO(bytes(data))
        return data

    @staticmethod
    def _as_bytes(data: bytes | BinaryIO) -> bytes:
        if isinstance(data, (bytes, bytearray, memoryview)):
            return bytes(data)
        current_pos = data.tell()
        all_data = data.read()
        data.seek(current_pos)
        return all_data


def read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    """Read exactly size bytes or raise DecodeError naming the field."""
    chunk = stream.read(size)
    if len(chunk) != size:
        raise DecodeError(f"Incomplete {what}: expected {size} bytes, got {len(chunk)}")
    return chunk


def read_cstring(stream: BinaryIO, encoding: str = "utf-8") -> str:
    """Read a null-terminated string."""
    buf = bytearray()
    while True:
        byte = stream.read(1)
        if not byte:
            raise DecodeError("Unterminated string")
        if byte == b"\x00":
            break
        buf.extend(byte)
    return buf.decode(encoding, errors="replace")
