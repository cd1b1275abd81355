"""Encoding table: content hash to the encoding keys that store it."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ngdp_fetch.core.errors import ConstructionError, DecodeError
from ngdp_fetch.formats.blte import BLTEParser
from ngdp_fetch.formats.encoding import EncodingFile, EncodingParser

if TYPE_CHECKING:
    from ngdp_fetch.core.key_store import KeyStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class ContentMap:
    """Encoding keys for one content hash, in stored order."""
    content_hash: bytes
    encoding_keys: tuple[bytes, ...]
    file_size: int


class EncodingTable:
    """Exact-match lookup built once from a parsed encoding file."""

    def __init__(self, encoding_file: EncodingFile):
        self._maps: dict[bytes, ContentMap] = {}
        for entry in encoding_file.entries:
            if entry.content_key in self._maps:
                continue
            self._maps[entry.content_key] = ContentMap(
                content_hash=entry.content_key,
                encoding_keys=tuple(entry.encoding_keys),
                file_size=entry.file_size
            )

    @classmethod
    def from_blte(cls, data: bytes, key_store: KeyStore | None = None) -> EncodingTable:
        """Decode and parse an encoding blob.

        Raises:
            ConstructionError: If the blob cannot be decoded or parsed
        """
        try:
            encoding_file = EncodingParser().parse(BLTEParser(key_store).decode(data))
        except DecodeError as e:
            logger.error("encoding_load_failed", error=str(e))
            raise ConstructionError(f"Cannot load encoding table: {e}") from e

        table = cls(encoding_file)
        if not table:
            raise ConstructionError("Encoding table has no entries")
        logger.info("encoding_loaded", entries=len(table))
        return table

    def get_content_map(self, content_hash: bytes) -> ContentMap | None:
        return self._maps.get(content_hash)

    def __len__(self) -> int:
        return len(self._maps)

    def __contains__(self, content_hash: object) -> bool:
        return content_hash in self._maps
