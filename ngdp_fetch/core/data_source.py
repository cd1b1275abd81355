"""Data source interface and the shared decode, verify, commit step."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Generic, TypeVar

import structlog

from ngdp_fetch.core.integrity import verify_content_key
from ngdp_fetch.core.types import LocalLocation, RemoteLocation
from ngdp_fetch.core.utils import atomic_write
from ngdp_fetch.formats.blte import BLTEParser

if TYPE_CHECKING:
    from ngdp_fetch.core.key_store import KeyStore

logger = structlog.get_logger()

L = TypeVar("L", LocalLocation, RemoteLocation)


class DataSource(ABC, Generic[L]):
    """A place encoded blobs can be read from.

    ``find_location`` answers None for keys the source does not index.
    ``extract`` raises on any failure (network, decode, digest) and only
    ever leaves a complete, verified file at the destination.
    """

    name: str = ""

    def __init__(self, key_store: KeyStore):
        self.key_store = key_store

    @abstractmethod
    def find_location(self, encoding_key: bytes) -> L | None:
        ...

    @abstractmethod
    def read_encoded(self, location: L) -> bytes:
        """Read the raw BLTE blob for a location."""
        ...

    def extract(self, location: L, destination: Path, expected_content_hash: bytes) -> bool:
        """Read, decode, verify and atomically write one blob.

        Raises:
            DecodeError: If the blob is not valid BLTE or a key is missing
            IntegrityError: If the decoded digest differs from the content hash
            OSError: On local read or write failure
        """
        encoded = self.read_encoded(location)
        decoded = BLTEParser(self.key_store).decode(encoded)
        verify_content_key(decoded, expected_content_hash)
        atomic_write(Path(destination), decoded)
        logger.debug(
            "extract_success",
            source=self.name,
            content_hash=expected_content_hash.hex(),
            size=len(decoded),
            path=str(destination)
        )
        return True
