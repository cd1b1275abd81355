"""Remote data source: encoded blobs from CDN archives and loose files.

The typical workflow is:
1. Take the archive list from the CDN config
2. Load each archive index (installation copy first, then CDN)
3. Build an index map (encoding key -> archive, offset, size)
4. Read blobs with range requests, or whole for loose files
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from ngdp_fetch.core.cdn import CDNClient
from ngdp_fetch.core.data_source import DataSource
from ngdp_fetch.core.errors import DecodeError, NGDPError
from ngdp_fetch.core.integrity import verify_ekey_size
from ngdp_fetch.core.key_store import KeyStore
from ngdp_fetch.core.types import RemoteLocation
from ngdp_fetch.formats.cdn_archive import CdnArchiveEntry, CdnArchiveParser

logger = structlog.get_logger()


def get_cached_index_path(indices_dir: Path, archive_hash: str) -> Path:
    """Path of an archive index kept by an installation (``Data/indices``)."""
    return indices_dir / f"{archive_hash.lower()}.index"


@dataclass
class IndexMap:
    """Encoding key to archive location, first archive wins."""
    entries: dict[bytes, RemoteLocation] = field(default_factory=dict)
    archive_count: int = 0
    total_entries: int = 0

    def add_archive(self, archive_hash: str, entries: list[CdnArchiveEntry]) -> None:
        for entry in entries:
            self.entries.setdefault(entry.encoding_key, RemoteLocation(
                encoding_key=entry.encoding_key,
                archive_hash=archive_hash,
                offset=entry.offset,
                size=entry.size
            ))
            self.total_entries += 1
        self.archive_count += 1

    def find(self, encoding_key: bytes) -> RemoteLocation | None:
        return self.entries.get(encoding_key)


class RemoteDataSource(DataSource[RemoteLocation]):
    """Data source backed by the CDN."""

    name = "Remote"

    def __init__(
        self,
        cdn_client: CDNClient,
        archives: list[str],
        key_store: KeyStore,
        local_indices_dir: Path | None = None,
        allow_loose_files: bool = True,
    ):
        """Load the index of every archive.

        Args:
            cdn_client: CDN client used for indexes and blobs
            archives: Archive hashes from the CDN config
            key_store: Keys for encrypted blobs
            local_indices_dir: Installation ``Data/indices`` directory, if any
            allow_loose_files: Treat keys missing from every index as loose files

        Raises:
            httpx.HTTPError: If an index cannot be downloaded
            DecodeError: If an index is malformed
        """
        super().__init__(key_store)
        self.cdn_client = cdn_client
        self.allow_loose_files = allow_loose_files
        self.index_map = IndexMap()
        self._parser = CdnArchiveParser()

        for archive_hash in archives:
            self._load_index(archive_hash.lower(), local_indices_dir)

        logger.info(
            "archive_indexes_loaded",
            archives=self.index_map.archive_count,
            entries=self.index_map.total_entries
        )

    def _load_index(self, archive_hash: str, local_indices_dir: Path | None) -> None:
        data = None
        if local_indices_dir is not None:
            local_path = get_cached_index_path(local_indices_dir, archive_hash)
            if local_path.is_file():
                try:
                    data = local_path.read_bytes()
                except OSError as e:
                    logger.warning("local_archive_index_unreadable", path=str(local_path), error=str(e))

        if data is None:
            data = self.cdn_client.fetch_data(archive_hash, is_index=True)

        index = self._parser.parse(data)
        if index.footer.is_archive_group:
            raise DecodeError(f"Archive {archive_hash} has an archive-group index")
        self.index_map.add_archive(archive_hash, index.entries)

    def find_location(self, encoding_key: bytes) -> RemoteLocation | None:
        location = self.index_map.find(encoding_key)
        if location is None and self.allow_loose_files:
            return RemoteLocation(encoding_key=encoding_key)
        return location

    def read_encoded(self, location: RemoteLocation) -> bytes:
        """Download the encoded blob for a location.

        Archived blobs come from a cached copy of the archive when one
        exists, otherwise from a range request.

        Raises:
            httpx.HTTPError: If every host fails
            IntegrityError: If an archived blob has the wrong size
        """
        archive_hash = location.archive_hash
        if archive_hash is None:
            return self.cdn_client.fetch_data(location.encoding_key.hex(), quiet=True)

        cached = self.cdn_client.cached_path(archive_hash)
        if cached is not None:
            with open(cached, 'rb') as f:
                f.seek(location.offset)
                data = f.read(location.size)
        else:
            data = self.cdn_client.fetch_range(archive_hash, location.offset, location.size)

        verify_ekey_size(data, location.size)
        return data

    def extract(self, location: RemoteLocation, destination: Path, expected_content_hash: bytes) -> bool:
        """Extract one blob; a loose blob that fails to decode or verify is evicted from the cache."""
        try:
            return super().extract(location, destination, expected_content_hash)
        except (NGDPError, ValueError):
            if location.is_loose and self.cdn_client.evict(location.encoding_key.hex()):
                logger.debug("loose_blob_evicted", encoding_key=location.encoding_key.hex())
            raise
