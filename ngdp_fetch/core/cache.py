"""Disk cache for CDN blobs, key tables and version server responses."""

from __future__ import annotations

import time
from pathlib import Path, PurePosixPath

import structlog

from ngdp_fetch.core.utils import atomic_write

logger = structlog.get_logger()

API_TTL = 24 * 60 * 60


class DiskCache:
    """Key-addressed disk cache.

    Keys are relative POSIX paths. Layout:
    ~/.cache/ngdp-fetch/
    ├── cdn/                      # CDN content cache
    │   └── {path}/               # Path from the cdns manifest (e.g., tpr/wow)
    │       ├── config/{hash[:2]}/{hash[2:4]}/{hash}
    │       └── data/
    │           ├── {hash[:2]}/{hash[2:4]}/{hash}        # Archive/loose file
    │           └── {hash[:2]}/{hash[2:4]}/{hash}.index  # Archive index
    ├── keys/{content hash}       # Decryption key tables
    └── api/                      # Version server responses, 24 h lifetime
        └── {safe_filename}.cache
    """

    def __init__(self, base_dir: Path | None = None):
        """Initialize disk cache.

        Args:
            base_dir: Base cache directory, defaults to ~/.cache/ngdp-fetch
        """
        self.base_dir = base_dir or (Path.home() / ".cache" / "ngdp-fetch")
        self.api_dir = self.base_dir / "api"
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def full_path(self, key: str) -> Path:
        """Resolve a cache key to its path on disk.

        Raises:
            ValueError: If the key is empty, absolute or escapes the cache
        """
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or ".." in parts:
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.base_dir.joinpath(*parts)

    def exists(self, key: str) -> bool:
        return self.full_path(key).is_file()

    def read(self, key: str) -> bytes | None:
        """Read a cache entry, or None when absent."""
        path = self.full_path(key)
        if not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning("cache_read_failed", key=key, error=str(e))
            return None

    def write(self, key: str, data: bytes) -> Path:
        """Store data atomically: unique temp file in the same directory, then replace.

        Returns:
            Path of the stored entry
        """
        path = self.full_path(key)
        atomic_write(path, data)
        logger.debug("cache_stored", key=key, size=len(data))
        return path

    def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if something was removed."""
        path = self.full_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("cache_deleted", key=key)
        return True

    @staticmethod
    def cdn_key(hash_str: str, file_type: str, cdn_path: str) -> str:
        """Cache key for a CDN object.

        Args:
            hash_str: Hex hash string
            file_type: config, data or index
            cdn_path: Path from the cdns manifest (e.g., "tpr/wow")

        Raises:
            ValueError: If hash_str is empty
        """
        if not hash_str:
            raise ValueError("Hash string cannot be empty")

        hash_lower = hash_str.lower()
        if file_type == "index":
            content_type, filename = "data", f"{hash_lower}.index"
        else:
            content_type, filename = file_type, hash_lower

        return f"cdn/{cdn_path.strip('/')}/{content_type}/{hash_lower[:2]}/{hash_lower[2:4]}/{filename}"

    def _get_api_cache_path(self, key: str) -> Path:
        safe_key = key.replace("/", "_").replace(":", "_")
        return self.api_dir / f"{safe_key}.cache"

    def has_api(self, key: str) -> bool:
        """Check if an API response is cached and younger than 24 hours."""
        cache_path = self._get_api_cache_path(key)
        if not cache_path.exists():
            return False
        age = time.time() - cache_path.stat().st_mtime
        return age <= API_TTL

    def get_api(self, key: str) -> str | None:
        """Get API response from cache, or None if missing or expired."""
        if not self.has_api(key):
            return None
        try:
            return self._get_api_cache_path(key).read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("api_cache_read_failed", key=key, error=str(e))
            return None

    def put_api(self, key: str, data: str) -> None:
        """Store API response in cache."""
        cache_path = self._get_api_cache_path(key)
        try:
            atomic_write(cache_path, data.encode("utf-8"))
        except OSError as e:
            logger.warning("api_cache_write_failed", key=key, error=str(e))
            return
        logger.debug("api_cache_stored", key=key, size=len(data))
