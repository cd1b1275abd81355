"""CDN client with disk caching and host fallback."""

from __future__ import annotations

import httpx
import structlog

from ngdp_fetch.core.cache import DiskCache
from ngdp_fetch.core.config import CDNConfig

logger = structlog.get_logger()


class CDNClient:
    """CDN client with disk caching.

    Hosts are tried in order (those announced by version discovery, then
    the configured fallback mirrors), each with its own retry budget.
    """

    def __init__(
        self,
        hosts: list[str],
        cdn_path: str,
        cache: DiskCache | None = None,
        config: CDNConfig | None = None,
    ):
        """Initialize CDN client.

        Args:
            hosts: CDN base URLs in priority order
            cdn_path: Path from the cdns manifest (e.g., "tpr/wow")
            cache: Disk cache for configs, indexes and loose files
            config: Optional CDN configuration
        """
        self.config = config or CDNConfig()
        self.hosts = [h.rstrip("/") for h in hosts]
        self.cdn_path = cdn_path.strip("/")
        self.cache = cache or DiskCache()
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create sync HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                follow_redirects=True,
            )
        return self._client

    @property
    def mirrors(self) -> list[str]:
        return self.hosts + [m.rstrip("/") for m in self.config.fallback_mirrors if m.rstrip("/") not in self.hosts]

    def _build_url(self, hash_str: str, file_type: str, mirror: str) -> str:
        """Build CDN URL for a given hash.

        Args:
            hash_str: Hex hash string
            file_type: config, data or index
            mirror: Mirror base URL
        """
        hash_lower = hash_str.lower()
        if file_type == "config":
            content_type, file_name = "config", hash_lower
        elif file_type == "data":
            content_type, file_name = "data", hash_lower
        elif file_type == "index":
            content_type, file_name = "data", f"{hash_lower}.index"
        else:
            raise ValueError(f"Unknown file type: {file_type}")

        return f"{mirror}/{self.cdn_path}/{content_type}/{hash_lower[:2]}/{hash_lower[2:4]}/{file_name}"

    def _fetch_from_cdn(
        self,
        hash_str: str,
        file_type: str,
        headers: dict[str, str] | None = None,
        quiet: bool = False,
    ) -> httpx.Response:
        """Fetch from CDN hosts with fallback.

        Raises:
            httpx.HTTPError: If every host fails
            ValueError: If no hosts are configured
        """
        last_error: httpx.HTTPError | None = None
        mirrors = self.mirrors

        if not mirrors:
            raise ValueError("No CDN hosts available")

        for mirror_idx, mirror in enumerate(mirrors):
            url = self._build_url(hash_str, file_type, mirror)

            for attempt in range(max(1, self.config.max_retries)):
                try:
                    response = self.client.get(url, headers=headers)
                    response.raise_for_status()
                    logger.debug(
                        "cdn_fetch_success",
                        hash=hash_str,
                        type=file_type,
                        mirror=mirror,
                        mirror_idx=mirror_idx,
                        attempt=attempt + 1
                    )
                    return response

                except httpx.HTTPStatusError as e:
                    last_error = e
                    logger.debug("cdn_fetch_status", hash=hash_str, mirror=mirror, status=e.response.status_code)
                    # a 404 will not change on retry
                    if e.response.status_code == 404:
                        break

                except httpx.HTTPError as e:
                    last_error = e
                    logger.debug(
                        "cdn_fetch_retry",
                        hash=hash_str,
                        type=file_type,
                        mirror=mirror,
                        attempt=attempt + 1,
                        error=str(e)
                    )

            logger.debug("cdn_mirror_failed", hash=hash_str, type=file_type, mirror=mirror, mirror_idx=mirror_idx)

        if quiet:
            logger.debug("cdn_all_mirrors_failed", hash=hash_str, type=file_type)
        else:
            logger.error("cdn_all_mirrors_failed", hash=hash_str, type=file_type)
        if last_error:
            raise last_error
        raise httpx.HTTPError(f"Failed to fetch {hash_str} from all mirrors")

    def _fetch_cached(self, hash_str: str, file_type: str, quiet: bool = False) -> bytes:
        cache_key = self.cache.cdn_key(hash_str, file_type, self.cdn_path)
        cached = self.cache.read(cache_key)
        if cached is not None:
            logger.debug("cache_hit", hash=hash_str, type=file_type, path=self.cdn_path)
            return cached

        data = self._fetch_from_cdn(hash_str, file_type, quiet=quiet).content
        self.cache.write(cache_key, data)
        return data

    def fetch_config(self, hash_str: str) -> bytes:
        """Fetch a build or CDN configuration blob."""
        return self._fetch_cached(hash_str, "config")

    def fetch_data(self, hash_str: str, is_index: bool = False, quiet: bool = False) -> bytes:
        """Fetch an archive index or a loose data file.

        Args:
            hash_str: Data file hash
            is_index: True if fetching an archive index
            quiet: If True, log at debug level when all mirrors fail
        """
        return self._fetch_cached(hash_str, "index" if is_index else "data", quiet=quiet)

    def fetch_range(self, archive_hash: str, offset: int, size: int) -> bytes:
        """Fetch a byte range of an archive (not cached).

        Raises:
            httpx.HTTPError: If every host fails
            ValueError: If the returned range is short
        """
        if size <= 0:
            raise ValueError(f"Invalid range size: {size}")

        headers = {"Range": f"bytes={offset}-{offset + size - 1}"}
        response = self._fetch_from_cdn(archive_hash, "data", headers=headers)
        data = response.content

        # a host that ignores Range answers 200 with the whole archive
        if response.status_code == 200 and len(data) > size:
            data = data[offset:offset + size]

        if len(data) != size:
            raise ValueError(f"Range fetch returned {len(data)} bytes, expected {size}")
        return data

    def cached_path(self, hash_str: str, file_type: str = "data") -> str | None:
        """Path of a cached CDN object, or None when not cached."""
        cache_key = self.cache.cdn_key(hash_str, file_type, self.cdn_path)
        if self.cache.exists(cache_key):
            return str(self.cache.full_path(cache_key))
        return None

    def evict(self, hash_str: str, file_type: str = "data") -> bool:
        """Drop a cached CDN object; returns whether one was cached."""
        return self.cache.delete(self.cache.cdn_key(hash_str, file_type, self.cdn_path))

    def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> CDNClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
