"""Version server client: current build and CDN hosts for a product."""

from __future__ import annotations

import time

import httpx
import structlog
from pydantic import BaseModel, Field

from ngdp_fetch.core.cache import DiskCache
from ngdp_fetch.core.config import TACTConfig

logger = structlog.get_logger()


class VersionConfig(BaseModel):
    """Resolved build and CDN information for one product/region."""

    region: str = Field(description="Region code")
    program: str = Field(description="Product code")
    version: str = Field(description="Version name")
    build_config: str = Field(description="Build config hash")
    cdn_config: str = Field(description="CDN config hash")
    hosts: list[str] = Field(default_factory=list, description="CDN base URLs in priority order")
    cdn_path: str = Field(default="", description="Path prefix on CDN hosts (e.g., tpr/wow)")


class BPSVParser:
    """Parser for Blizzard Pipe-Separated Values format."""

    def parse(self, manifest: str) -> list[dict[str, str]]:
        """Parse BPSV manifest into list of dictionaries.

        Args:
            manifest: BPSV manifest text

        Returns:
            List of parsed entries
        """
        lines = [line.strip() for line in manifest.strip().split('\n') if line.strip()]
        # sequence number lines ("## seqn = 123") carry no rows
        lines = [line for line in lines if not line.startswith('#')]
        if not lines:
            return []

        # Format: ColumnName!TYPE:SIZE|ColumnName2!TYPE:SIZE
        columns = [column_def.split('!')[0] for column_def in lines[0].split('|')]

        results = []
        for line in lines[1:]:
            values = line.split('|')
            results.append({
                column: values[i] if i < len(values) else ""
                for i, column in enumerate(columns)
            })

        return results


class TACTClient:
    """Version server client with API response caching."""

    def __init__(
        self,
        region: str = "us",
        program: str = "wow",
        config: TACTConfig | None = None,
        cache: DiskCache | None = None,
    ):
        """Initialize client.

        Args:
            region: Region code (us, eu, kr, tw, cn, sg)
            program: Product code
            config: Optional TACT configuration
            cache: Cache for manifest responses
        """
        self.region = region
        self.program = program
        self.config = config or TACTConfig()
        self.cache = cache or DiskCache()
        self._base_url = self.config.get_base_url(region)

    def _build_url(self, endpoint: str) -> str:
        return f"{self._base_url}/{self.program}/{endpoint}"

    def _fetch_with_retry(self, url: str) -> str:
        """Fetch URL with exponential backoff.

        Raises:
            httpx.HTTPError: If all retries fail
        """
        last_error: httpx.HTTPError | None = None

        for attempt in range(self.config.max_retries + 1):
            try:
                with httpx.Client(
                    timeout=self.config.timeout,
                    verify=self.config.verify_ssl
                ) as client:
                    response = client.get(url)
                    response.raise_for_status()
                    return response.text

            except httpx.HTTPError as e:
                last_error = e
                if attempt < self.config.max_retries:
                    wait_time = 2 ** attempt
                    logger.debug("tact_retry", url=url, attempt=attempt + 1, wait=wait_time, error=str(e))
                    time.sleep(wait_time)

        logger.error("tact_fetch_failed", url=url, error=str(last_error))
        if last_error:
            raise last_error
        raise httpx.HTTPError(f"Failed to fetch {url}")

    def _fetch_manifest(self, endpoint: str) -> str:
        cache_key = f"tact:{self.region}:{self.program}:{endpoint}"

        cached = self.cache.get_api(cache_key)
        if cached:
            logger.debug("cache_hit", key=cache_key, type="api")
            return cached

        response = self._fetch_with_retry(self._build_url(endpoint))
        self.cache.put_api(cache_key, response)
        logger.debug("tact_fetched", endpoint=endpoint, product=self.program)
        return response

    def fetch_versions(self) -> list[dict[str, str]]:
        """Fetch and parse the versions manifest."""
        return BPSVParser().parse(self._fetch_manifest("versions"))

    def fetch_cdns(self) -> list[dict[str, str]]:
        """Fetch and parse the cdns manifest."""
        return BPSVParser().parse(self._fetch_manifest("cdns"))

    def get_version_config(self) -> VersionConfig | None:
        """Current build and CDN hosts for the configured region.

        Returns:
            Version config, or None when the region is not listed
        """
        version_row = next((row for row in self.fetch_versions() if row.get("Region") == self.region), None)
        if version_row is None:
            logger.warning("tact_region_missing", region=self.region, program=self.program)
            return None

        cdn_row = next((row for row in self.fetch_cdns() if row.get("Name") == self.region), None)
        hosts: list[str] = []
        cdn_path = ""
        if cdn_row is not None:
            hosts = [f"http://{host}" for host in cdn_row.get("Hosts", "").split()]
            cdn_path = cdn_row.get("Path", "")

        return VersionConfig(
            region=self.region,
            program=self.program,
            version=version_row.get("VersionsName", ""),
            build_config=version_row.get("BuildConfig", ""),
            cdn_config=version_row.get("CDNConfig", ""),
            hosts=hosts,
            cdn_path=cdn_path
        )
