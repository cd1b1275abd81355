"""Content resolver: identifier to verified file on disk.

identifier -> content hash (name lookups, Install before Root)
content hash -> encoding keys (encoding table)
encoding key -> location -> verified bytes (data sources in priority order)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

import httpx
import structlog

from ngdp_fetch.core.cache import DiskCache
from ngdp_fetch.core.cdn import CDNClient
from ngdp_fetch.core.cdn_archive_fetcher import RemoteDataSource
from ngdp_fetch.core.config import AppConfig
from ngdp_fetch.core.data_source import DataSource
from ngdp_fetch.core.encoding_table import EncodingTable
from ngdp_fetch.core.errors import ConstructionError, DecodeError, NGDPError
from ngdp_fetch.core.integrity import file_matches_content_key
from ngdp_fetch.core.key_store import KeyStore, bootstrap_keys
from ngdp_fetch.core.local_storage import LocalDataSource
from ngdp_fetch.core.name_lookup import InstallNameLookup, NameLookup, RootNameLookup
from ngdp_fetch.core.tact import TACTClient
from ngdp_fetch.core.types import LocaleFlags
from ngdp_fetch.core.utils import normalize_identifier
from ngdp_fetch.formats.config import ConfigParser

logger = structlog.get_logger()

ALREADY_EXISTS = "Already Exists"

OUTCOME_SUCCESS = "success"
OUTCOME_LOCATION_MISS = "location_miss"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class ExtractionAttempt:
    """One (encoding key, data source) try during a fetch."""
    encoding_key: bytes
    source: str
    outcome: str
    error: str | None = None


class ContentResolver:
    """Resolves identifiers and extracts their content.

    Name lookups and data sources are consulted in the order given, for
    every request.
    """

    def __init__(
        self,
        encoding: EncodingTable,
        name_lookups: Sequence[NameLookup],
        data_sources: Sequence[DataSource[Any]],
        key_store: KeyStore,
        on_attempt: Callable[[ExtractionAttempt], None] | None = None,
    ):
        self.encoding = encoding
        self.name_lookups = list(name_lookups)
        self.data_sources = list(data_sources)
        self.key_store = key_store
        self.on_attempt = on_attempt
        self.last_attempts: list[ExtractionAttempt] = []

    def resolve_identifier(self, identifier: str, locale: str | LocaleFlags | None = None) -> bytes | None:
        """Content hash of the first name lookup that knows identifier."""
        identifier = normalize_identifier(identifier)
        for lookup in self.name_lookups:
            content_hash = lookup.get_content_hash(identifier, locale)
            if content_hash is not None:
                logger.debug("identifier_resolved", identifier=identifier, lookup=lookup.name,
                             content_hash=content_hash.hex())
                return content_hash
        logger.debug("identifier_not_found", identifier=identifier)
        return None

    def fetch(self, identifier: str, destination: Path | str,
              locale: str | LocaleFlags | None = None) -> str | None:
        """Write the content of identifier to destination.

        Returns:
            Name of the data source that served it, ``"Already Exists"``
            when destination already holds the content, or None
        """
        self.last_attempts = []
        content_hash = self.resolve_identifier(identifier, locale)
        if content_hash is None:
            return None

        destination = Path(destination)
        if file_matches_content_key(destination, content_hash):
            logger.debug("fetch_already_exists", identifier=identifier, path=str(destination))
            return ALREADY_EXISTS

        return self.fetch_content_hash(content_hash, destination)

    def fetch_content_hash(self, content_hash: bytes, destination: Path | str) -> str | None:
        """Extract content by hash, trying every encoding key in every source.

        Returns:
            Name of the winning data source, or None if every attempt failed
        """
        self.last_attempts = []
        content_map = self.encoding.get_content_map(content_hash)
        if content_map is None:
            logger.debug("content_hash_not_in_encoding", content_hash=content_hash.hex())
            return None

        destination = Path(destination)
        for encoding_key in content_map.encoding_keys:
            for source in self.data_sources:
                if self._try_extract(source, encoding_key, content_hash, destination):
                    logger.info("fetch_success", content_hash=content_hash.hex(), source=source.name,
                                path=str(destination))
                    return source.name

        logger.warning("fetch_failed", content_hash=content_hash.hex(), attempts=len(self.last_attempts))
        return None

    def _try_extract(self, source: DataSource[Any], encoding_key: bytes,
                     content_hash: bytes, destination: Path) -> bool:
        try:
            location = source.find_location(encoding_key)
            if location is None:
                self._record(ExtractionAttempt(encoding_key, source.name, OUTCOME_LOCATION_MISS))
                return False
            source.extract(location, destination, content_hash)
        except (NGDPError, ValueError, OSError, httpx.HTTPError) as e:
            logger.debug("extract_failed", encoding_key=encoding_key.hex(), source=source.name, error=str(e))
            self._record(ExtractionAttempt(encoding_key, source.name, OUTCOME_FAILED, str(e)))
            return False

        self._record(ExtractionAttempt(encoding_key, source.name, OUTCOME_SUCCESS))
        return True

    def _record(self, attempt: ExtractionAttempt) -> None:
        self.last_attempts.append(attempt)
        if self.on_attempt is not None:
            self.on_attempt(attempt)


def _load_manifest_blob(cdn_client: CDNClient, encoding: EncodingTable, content_hash_hex: str, what: str) -> bytes:
    content_map = encoding.get_content_map(bytes.fromhex(content_hash_hex))
    if content_map is None or not content_map.encoding_keys:
        raise ConstructionError(f"{what} content hash {content_hash_hex} not in encoding table")
    return cdn_client.fetch_data(content_map.encoding_keys[0].hex())


def build_resolver(
    config: AppConfig,
    tact_client: TACTClient | None = None,
    cdn_client: CDNClient | None = None,
    cache: DiskCache | None = None,
    on_attempt: Callable[[ExtractionAttempt], None] | None = None,
) -> ContentResolver:
    """Build a resolver for the configured product, region and locale.

    Raises:
        ConstructionError: If discovery, configs or any load-bearing table fail
    """
    cache = cache or DiskCache(config.cache_dir)
    tact_client = tact_client or TACTClient(config.region, config.program, config.tact, cache)
    key_store = KeyStore()

    try:
        version = tact_client.get_version_config()
        if version is None:
            raise ConstructionError(f"No version for {config.program} in region {config.region}")
        if not version.hosts:
            raise ConstructionError(f"No CDN hosts for {config.program} in region {config.region}")
        logger.info("version_selected", region=version.region, program=version.program, version=version.version)

        cdn_client = cdn_client or CDNClient(version.hosts, version.cdn_path, cache, config.cdn)
        parser = ConfigParser()
        build_config = parser.parse_build_config(cdn_client.fetch_config(version.build_config))
        if len(build_config.encoding) < 2 or not build_config.root or not build_config.install:
            raise ConstructionError("Build config is missing encoding, root or install")

        encoding = EncodingTable.from_blte(cdn_client.fetch_data(build_config.encoding[1]), key_store)
        install = InstallNameLookup.from_blte(
            _load_manifest_blob(cdn_client, encoding, build_config.install[0], "Install"), key_store)
        root = RootNameLookup.from_blte(
            _load_manifest_blob(cdn_client, encoding, build_config.root[0], "Root"), key_store,
            config.locale_flag)

        cdn_config = parser.parse_cdn_config(cdn_client.fetch_config(version.cdn_config))

        data_sources: list[DataSource[Any]] = []
        local_indices_dir = None
        if config.wow_path is not None:
            data_sources.append(LocalDataSource(config.wow_path, key_store))
            local_indices_dir = config.wow_path / "Data" / "indices"
        data_sources.append(RemoteDataSource(
            cdn_client, cdn_config.archives, key_store,
            local_indices_dir=local_indices_dir,
            allow_loose_files=config.allow_loose_files
        ))
    except (httpx.HTTPError, DecodeError, ValueError, OSError) as e:
        logger.error("resolver_construction_failed", error=str(e))
        raise ConstructionError(f"Cannot build resolver: {e}") from e

    if config.key_file is not None:
        key_store.load_key_file(config.key_file)

    resolver = ContentResolver(encoding, [install, root], data_sources, key_store, on_attempt)
    bootstrap_keys(resolver, cache)
    return resolver
