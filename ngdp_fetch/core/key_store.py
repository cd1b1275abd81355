"""Decryption key store and key table bootstrap."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from ngdp_fetch.core.errors import DecodeError, KeyBootstrapError
from ngdp_fetch.formats.wdc import FieldValue, WDC3Parser, WDC3Table

if TYPE_CHECKING:
    from ngdp_fetch.core.cache import DiskCache
    from ngdp_fetch.core.resolver import ContentResolver

logger = structlog.get_logger()

KEY_TABLE_FILE_ID = 1302850
KEY_LOOKUP_TABLE_FILE_ID = 1302851

KEY_NAME_SIZE = 8
KEY_SIZE = 16


class KeyStore:
    """Map of key name (8 raw bytes, as stored in encrypted chunks) to 16-byte key."""

    def __init__(self, keys: Mapping[bytes, bytes] | None = None):
        self._keys: dict[bytes, bytes] = {}
        if keys:
            self.merge(keys)

    def add_key(self, key_name: bytes, key_value: bytes) -> None:
        """Add or replace a key.

        Raises:
            ValueError: If the key value is not 16 bytes
        """
        if len(key_value) != KEY_SIZE:
            raise ValueError(f"Key {key_name.hex()} has {len(key_value)} bytes, expected {KEY_SIZE}")
        self._keys[bytes(key_name)] = bytes(key_value)

    def get_key(self, key_name: bytes) -> bytes | None:
        return self._keys.get(bytes(key_name))

    def merge(self, keys: Mapping[bytes, bytes] | Iterable[tuple[bytes, bytes]]) -> int:
        """Add many keys; returns how many were added or changed."""
        items = keys.items() if isinstance(keys, Mapping) else keys
        changed = 0
        for key_name, key_value in items:
            if self._keys.get(bytes(key_name)) != bytes(key_value):
                self.add_key(key_name, key_value)
                changed += 1
        return changed

    def clear(self) -> None:
        self._keys.clear()

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key_name: object) -> bool:
        return isinstance(key_name, (bytes, bytearray)) and bytes(key_name) in self._keys

    def load_key_file(self, path: Path) -> int:
        """Merge keys from a text file.

        Lines are ``name;value[;description]`` or ``name value``, with the
        name as a big-endian 64-bit hex number (the wowdev convention).
        Encrypted chunks carry the name little-endian, so it is reversed.

        Raises:
            KeyBootstrapError: If the file cannot be read
        """
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise KeyBootstrapError(f"Cannot read key file {path}: {e}") from e

        keys: dict[bytes, bytes] = {}
        for line_no, line in enumerate(text.splitlines(), 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            parts = line.split(";") if ";" in line else line.split()
            if len(parts) < 2:
                logger.debug("key_file_line_skipped", path=str(path), line=line_no)
                continue

            try:
                key_name = bytes.fromhex(parts[0].strip())[::-1]
                key_value = bytes.fromhex(parts[1].strip())
            except ValueError:
                logger.warning("key_file_invalid_hex", path=str(path), line=line_no)
                continue

            if len(key_name) != KEY_NAME_SIZE or len(key_value) != KEY_SIZE:
                logger.warning("key_file_invalid_length", path=str(path), line=line_no)
                continue
            keys[key_name] = key_value

        added = self.merge(keys)
        logger.info("key_file_loaded", path=str(path), keys=len(keys), added=added)
        return added


def _field_bytes(value: FieldValue) -> bytes | None:
    if isinstance(value, bytes):
        return value
    if isinstance(value, list):
        return bytes(value)
    return None


def join_key_tables(key_table: WDC3Table, lookup_table: WDC3Table) -> dict[bytes, bytes]:
    """Pair each lookup row's key name with the key row of the same id."""
    keys: dict[bytes, bytes] = {}
    for record_id, lookup_row in lookup_table.iter_records():
        key_row = key_table.get_record(record_id)
        if not key_row or not lookup_row:
            continue
        key_name = _field_bytes(lookup_row[0])
        key_value = _field_bytes(key_row[0])
        if key_name is None or key_value is None or len(key_value) != KEY_SIZE:
            logger.debug("key_table_row_skipped", record_id=record_id)
            continue
        keys[key_name] = key_value
    return keys


def _load_key_table(resolver: ContentResolver, cache: DiskCache, file_id: int) -> WDC3Table:
    """Fetch (or reuse the cached copy of) one key table and parse it.

    Raises:
        KeyBootstrapError: If the table cannot be located, fetched or parsed
    """
    content_hash = resolver.resolve_identifier(str(file_id))
    if content_hash is None:
        raise KeyBootstrapError(f"Key table {file_id} not found in root")

    cache_key = f"keys/{content_hash.hex()}"
    if not cache.exists(cache_key):
        source = resolver.fetch_content_hash(content_hash, cache.full_path(cache_key))
        if source is None:
            cache.delete(cache_key)
            raise KeyBootstrapError(f"Failed to fetch key table {file_id}")

    try:
        return WDC3Parser().parse_file(cache.full_path(cache_key))
    except DecodeError as e:
        cache.delete(cache_key)
        raise KeyBootstrapError(f"Failed to open key table {file_id}: {e}") from e


def bootstrap_keys(resolver: ContentResolver, cache: DiskCache) -> int | None:
    """Load decryption keys from the game's own key tables.

    Failure is logged and leaves the key store untouched.

    Returns:
        Number of keys added, or None on failure
    """
    try:
        key_table = _load_key_table(resolver, cache, KEY_TABLE_FILE_ID)
        lookup_table = _load_key_table(resolver, cache, KEY_LOOKUP_TABLE_FILE_ID)
    except KeyBootstrapError as e:
        logger.warning("key_bootstrap_failed", error=str(e))
        return None

    keys = join_key_tables(key_table, lookup_table)
    added = resolver.key_store.merge(keys)
    logger.info("key_bootstrap_complete", keys=len(keys), added=added)
    return added
