"""Name lookups: caller identifier to content hash.

Install maps literal file names; Root maps numeric file ids (and
hashed file names) with per-locale variants.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ngdp_fetch.core.errors import ConstructionError, DecodeError
from ngdp_fetch.core.types import ContentFlags, LocaleFlags
from ngdp_fetch.core.utils import normalize_identifier
from ngdp_fetch.crypto.jenkins import name_hash
from ngdp_fetch.formats.blte import BLTEParser
from ngdp_fetch.formats.install import InstallFile, InstallParser
from ngdp_fetch.formats.root import RootFile, RootParser

if TYPE_CHECKING:
    from ngdp_fetch.core.key_store import KeyStore

logger = structlog.get_logger()


def coerce_locale(locale: str | LocaleFlags | None, default: LocaleFlags) -> LocaleFlags:
    """Turn a locale code or flag into a flag, falling back to default."""
    if locale is None:
        return default
    if isinstance(locale, LocaleFlags):
        return locale
    return LocaleFlags.from_code(locale)


class NameLookup(ABC):
    """Identifier to content hash capability."""

    name: str = ""

    @abstractmethod
    def get_content_hash(self, identifier: str, locale: str | LocaleFlags | None = None) -> bytes | None:
        """Return the content hash for identifier, or None."""
        ...


@dataclass(frozen=True)
class RootCandidate:
    content_hash: bytes
    locale_flags: int
    content_flags: int
    order: int

    def precedence(self) -> tuple[int, int, int]:
        """Sort key, lowest wins.

        Entries for specific locales beat all-locale entries, regular
        content beats low-violence variants, then manifest order.
        """
        all_locales = self.locale_flags == LocaleFlags.ALL
        low_violence = bool(self.content_flags & ContentFlags.LOW_VIOLENCE)
        return (int(all_locales), int(low_violence), self.order)


class RootNameLookup(NameLookup):
    """Root manifest lookup by file id, or by Jenkins name hash for paths."""

    name = "Root"

    def __init__(self, root_file: RootFile, locale: LocaleFlags = LocaleFlags.ENUS):
        self.default_locale = locale
        self._by_id: dict[int, list[RootCandidate]] = {}
        self._by_hash: dict[int, list[RootCandidate]] = {}

        order = 0
        for block in root_file.blocks:
            for record in block.records:
                candidate = RootCandidate(
                    content_hash=record.content_key,
                    locale_flags=block.locale_flags,
                    content_flags=block.content_flags,
                    order=order
                )
                order += 1
                self._by_id.setdefault(record.file_id, []).append(candidate)
                if record.name_hash is not None:
                    self._by_hash.setdefault(record.name_hash, []).append(candidate)

    @classmethod
    def from_blte(cls, data: bytes, key_store: KeyStore | None = None,
                  locale: LocaleFlags = LocaleFlags.ENUS) -> RootNameLookup:
        """Decode and parse a root blob.

        Raises:
            ConstructionError: If the blob cannot be decoded or parsed
        """
        try:
            root_file = RootParser().parse(BLTEParser(key_store).decode(data))
        except DecodeError as e:
            logger.error("root_load_failed", error=str(e))
            raise ConstructionError(f"Cannot load root: {e}") from e

        lookup = cls(root_file, locale)
        logger.info("root_loaded", version=root_file.header.version, file_ids=len(lookup))
        return lookup

    def __len__(self) -> int:
        return len(self._by_id)

    def get_content_hash(self, identifier: str, locale: str | LocaleFlags | None = None) -> bytes | None:
        identifier = normalize_identifier(identifier)
        if identifier.isdigit():
            candidates = self._by_id.get(int(identifier), [])
        else:
            candidates = self._by_hash.get(name_hash(identifier), [])

        flag = coerce_locale(locale, self.default_locale)
        matching = [c for c in candidates if c.locale_flags & flag]
        if not matching:
            return None
        return min(matching, key=RootCandidate.precedence).content_hash


class InstallNameLookup(NameLookup):
    """Install manifest lookup by file name; locale is ignored."""

    name = "Install"

    def __init__(self, install_file: InstallFile):
        self._by_name: dict[str, bytes] = {}
        for entry in install_file.entries:
            self._by_name.setdefault(self._key(entry.filename), entry.content_key)

    @classmethod
    def from_blte(cls, data: bytes, key_store: KeyStore | None = None) -> InstallNameLookup:
        """Decode and parse an install blob.

        Raises:
            ConstructionError: If the blob cannot be decoded or parsed
        """
        try:
            install_file = InstallParser().parse(BLTEParser(key_store).decode(data))
        except DecodeError as e:
            logger.error("install_load_failed", error=str(e))
            raise ConstructionError(f"Cannot load install manifest: {e}") from e

        lookup = cls(install_file)
        logger.info("install_loaded", entries=len(lookup))
        return lookup

    @staticmethod
    def _key(filename: str) -> str:
        return normalize_identifier(filename).lower()

    def __len__(self) -> int:
        return len(self._by_name)

    def get_content_hash(self, identifier: str, locale: str | LocaleFlags | None = None) -> bytes | None:
        return self._by_name.get(self._key(identifier))
