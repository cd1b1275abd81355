"""Core type definitions for ngdp_fetch."""

from dataclasses import dataclass
from enum import Enum, IntFlag, StrEnum


class CompressionMode(StrEnum):
    """BLTE chunk mode tags."""
    NONE = "N"
    ZLIB = "Z"
    ENCRYPTED = "E"


class EncryptionType(Enum):
    """BLTE encryption types."""
    SALSA20 = 0x53
    ARC4 = 0x41


class LocaleFlags(IntFlag):
    """Root manifest locale flags."""
    ENUS = 0x00000002
    KOKR = 0x00000004
    FRFR = 0x00000010
    DEDE = 0x00000020
    ZHCN = 0x00000040
    ESES = 0x00000080
    ZHTW = 0x00000100
    ENGB = 0x00000200
    ENCN = 0x00000400
    ENTW = 0x00000800
    ESMX = 0x00001000
    RURU = 0x00002000
    PTBR = 0x00004000
    ITIT = 0x00008000
    PTPT = 0x00010000
    ALL = 0xFFFFFFFF

    @classmethod
    def from_code(cls, code: str) -> "LocaleFlags":
        """Map a locale code such as ``enUS`` to its flag."""
        try:
            return cls[code.upper()]
        except KeyError as e:
            raise ValueError(f"Unknown locale: {code}") from e


class ContentFlags(IntFlag):
    """Root manifest content flags."""
    NONE = 0
    LOAD_ON_WINDOWS = 0x00000008
    LOAD_ON_MACOS = 0x00000010
    LOW_VIOLENCE = 0x00000080
    DO_NOT_LOAD = 0x00000100
    UPDATE_PLUGIN = 0x00000800
    ENCRYPTED = 0x08000000
    NO_NAME_HASH = 0x10000000
    UNCOMMON_RESOLUTION = 0x20000000
    BUNDLE = 0x40000000
    NO_COMPRESSION = 0x80000000


@dataclass(frozen=True)
class LocalLocation:
    """Location of an encoded blob inside a local data.NNN archive."""
    archive_id: int
    offset: int
    size: int


@dataclass(frozen=True)
class RemoteLocation:
    """Location of an encoded blob on the CDN.

    ``archive_hash`` is None for loose files, which are addressed by
    their own encoding key.
    """
    encoding_key: bytes
    archive_hash: str | None = None
    offset: int = 0
    size: int = 0

    @property
    def is_loose(self) -> bool:
        return self.archive_hash is None


Location = LocalLocation | RemoteLocation
