"""Core functionality for ngdp_fetch.

- Type definitions and the error taxonomy
- Configuration management and caching
- Version discovery and CDN clients
- Key store, encoding table, name lookups and data sources
- The content resolver tying them together
"""

from ngdp_fetch.core.errors import (
    ConstructionError,
    DecodeError,
    ExtractionError,
    KeyBootstrapError,
    NGDPError,
)
from ngdp_fetch.core.types import (
    CompressionMode,
    ContentFlags,
    EncryptionType,
    LocaleFlags,
    LocalLocation,
    RemoteLocation,
)
from ngdp_fetch.core.utils import (
    format_size,
    normalize_identifier,
)

__all__ = [
    # Errors
    "NGDPError",
    "DecodeError",
    "ExtractionError",
    "ConstructionError",
    "KeyBootstrapError",
    # Types
    "CompressionMode",
    "ContentFlags",
    "EncryptionType",
    "LocaleFlags",
    "LocalLocation",
    "RemoteLocation",
    # Utils
    "format_size",
    "normalize_identifier",
]
