"""ngdp-fetch - fetch individual files from NGDP/CASC content stores.

Files are resolved by file id or name through the install and root
manifests and the encoding table, then read from a local installation
or the CDN, BLTE decoded and verified.

Key modules:
- core: Resolver, data sources, key store, CDN and version clients
- formats: Binary format parsers and builders
- crypto: Jenkins hashes
- commands: CLI command implementations
"""

__version__ = "0.1.0"

from ngdp_fetch.core.types import (
    CompressionMode,
    EncryptionType,
    LocaleFlags,
)

__all__ = [
    "__version__",
    "CompressionMode",
    "EncryptionType",
    "LocaleFlags",
]
