"""Format parsers and builders for NGDP/CASC formats.

- BLTE: Block Table Encoded compression/encryption
- Encoding: Content key to encoding key mappings
- Root: File id and name hash catalog
- Install: Installation manifests with tag-based filtering
- CDN archive indices: encoding key to archive range
- Configuration files: Build and CDN configs
- WDC3: client database tables (key bootstrap)
"""

from ngdp_fetch.formats.base import FormatParser
from ngdp_fetch.formats.blte import (
    BLTEBuilder,
    BLTEChunk,
    BLTEFile,
    BLTEHeader,
    BLTEParser,
    is_blte,
)
from ngdp_fetch.formats.cdn_archive import (
    CdnArchiveBuilder,
    CdnArchiveEntry,
    CdnArchiveIndex,
    CdnArchiveParser,
)
from ngdp_fetch.formats.config import (
    BuildConfig,
    CDNConfig,
    ConfigDocument,
    ConfigFileInfo,
    ConfigParser,
)
from ngdp_fetch.formats.encoding import (
    CKeyPageEntry,
    EncodingBuilder,
    EncodingFile,
    EncodingParser,
)
from ngdp_fetch.formats.install import (
    InstallBuilder,
    InstallEntry,
    InstallFile,
    InstallParser,
    InstallTag,
)
from ngdp_fetch.formats.root import (
    RootBlock,
    RootBuilder,
    RootFile,
    RootParser,
    RootRecord,
)
from ngdp_fetch.formats.wdc import (
    StorageType,
    WDC3Builder,
    WDC3Parser,
    WDC3Table,
)

__all__ = [
    "FormatParser",
    # BLTE
    "BLTEBuilder",
    "BLTEChunk",
    "BLTEFile",
    "BLTEHeader",
    "BLTEParser",
    "is_blte",
    # Archive indices
    "CdnArchiveBuilder",
    "CdnArchiveEntry",
    "CdnArchiveIndex",
    "CdnArchiveParser",
    # Config
    "BuildConfig",
    "CDNConfig",
    "ConfigDocument",
    "ConfigFileInfo",
    "ConfigParser",
    # Encoding
    "CKeyPageEntry",
    "EncodingBuilder",
    "EncodingFile",
    "EncodingParser",
    # Install
    "InstallBuilder",
    "InstallEntry",
    "InstallFile",
    "InstallParser",
    "InstallTag",
    # Root
    "RootBlock",
    "RootBuilder",
    "RootFile",
    "RootParser",
    "RootRecord",
    # WDC3
    "StorageType",
    "WDC3Builder",
    "WDC3Parser",
    "WDC3Table",
]
