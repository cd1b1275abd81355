"""Configuration format parsers for NGDP/CASC.

Build and CDN configs are text blobs of ``key = value`` lines where the
value is a whitespace-separated list. For file references the first
item is the content key and the second the encoding key.
"""

from __future__ import annotations

from typing import BinaryIO

import structlog
from pydantic import BaseModel, Field

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.formats.base import FormatParser

logger = structlog.get_logger()


class ConfigFileInfo(BaseModel):
    """File reference in a config with content key, encoding key, and size."""

    content_key: str
    encoding_key: str | None = None
    size: int | None = None


class ConfigDocument(BaseModel):
    """Parsed config blob: key to list of whitespace-split values."""

    values: dict[str, list[str]] = Field(default_factory=dict)

    def get(self, key: str) -> list[str]:
        return self.values.get(key, [])

    def first(self, key: str) -> str | None:
        items = self.values.get(key)
        return items[0] if items else None


class BuildConfig(BaseModel):
    """Build configuration view."""

    root: list[str] = Field(default_factory=list, description="Root content key")
    encoding: list[str] = Field(default_factory=list, description="Encoding content and encoding keys")
    encoding_size: list[str] = Field(default_factory=list, description="Encoding sizes")
    install: list[str] = Field(default_factory=list, description="Install content and encoding keys")
    install_size: list[str] = Field(default_factory=list, description="Install sizes")
    build_name: str | None = Field(default=None, description="Build name")
    extra_fields: dict[str, list[str]] = Field(default_factory=dict, description="Additional fields")

    @classmethod
    def from_document(cls, doc: ConfigDocument) -> BuildConfig:
        known = {'root', 'encoding', 'encoding-size', 'install', 'install-size', 'build-name'}
        return cls(
            root=doc.get('root'),
            encoding=doc.get('encoding'),
            encoding_size=doc.get('encoding-size'),
            install=doc.get('install'),
            install_size=doc.get('install-size'),
            build_name=' '.join(doc.get('build-name')) or None,
            extra_fields={k: v for k, v in doc.values.items() if k not in known}
        )

    def get_encoding_info(self) -> ConfigFileInfo | None:
        """Get encoding file information from encoding and encoding-size fields."""
        return _file_info(self.encoding, self.encoding_size)

    def get_install_info(self) -> ConfigFileInfo | None:
        """Get install file information from install and install-size fields."""
        return _file_info(self.install, self.install_size)


class CDNConfig(BaseModel):
    """CDN configuration view."""

    archives: list[str] = Field(default_factory=list, description="Archive hashes")
    archives_index_size: list[str] = Field(default_factory=list, description="Archive index sizes")
    archive_group: str | None = Field(default=None, description="Archive group")
    file_index: str | None = Field(default=None, description="Loose file index")

    @classmethod
    def from_document(cls, doc: ConfigDocument) -> CDNConfig:
        return cls(
            archives=doc.get('archives'),
            archives_index_size=doc.get('archives-index-size'),
            archive_group=doc.first('archive-group'),
            file_index=doc.first('file-index')
        )


class ConfigParser(FormatParser[ConfigDocument]):
    """Parser for ``key = value`` configuration blobs."""

    def parse(self, data: bytes | BinaryIO) -> ConfigDocument:
        """Parse configuration.

        Args:
            data: Binary data or stream

        Returns:
            Parsed configuration document
        """
        raw = self._as_bytes(data)
        if raw[:4] == b'BLTE':
            raise DecodeError("Config blob is BLTE encoded")
        content = raw.decode('utf-8', errors='replace')
        return ConfigDocument(values=self._parse_config_content(content))

    def _parse_config_content(self, content: str) -> dict[str, list[str]]:
        """Parse configuration file content into dictionary."""
        config: dict[str, list[str]] = {}

        for line in content.strip().split('\n'):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            if ' = ' in line:
                key, value = line.split(' = ', 1)
                config[key.strip()] = value.split()
            elif line.endswith(' ='):
                config[line[:-2].strip()] = []

        return config

    def parse_build_config(self, data: bytes | BinaryIO) -> BuildConfig:
        return BuildConfig.from_document(self.parse(data))

    def parse_cdn_config(self, data: bytes | BinaryIO) -> CDNConfig:
        return CDNConfig.from_document(self.parse(data))


def _file_info(keys: list[str], sizes: list[str]) -> ConfigFileInfo | None:
    """Build a ConfigFileInfo from a dual-hash value and its sizes.

    The encoding size (second size value) is used as the file size.
    """
    if not keys:
        return None

    size: int | None = None
    if len(sizes) > 1 and sizes[1].isdigit():
        size = int(sizes[1])

    return ConfigFileInfo(
        content_key=keys[0],
        encoding_key=keys[1] if len(keys) > 1 else None,
        size=size
    )
