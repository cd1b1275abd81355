"""Pytest configuration and shared fixtures for ngdp_fetch tests."""

import hashlib
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from ngdp_fetch.core.cache import DiskCache
from ngdp_fetch.core.config import AppConfig
from ngdp_fetch.core.key_store import KeyStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def cache(temp_dir: Path) -> DiskCache:
    """Disk cache rooted in the temporary directory."""
    return DiskCache(temp_dir / "cache")


@pytest.fixture
def app_config(temp_dir: Path) -> AppConfig:
    """Application config pointing at the temporary directory."""
    return AppConfig(cache_dir=temp_dir / "cache")


@pytest.fixture
def key_name() -> bytes:
    """Key name as stored in encrypted chunks (8 bytes)."""
    return bytes.fromhex("fa505078126acb3e")


@pytest.fixture
def key_value() -> bytes:
    """16-byte Salsa20 key."""
    return bytes.fromhex("bdc51862abed79b2de48c8e7e66c6200")


@pytest.fixture
def key_store(key_name: bytes, key_value: bytes) -> KeyStore:
    """Key store holding one key."""
    return KeyStore({key_name: key_value})


@pytest.fixture
def sample_content() -> bytes:
    """Plaintext used across resolver tests."""
    return b"Hello, NGDP! " * 64


@pytest.fixture
def sample_content_hash(sample_content: bytes) -> bytes:
    return hashlib.md5(sample_content).digest()
