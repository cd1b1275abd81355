"""Tests for cache.py module."""

import os
import time
from unittest.mock import patch

import pytest

from ngdp_fetch.core.cache import API_TTL, DiskCache


class TestDiskCache:
    """Test DiskCache class."""

    def test_init_default_base_dir(self, tmp_path):
        """Test initialization with default base directory."""
        with patch("pathlib.Path.home", return_value=tmp_path):
            cache = DiskCache()
            expected_dir = tmp_path / ".cache" / "ngdp-fetch"
            assert cache.base_dir == expected_dir
            assert cache.api_dir == expected_dir / "api"
            assert expected_dir.is_dir()

    def test_write_read(self, tmp_path):
        """Test storing and reading an entry."""
        cache = DiskCache(base_dir=tmp_path)

        path = cache.write("keys/abc", b"table bytes")

        assert path == tmp_path / "keys" / "abc"
        assert cache.exists("keys/abc")
        assert cache.read("keys/abc") == b"table bytes"

    def test_read_missing(self, tmp_path):
        """Test reading an absent entry."""
        assert DiskCache(base_dir=tmp_path).read("keys/missing") is None

    def test_write_leaves_no_temp_files(self, tmp_path):
        """Test that only the final entry remains after a write."""
        cache = DiskCache(base_dir=tmp_path)
        cache.write("keys/abc", b"one")
        cache.write("keys/abc", b"two")

        assert [p.name for p in (tmp_path / "keys").iterdir()] == ["abc"]
        assert cache.read("keys/abc") == b"two"

    def test_delete(self, tmp_path):
        """Test deleting entries."""
        cache = DiskCache(base_dir=tmp_path)
        cache.write("keys/abc", b"x")

        assert cache.delete("keys/abc") is True
        assert cache.delete("keys/abc") is False
        assert not cache.exists("keys/abc")

    @pytest.mark.parametrize("key", ["", "/etc/passwd", "keys/../../escape"])
    def test_invalid_keys(self, tmp_path, key):
        """Test that keys outside the cache are rejected."""
        with pytest.raises(ValueError):
            DiskCache(base_dir=tmp_path).full_path(key)

    def test_cdn_key_config(self):
        """Test CDN cache keys for config files."""
        key = DiskCache.cdn_key("ABCDEF1234567890", "config", "tpr/wow")
        assert key == "cdn/tpr/wow/config/ab/cd/abcdef1234567890"

    def test_cdn_key_data(self):
        """Test CDN cache keys for data files."""
        key = DiskCache.cdn_key("1234abcd5678ef90", "data", "/tpr/wow/")
        assert key == "cdn/tpr/wow/data/12/34/1234abcd5678ef90"

    def test_cdn_key_index(self):
        """Test that indexes live beside their archives."""
        key = DiskCache.cdn_key("1234abcd5678ef90", "index", "tpr/wow")
        assert key == "cdn/tpr/wow/data/12/34/1234abcd5678ef90.index"

    def test_cdn_key_empty_hash(self):
        """Test that an empty hash is rejected."""
        with pytest.raises(ValueError, match="empty"):
            DiskCache.cdn_key("", "data", "tpr/wow")


class TestApiCache:
    """Test version server response caching."""

    def test_put_get(self, tmp_path):
        """Test storing and reading an API response."""
        cache = DiskCache(base_dir=tmp_path)
        cache.put_api("us:wow:versions", "Region!STRING:0|BuildConfig!HEX:16")

        assert cache.has_api("us:wow:versions")
        assert cache.get_api("us:wow:versions") == "Region!STRING:0|BuildConfig!HEX:16"
        assert (tmp_path / "api" / "us_wow_versions.cache").exists()

    def test_missing(self, tmp_path):
        """Test reading an uncached response."""
        cache = DiskCache(base_dir=tmp_path)
        assert not cache.has_api("us:wow:cdns")
        assert cache.get_api("us:wow:cdns") is None

    def test_expired(self, tmp_path):
        """Test that responses older than the TTL are ignored."""
        cache = DiskCache(base_dir=tmp_path)
        cache.put_api("us:wow:versions", "data")
        path = tmp_path / "api" / "us_wow_versions.cache"
        old = time.time() - API_TTL - 60
        os.utime(path, (old, old))

        assert not cache.has_api("us:wow:versions")
        assert cache.get_api("us:wow:versions") is None
