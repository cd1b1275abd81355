"""Tests for content integrity verification."""

import hashlib

import pytest

from ngdp_fetch.core.errors import ExtractionError
from ngdp_fetch.core.integrity import (
    IntegrityError,
    file_matches_content_key,
    verify_content_key,
    verify_ekey_size,
)


class TestVerifyContentKey:
    """Test content hash verification."""

    def test_match(self):
        data = b"some content"
        assert verify_content_key(data, hashlib.md5(data).digest())

    def test_mismatch(self):
        expected = hashlib.md5(b"other").digest()
        with pytest.raises(IntegrityError) as exc_info:
            verify_content_key(b"some content", expected)

        assert exc_info.value.expected == expected.hex()
        assert exc_info.value.actual == hashlib.md5(b"some content").hexdigest()
        assert "mismatch" in str(exc_info.value)

    def test_is_extraction_error(self):
        assert issubclass(IntegrityError, ExtractionError)


class TestVerifyEkeySize:
    """Test encoded size verification."""

    def test_match(self):
        assert verify_ekey_size(b"x" * 10, 10)

    def test_mismatch(self):
        with pytest.raises(IntegrityError) as exc_info:
            verify_ekey_size(b"x" * 9, 10)
        assert exc_info.value.expected == 10
        assert exc_info.value.actual == 9


class TestFileMatchesContentKey:
    """Test on-disk content checks."""

    def test_matching_file(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"content")
        assert file_matches_content_key(path, hashlib.md5(b"content").digest())

    def test_different_file(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"content")
        assert not file_matches_content_key(path, hashlib.md5(b"other").digest())

    def test_missing_file(self, tmp_path):
        assert not file_matches_content_key(tmp_path / "missing", b"\x00" * 16)

    def test_directory(self, tmp_path):
        assert not file_matches_content_key(tmp_path, b"\x00" * 16)
