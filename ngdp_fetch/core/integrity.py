"""Content integrity verification for NGDP downloads.

Content hashes are MD5 digests of the decoded file content. Encoding
keys identify the BLTE-encoded blob. Verification happens at two levels:

1. The encoded blob size must match the index entry size
2. After BLTE decoding, MD5 of the content must equal the content hash
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import structlog

from ngdp_fetch.core.errors import ExtractionError

logger = structlog.get_logger()


class IntegrityError(ExtractionError):
    """Raised when content verification fails.

    Attributes:
        expected: Expected hash or size as hex string or int
        actual: Actual hash or size as hex string or int
        key_hex: The key being verified (hex string)
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | int | None = None,
        actual: str | int | None = None,
        key_hex: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.key_hex = key_hex
        super().__init__(message)


def verify_content_key(data: bytes, expected_ckey: bytes) -> bool:
    """Verify decoded content matches its content hash (MD5).

    Args:
        data: Decoded file content
        expected_ckey: Expected content hash (16-byte MD5 digest)

    Returns:
        True if the MD5 of data matches expected_ckey

    Raises:
        IntegrityError: If the hash does not match
    """
    actual_md5 = hashlib.md5(data).digest()
    if actual_md5 != expected_ckey:
        raise IntegrityError(
            f"Content hash mismatch: expected {expected_ckey.hex()}, "
            f"got {actual_md5.hex()}",
            expected=expected_ckey.hex(),
            actual=actual_md5.hex(),
            key_hex=expected_ckey.hex(),
        )
    return True


def verify_ekey_size(data: bytes, expected_size: int) -> bool:
    """Verify encoded (BLTE) data matches the size from its index entry.

    Raises:
        IntegrityError: If the size does not match
    """
    if len(data) != expected_size:
        raise IntegrityError(
            f"Encoded size mismatch: expected {expected_size}, "
            f"got {len(data)}",
            expected=expected_size,
            actual=len(data),
        )
    return True


def file_matches_content_key(path: Path, expected_ckey: bytes) -> bool:
    """Check whether an existing file already holds the given content."""
    if not path.is_file():
        return False
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(block)
    return digest.digest() == expected_ckey
