"""Tests for BLTE format parser."""

import hashlib
import struct
import zlib
from io import BytesIO

import pytest

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.core.key_store import KeyStore
from ngdp_fetch.core.types import CompressionMode
from ngdp_fetch.formats.blte import (
    BLTEBuilder,
    BLTEHeader,
    BLTEParser,
    is_blte,
)


def _multi_chunk(chunks: list[tuple[bytes, int]]) -> bytes:
    """Hand-assemble a multi-chunk BLTE from (encoded chunk, decoded size) pairs."""
    header = b'BLTE' + struct.pack('>I', 12 + 24 * len(chunks))
    header += struct.pack('>I', 0x0F000000 | len(chunks))
    for encoded, size in chunks:
        header += struct.pack('>II', len(encoded), size) + hashlib.md5(encoded).digest()
    return header + b''.join(encoded for encoded, _ in chunks)


class TestBLTEParser:
    """Test BLTE format parser."""

    def test_is_blte_function(self):
        """Test is_blte detection function."""
        assert is_blte(b'BLTE\x00\x00\x00\x00')
        assert not is_blte(b'TEST')
        assert not is_blte(b'BLT')
        assert not is_blte(b'')

    def test_single_chunk_no_compression(self):
        """Headerless file with one plain chunk."""
        test_data = b'Hello, World!'
        blte_data = b'BLTE' + struct.pack('>I', 0) + b'N' + test_data

        parser = BLTEParser()
        blte_file = parser.parse(blte_data)

        assert blte_file.header.is_single_chunk()
        assert blte_file.header.chunk_count is None
        assert len(blte_file.chunks) == 1
        assert blte_file.chunks[0].mode == CompressionMode.NONE
        assert parser.decompress(blte_file) == test_data

    def test_single_chunk_zlib_compression(self):
        """Headerless file with one zlib chunk."""
        original_data = b'Hello, World! This is a longer message for compression.'
        blte_data = b'BLTE' + struct.pack('>I', 0) + b'Z' + zlib.compress(original_data)

        assert BLTEParser().decode(blte_data) == original_data

    def test_multi_chunk_mixed_modes(self):
        """Chunks of different modes decode and concatenate in order."""
        first = b'A' * 100
        second = b'B' * 300
        blte_data = _multi_chunk([
            (b'N' + first, len(first)),
            (b'Z' + zlib.compress(second), len(second)),
        ])

        blte_file = BLTEParser().parse(blte_data)
        assert blte_file.header.chunk_count == 2
        assert blte_file.header.flags == 0x0F
        assert BLTEParser().decode(blte_data) == first + second

    def test_invalid_magic(self):
        with pytest.raises(DecodeError, match="Invalid BLTE magic"):
            BLTEParser().parse(b'XXXX' + struct.pack('>I', 0) + b'Ndata')

    def test_header_size_mismatch(self):
        """Header size must equal 12 + 24 * chunk count."""
        blte_data = bytearray(_multi_chunk([(b'Nabc', 3)]))
        blte_data[4:8] = struct.pack('>I', 40)
        with pytest.raises(DecodeError, match="header size"):
            BLTEParser().parse(bytes(blte_data))

    def test_checksum_mismatch(self):
        """Flipping any byte of the chunk data fails the chunk checksum."""
        original = _multi_chunk([(b'Nabcdef', 6)])
        # chunk data follows the 12 byte header and one 24 byte chunk info
        for index in range(36, len(original)):
            blte_data = bytearray(original)
            blte_data[index] ^= 0xFF
            with pytest.raises(DecodeError, match="checksum mismatch"):
                BLTEParser().parse(bytes(blte_data))

    def test_decode_deterministic(self):
        blte_data = _multi_chunk([
            (b'N' + b'A' * 64, 64),
            (b'Z' + zlib.compress(b'B' * 256), 256),
        ])
        parser = BLTEParser()
        assert parser.decode(blte_data) == parser.decode(blte_data) == b'A' * 64 + b'B' * 256

    def test_chunk_count_required(self):
        header = BLTEHeader(magic=b'BLTE', header_size=36)
        with pytest.raises(DecodeError, match="chunk count"):
            BLTEParser()._parse_chunks(BytesIO(b''), header)

    def test_truncated_chunk(self):
        blte_data = _multi_chunk([(b'N' + b'x' * 50, 50)])
        with pytest.raises(DecodeError):
            BLTEParser().parse(blte_data[:-10])

    def test_unknown_mode(self):
        blte_data = b'BLTE' + struct.pack('>I', 0) + b'Q' + b'data'
        with pytest.raises(DecodeError, match="Unsupported BLTE chunk mode"):
            BLTEParser().decode(blte_data)

    def test_declared_size_mismatch(self):
        """Decoded chunk size must match the chunk table."""
        blte_data = _multi_chunk([(b'Nabc', 10)])
        with pytest.raises(DecodeError, match="expected 10"):
            BLTEParser().decode(blte_data)

    def test_corrupt_zlib(self):
        blte_data = b'BLTE' + struct.pack('>I', 0) + b'Z' + b'not zlib at all'
        with pytest.raises(DecodeError, match="ZLIB"):
            BLTEParser().decode(blte_data)

    def test_empty_single_chunk(self):
        with pytest.raises(DecodeError, match="Empty"):
            BLTEParser().parse(b'BLTE' + struct.pack('>I', 0))

    def test_decode_errors_are_value_errors(self):
        """DecodeError stays catchable as ValueError."""
        with pytest.raises(ValueError):
            BLTEParser().parse(b'BLTE')


class TestBLTEEncryption:
    """Test encrypted chunk handling."""

    def test_encrypted_chunk_roundtrip(self, key_store: KeyStore, key_name: bytes, key_value: bytes):
        data = b'secret payload ' * 20
        blte_data = (
            BLTEBuilder()
            .add_chunk(b'plain prefix')
            .add_encrypted_chunk(data, key_name, key_value, iv=b'\x01\x02\x03\x04')
            .build()
        )
        assert BLTEParser(key_store).decode(blte_data) == b'plain prefix' + data

    def test_encrypted_zlib_inner_chunk(self, key_store: KeyStore, key_name: bytes, key_value: bytes):
        data = b'compressible ' * 100
        blte_data = (
            BLTEBuilder()
            .add_encrypted_chunk(data, key_name, key_value, inner_mode=CompressionMode.ZLIB)
            .build()
        )
        assert BLTEParser(key_store).decode(blte_data) == data

    def test_chunk_index_changes_ciphertext(self, key_name: bytes, key_value: bytes):
        """The same plaintext encrypts differently at different chunk positions."""
        data = b'same' * 8
        blte_data = (
            BLTEBuilder()
            .add_encrypted_chunk(data, key_name, key_value)
            .add_encrypted_chunk(data, key_name, key_value)
            .build()
        )
        blte_file = BLTEParser().parse(blte_data)
        assert blte_file.chunks[0].data != blte_file.chunks[1].data

    def test_missing_key(self, key_name: bytes, key_value: bytes):
        blte_data = BLTEBuilder().add_encrypted_chunk(b'data', key_name, key_value).build()
        with pytest.raises(DecodeError, match="key not found"):
            BLTEParser(KeyStore()).decode(blte_data)

    def test_no_key_store(self, key_name: bytes, key_value: bytes):
        blte_data = BLTEBuilder().add_encrypted_chunk(b'data', key_name, key_value).build()
        with pytest.raises(DecodeError):
            BLTEParser().decode(blte_data)

    def test_arc4_unsupported(self, key_store: KeyStore, key_name: bytes):
        payload = b'E' + bytes([8]) + key_name + bytes([4]) + b'\x00' * 4 + b'A' + b'ciphertext'
        blte_data = b'BLTE' + struct.pack('>I', 0) + payload
        with pytest.raises(DecodeError, match="ARC4"):
            BLTEParser(key_store).decode(blte_data)

    def test_bad_iv_size(self, key_store: KeyStore, key_name: bytes):
        payload = b'E' + bytes([8]) + key_name + bytes([5]) + b'\x00' * 5 + b'S' + b'ciphertext'
        blte_data = b'BLTE' + struct.pack('>I', 0) + payload
        with pytest.raises(DecodeError, match="IV size"):
            BLTEParser(key_store).decode(blte_data)

    def test_truncated_encryption_header(self, key_store: KeyStore):
        blte_data = b'BLTE' + struct.pack('>I', 0) + b'E' + bytes([8]) + b'\x01\x02'
        with pytest.raises(DecodeError):
            BLTEParser(key_store).decode(blte_data)


class TestBLTEBuilder:
    """Test BLTE builder output."""

    def test_single_chunk_form(self):
        blte_data = BLTEBuilder().add_chunk(b'abc').build(single_chunk=True)
        assert blte_data == b'BLTE\x00\x00\x00\x00Nabc'

    def test_single_chunk_requires_one_chunk(self):
        with pytest.raises(ValueError):
            BLTEBuilder().add_chunk(b'a').add_chunk(b'b').build(single_chunk=True)

    def test_rejects_encrypted_mode_in_add_chunk(self):
        with pytest.raises(ValueError):
            BLTEBuilder().add_chunk(b'a', CompressionMode.ENCRYPTED)
