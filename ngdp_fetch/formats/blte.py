"""BLTE (Block Table Encoded) format parser.

Every blob on the CDN and in local archives is stored as BLTE: a header
declaring the chunk table followed by chunks that each start with a
one-byte mode tag. Decoding is all-or-nothing; any malformed chunk,
checksum mismatch or missing key fails the whole call with DecodeError.
"""

from __future__ import annotations

import hashlib
import struct
import zlib
from io import BytesIO
from typing import TYPE_CHECKING, BinaryIO

import structlog
from Crypto.Cipher import Salsa20
from pydantic import BaseModel, Field

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.core.types import CompressionMode, EncryptionType
from ngdp_fetch.formats.base import FormatParser, read_exact

if TYPE_CHECKING:
    from ngdp_fetch.core.key_store import KeyStore

logger = structlog.get_logger()


class BLTEChunkInfo(BaseModel):
    """Chunk table entry declared in a multi-chunk header."""

    compressed_size: int = Field(description="Encoded size including the mode byte")
    decompressed_size: int = Field(description="Decoded size")
    checksum: bytes = Field(description="MD5 of the encoded chunk")


class BLTEChunk(BaseModel):
    """BLTE chunk as read from the stream."""

    index: int = Field(description="Position of the chunk in the file")
    mode: CompressionMode = Field(description="Chunk mode tag")
    data: bytes = Field(description="Chunk payload after the mode byte")
    info: BLTEChunkInfo | None = Field(default=None, description="Declared sizes, absent for single-chunk files")


class BLTEHeader(BaseModel):
    """BLTE file header."""

    magic: bytes = Field(description="Magic bytes (BLTE)")
    header_size: int = Field(description="Header size")
    flags: int | None = Field(default=None, description="Flags")
    chunk_count: int | None = Field(default=None, description="Number of chunks")

    def is_single_chunk(self) -> bool:
        """Check if this is a single chunk file."""
        return self.header_size == 0


class BLTEFile(BaseModel):
    """Complete BLTE file structure."""

    header: BLTEHeader = Field(description="File header")
    chunks: list[BLTEChunk] = Field(description="Data chunks")


def _chunk_mode(mode_byte: bytes) -> CompressionMode:
    try:
        return CompressionMode(mode_byte.decode('ascii'))
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"Unsupported BLTE chunk mode: {mode_byte!r}") from e


def _chunk_nonce(iv: bytes, chunk_index: int) -> bytes:
    """Expand an IV to a Salsa20 nonce, mixing in the chunk index."""
    nonce = bytearray(iv.ljust(8, b'\x00'))
    for i in range(4):
        nonce[i] ^= (chunk_index >> (i * 8)) & 0xFF
    return bytes(nonce)


class BLTEParser(FormatParser[BLTEFile]):
    """Parser and decoder for the BLTE container."""

    BLTE_MAGIC = b'BLTE'
    CHUNK_INFO_SIZE = 24
    MAX_NESTING = 8

    def __init__(self, key_store: KeyStore | None = None):
        """Initialize parser with an optional key store for encrypted chunks."""
        self.key_store = key_store

    def parse(self, data: bytes | BinaryIO) -> BLTEFile:
        """Parse the BLTE structure and validate chunk checksums.

        Args:
            data: Binary data or stream

        Returns:
            Parsed BLTE file
        """
        stream = self._as_stream(data)
        header = self._parse_header(stream)

        if header.is_single_chunk():
            payload = stream.read()
            if not payload:
                raise DecodeError("Empty BLTE chunk data")
            chunks = [BLTEChunk(index=0, mode=_chunk_mode(payload[0:1]), data=payload[1:])]
        else:
            chunks = self._parse_chunks(stream, header)

        return BLTEFile(header=header, chunks=chunks)

    def _parse_header(self, stream: BinaryIO) -> BLTEHeader:
        magic = stream.read(4)
        if magic != self.BLTE_MAGIC:
            raise DecodeError(f"Invalid BLTE magic: {magic!r}")

        header_size = struct.unpack('>I', read_exact(stream, 4, "BLTE header size"))[0]
        header = BLTEHeader(magic=magic, header_size=header_size)
        if header_size == 0:
            return header

        flags = read_exact(stream, 1, "BLTE flags")[0]
        chunk_count = struct.unpack('>I', b'\x00' + read_exact(stream, 3, "BLTE chunk count"))[0]
        if chunk_count == 0:
            raise DecodeError("BLTE header declares zero chunks")

        expected_size = 12 + chunk_count * self.CHUNK_INFO_SIZE
        if header_size != expected_size:
            raise DecodeError(f"BLTE header size {header_size} does not match {chunk_count} chunks")

        header.flags = flags
        header.chunk_count = chunk_count
        return header

    def _parse_chunks(self, stream: BinaryIO, header: BLTEHeader) -> list[BLTEChunk]:
        if header.chunk_count is None:
            raise DecodeError("BLTE chunk count not available")

        infos: list[BLTEChunkInfo] = []
        for _ in range(header.chunk_count):
            comp_size, decomp_size = struct.unpack('>II', read_exact(stream, 8, "BLTE chunk info"))
            checksum = read_exact(stream, 16, "BLTE chunk checksum")
            infos.append(BLTEChunkInfo(
                compressed_size=comp_size,
                decompressed_size=decomp_size,
                checksum=checksum
            ))

        chunks: list[BLTEChunk] = []
        for index, info in enumerate(infos):
            if info.compressed_size == 0:
                raise DecodeError(f"BLTE chunk {index} has no mode byte")
            raw = read_exact(stream, info.compressed_size, f"BLTE chunk {index}")

            if hashlib.md5(raw).digest() != info.checksum:
                raise DecodeError(f"BLTE chunk {index} checksum mismatch")

            chunks.append(BLTEChunk(index=index, mode=_chunk_mode(raw[0:1]), data=raw[1:], info=info))

        trailing = stream.read(1)
        if trailing:
            logger.debug("blte_trailing_data", chunk_count=len(chunks))

        return chunks

    def decompress(self, obj: BLTEFile) -> bytes:
        """Decode every chunk in order and concatenate the plaintext.

        Args:
            obj: Parsed BLTE file

        Returns:
            Decoded data
        """
        parts: list[bytes] = []

        for chunk in obj.chunks:
            decoded = self._decode_chunk(chunk.mode, chunk.data, chunk.index, depth=0)
            if chunk.info is not None and len(decoded) != chunk.info.decompressed_size:
                raise DecodeError(
                    f"BLTE chunk {chunk.index} decoded to {len(decoded)} bytes, "
                    f"expected {chunk.info.decompressed_size}"
                )
            parts.append(decoded)

        return b''.join(parts)

    def decode(self, data: bytes | BinaryIO) -> bytes:
        """Parse and decode in one step."""
        return self.decompress(self.parse(data))

    def _decode_chunk(self, mode: CompressionMode, payload: bytes, chunk_index: int, depth: int) -> bytes:
        if mode == CompressionMode.NONE:
            return payload

        if mode == CompressionMode.ZLIB:
            try:
                return zlib.decompress(payload)
            except zlib.error as e:
                raise DecodeError(f"ZLIB decompression failed in chunk {chunk_index}: {e}") from e

        if mode == CompressionMode.ENCRYPTED:
            if depth >= self.MAX_NESTING:
                raise DecodeError(f"BLTE chunk {chunk_index} nests encryption too deeply")
            decrypted = self._decrypt_chunk(payload, chunk_index)
            if not decrypted:
                raise DecodeError(f"Encrypted chunk {chunk_index} has no inner payload")
            inner_mode = _chunk_mode(decrypted[0:1])
            return self._decode_chunk(inner_mode, decrypted[1:], chunk_index, depth + 1)

        raise DecodeError(f"Unsupported BLTE chunk mode: {mode}")

    def _decrypt_chunk(self, payload: bytes, chunk_index: int) -> bytes:
        """Decrypt an encrypted chunk payload.

        Layout: key name length, key name, IV length, IV, cipher type,
        then the ciphertext.
        """
        stream = BytesIO(payload)
        key_name_size = read_exact(stream, 1, "encryption key name size")[0]
        if key_name_size == 0:
            raise DecodeError("Encrypted chunk has an empty key name")
        key_name = read_exact(stream, key_name_size, "encryption key name")

        iv_size = read_exact(stream, 1, "encryption IV size")[0]
        if iv_size not in (4, 8):
            raise DecodeError(f"Unsupported encryption IV size: {iv_size}")
        iv = read_exact(stream, iv_size, "encryption IV")

        type_byte = read_exact(stream, 1, "encryption type")[0]
        try:
            encryption_type = EncryptionType(type_byte)
        except ValueError as e:
            raise DecodeError(f"Unknown encryption type: {type_byte:02x}") from e

        key = self.key_store.get_key(key_name) if self.key_store is not None else None
        if key is None:
            raise DecodeError(f"Encryption key not found: {key_name.hex()}")

        if encryption_type != EncryptionType.SALSA20:
            raise DecodeError(f"Unsupported encryption type: {encryption_type.name}")

        cipher = Salsa20.new(key=key, nonce=_chunk_nonce(iv, chunk_index))
        return cipher.decrypt(stream.read())


class BLTEBuilder:
    """Builder for BLTE blobs, chunk by chunk."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._sizes: list[int] = []

    def add_chunk(self, data: bytes, mode: CompressionMode = CompressionMode.NONE) -> BLTEBuilder:
        """Append a plain or zlib chunk."""
        if mode == CompressionMode.ZLIB:
            encoded = b'Z' + zlib.compress(data)
        elif mode == CompressionMode.NONE:
            encoded = b'N' + data
        else:
            raise ValueError(f"Use add_encrypted_chunk for mode {mode}")
        self._chunks.append(encoded)
        self._sizes.append(len(data))
        return self

    def add_encrypted_chunk(
        self,
        data: bytes,
        key_name: bytes,
        key: bytes,
        iv: bytes = b'\x00\x00\x00\x00',
        inner_mode: CompressionMode = CompressionMode.NONE,
    ) -> BLTEBuilder:
        """Append a Salsa20 encrypted chunk wrapping a plain or zlib chunk."""
        inner = b'Z' + zlib.compress(data) if inner_mode == CompressionMode.ZLIB else b'N' + data
        cipher = Salsa20.new(key=key, nonce=_chunk_nonce(iv, len(self._chunks)))
        encoded = (
            b'E'
            + bytes([len(key_name)]) + key_name
            + bytes([len(iv)]) + iv
            + bytes([EncryptionType.SALSA20.value])
            + cipher.encrypt(inner)
        )
        self._chunks.append(encoded)
        self._sizes.append(len(data))
        return self

    def build(self, single_chunk: bool = False) -> bytes:
        """Serialize the chunks.

        Args:
            single_chunk: Emit the headerless form (exactly one chunk)
        """
        if single_chunk:
            if len(self._chunks) != 1:
                raise ValueError("Single chunk BLTE requires exactly one chunk")
            return b'BLTE' + struct.pack('>I', 0) + self._chunks[0]

        result = BytesIO()
        result.write(b'BLTE')
        result.write(struct.pack('>I', 12 + 24 * len(self._chunks)))
        result.write(struct.pack('>I', len(self._chunks) | 0x0F000000))
        for encoded, size in zip(self._chunks, self._sizes, strict=True):
            result.write(struct.pack('>II', len(encoded), size))
            result.write(hashlib.md5(encoded).digest())
        for encoded in self._chunks:
            result.write(encoded)
        return result.getvalue()


def is_blte(data: bytes) -> bool:
    """Check if data starts with the BLTE magic."""
    return len(data) >= 4 and data[:4] == b'BLTE'
