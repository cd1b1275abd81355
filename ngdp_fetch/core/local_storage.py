"""Local CASC storage: read blobs from an existing installation.

Layout under ``<install>/Data``:
- data/ - ``data.NNN`` archives and bucketed ``.idx`` index files
- indices/ - CDN archive indexes kept by the launcher

Index files map 9-byte truncated encoding keys to (archive, offset,
size). Each of the 16 buckets may have several generations on disk;
only the newest is current.
"""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from ngdp_fetch.core.errors import DecodeError, ExtractionError
from ngdp_fetch.core.data_source import DataSource
from ngdp_fetch.core.key_store import KeyStore
from ngdp_fetch.core.types import LocalLocation
from ngdp_fetch.crypto.jenkins import hashlittle, hashlittle2
from ngdp_fetch.formats.blte import is_blte

logger = structlog.get_logger()

DATA_DIR = "data"
INDICES_DIR = "indices"

BUCKET_COUNT = 16
TRUNCATED_KEY_SIZE = 9
LOCAL_HEADER_SIZE = 30

UPDATE_SECTION_OFFSET = 0x10000
UPDATE_ENTRY_SIZE = 24
UPDATE_STATUS_DELETE = 3

_IDX_PATTERN = re.compile(r'^([0-9a-f]{2})([0-9a-f]{8})\.idx$', re.IGNORECASE)


def _pack_location(archive_id: int, archive_offset: int) -> bytes:
    # 10 bits of archive id over a 30-bit offset, big-endian
    index_high = (archive_id >> 2) & 0xFF
    index_low = ((archive_id & 0x03) << 30) | (archive_offset & 0x3FFFFFFF)
    return struct.pack('>BI', index_high, index_low)


def _unpack_location(data: bytes) -> tuple[int, int]:
    index_high, index_low = struct.unpack('>BI', data)
    return (index_high << 2) | (index_low >> 30), index_low & 0x3FFFFFFF


@dataclass
class LocalIndexEntry:
    """Entry in a local index file (18-byte format).

    Format:
    - 9 bytes: Truncated encoding key
    - 5 bytes: Archive location (1 byte high + 4 bytes packed)
    - 4 bytes: Size (little-endian)
    """
    key: bytes
    archive_id: int
    archive_offset: int
    size: int

    def to_bytes(self) -> bytes:
        """Serialize entry to 18 bytes."""
        return (
            self.key[:TRUNCATED_KEY_SIZE].ljust(TRUNCATED_KEY_SIZE, b'\x00')
            + _pack_location(self.archive_id, self.archive_offset)
            + struct.pack('<I', self.size)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> LocalIndexEntry:
        """Parse entry from 18 bytes."""
        if len(data) < 18:
            raise DecodeError(f"Entry data too small: {len(data)} < 18")
        archive_id, archive_offset = _unpack_location(data[9:14])
        size = struct.unpack('<I', data[14:18])[0]
        return cls(key=data[:9], archive_id=archive_id, archive_offset=archive_offset, size=size)

    def location(self) -> LocalLocation:
        return LocalLocation(archive_id=self.archive_id, offset=self.archive_offset, size=self.size)


@dataclass
class UpdateEntry:
    """Entry in the update section of a V7 index file (24-byte format).

    - 4 bytes: Hash guard (LE), hashlittle(entry_bytes[4:24], 0) | 0x80000000
    - 9 bytes: Truncated encoding key
    - 5 bytes: Archive location
    - 4 bytes: Size (LE)
    - 1 byte: Status (0=normal, 3=delete)
    - 1 byte: Padding
    """
    hash_guard: int
    entry: LocalIndexEntry
    status: int

    @classmethod
    def from_bytes(cls, data: bytes) -> UpdateEntry:
        """Parse entry from 24 bytes."""
        if len(data) < UPDATE_ENTRY_SIZE:
            raise DecodeError(f"Update entry data too small: {len(data)} < {UPDATE_ENTRY_SIZE}")
        hash_guard = struct.unpack('<I', data[0:4])[0]
        return cls(hash_guard=hash_guard, entry=LocalIndexEntry.from_bytes(data[4:22]), status=data[22])

    @classmethod
    def from_index_entry(cls, entry: LocalIndexEntry, status: int = 0) -> UpdateEntry:
        """Create an update entry, computing its hash guard."""
        payload = entry.to_bytes() + struct.pack('BB', status, 0)
        return cls(hash_guard=hashlittle(payload, 0) | 0x80000000, entry=entry, status=status)

    def to_bytes(self) -> bytes:
        return struct.pack('<I', self.hash_guard) + self.entry.to_bytes() + struct.pack('BB', self.status, 0)


@dataclass
class LocalIndexFile:
    """Parsed local index file."""
    version: int
    bucket: int
    entries: list[LocalIndexEntry] = field(default_factory=list)
    update_entries: list[UpdateEntry] = field(default_factory=list)

    def effective_entries(self) -> dict[bytes, LocalIndexEntry]:
        """Sorted entries with the update section applied in order."""
        result = {e.key: e for e in self.entries}
        for update in self.update_entries:
            if update.status == UPDATE_STATUS_DELETE:
                result.pop(update.entry.key, None)
            else:
                result[update.entry.key] = update.entry
        return result


def compute_bucket(encoding_key: bytes) -> int:
    """Bucket of an encoding key: XOR-fold of the first 9 bytes, then of the nibbles."""
    xor_val = 0
    for byte in encoding_key[:TRUNCATED_KEY_SIZE]:
        xor_val ^= byte
    return ((xor_val >> 4) ^ xor_val) & 0x0F


def format_idx_filename(bucket: int, generation: int = 1) -> str:
    """Index filename for a bucket, e.g. ``0f00000001.idx``."""
    return f"{bucket:02x}{generation:08x}.idx"


def format_data_filename(archive_id: int) -> str:
    """Archive filename, e.g. ``data.001``."""
    return f"data.{archive_id:03d}"


def parse_local_idx_file(data: bytes) -> LocalIndexFile:
    """Parse a local .idx file (V7 layout with guarded blocks).

    Layout:
      0x00: Guarded block header (size, hashlittle) for the file header
      0x08: File header (16 bytes)
      0x20: Guarded block header for the sorted entries
      0x28: Sorted entries (N * 18 bytes)
      0x10000: Update section (24-byte entries)

    Guard mismatches are logged; structure errors raise DecodeError.
    """
    if len(data) < 0x28:
        raise DecodeError(f"Data too short for local idx file: {len(data)} < 40")

    header_block_size, header_block_hash = struct.unpack('<II', data[0:8])
    if hashlittle(data[8:8 + header_block_size], 0) != header_block_hash:
        logger.warning("idx_header_guard_mismatch", expected=f"{header_block_hash:#010x}")

    version = struct.unpack('<H', data[8:10])[0]
    bucket = data[10]
    encoded_size_length = data[12]
    storage_offset_length = data[13]
    ekey_length = data[14]

    if version not in (7, 8):
        logger.warning("idx_unexpected_version", version=version)
    if (ekey_length, storage_offset_length, encoded_size_length) != (9, 5, 4):
        raise DecodeError(
            f"Unsupported idx entry layout: key={ekey_length} "
            f"offset={storage_offset_length} size={encoded_size_length}"
        )

    entry_size = 18
    entry_block_size, entry_block_hash = struct.unpack('<II', data[0x20:0x28])
    entry_data = data[0x28:0x28 + entry_block_size]
    if len(entry_data) != entry_block_size:
        raise DecodeError("Local idx entry block is truncated")

    pc, pb = 0, 0
    entries: list[LocalIndexEntry] = []
    for offset in range(0, entry_block_size - entry_size + 1, entry_size):
        raw = entry_data[offset:offset + entry_size]
        pc, pb = hashlittle2(raw, pc, pb)
        if raw[:ekey_length] != b'\x00' * ekey_length:
            entries.append(LocalIndexEntry.from_bytes(raw))
    if pc != entry_block_hash:
        logger.warning("idx_entry_guard_mismatch", expected=f"{entry_block_hash:#010x}", actual=f"{pc:#010x}")

    update_entries: list[UpdateEntry] = []
    update_data = data[UPDATE_SECTION_OFFSET:]
    for offset in range(0, len(update_data) - UPDATE_ENTRY_SIZE + 1, UPDATE_ENTRY_SIZE):
        raw = update_data[offset:offset + UPDATE_ENTRY_SIZE]
        if raw[:4] == b'\x00\x00\x00\x00':
            continue
        update = UpdateEntry.from_bytes(raw)
        if update.hash_guard != hashlittle(raw[4:24], 0) | 0x80000000:
            logger.warning("idx_update_guard_mismatch", offset=UPDATE_SECTION_OFFSET + offset)
            continue
        update_entries.append(update)

    return LocalIndexFile(version=version, bucket=bucket, entries=entries, update_entries=update_entries)


def build_local_idx_file(bucket: int, entries: list[LocalIndexEntry],
                         updates: list[UpdateEntry] | None = None) -> bytes:
    """Serialize a V7 index file with guard hashes and an update section."""
    header_data = struct.pack('<HBBBBBB', 7, bucket, 0, 4, 5, 9, 30) + struct.pack('<Q', 0x40000000)
    ordered = sorted(entries, key=lambda e: e.key)
    entries_data = b''.join(entry.to_bytes() for entry in ordered)

    pc, pb = 0, 0
    for entry in ordered:
        pc, pb = hashlittle2(entry.to_bytes(), pc, pb)

    out = bytearray()
    out += struct.pack('<II', len(header_data), hashlittle(header_data, 0))
    out += header_data
    out += b'\x00' * 8
    out += struct.pack('<II', len(entries_data), pc)
    out += entries_data
    out += b'\x00' * (UPDATE_SECTION_OFFSET - len(out))
    for update in updates or []:
        out += update.to_bytes()
    out += b'\x00' * UPDATE_ENTRY_SIZE
    return bytes(out)


def find_current_index_files(data_path: Path) -> dict[int, Path]:
    """Newest-generation .idx file per bucket."""
    newest: dict[int, tuple[int, Path]] = {}
    for idx_file in data_path.glob('*.idx'):
        match = _IDX_PATTERN.match(idx_file.name)
        if not match:
            continue
        bucket = int(match.group(1), 16)
        generation = int(match.group(2), 16)
        if bucket not in newest or generation > newest[bucket][0]:
            newest[bucket] = (generation, idx_file)
    return {bucket: path for bucket, (_, path) in newest.items()}


class LocalDataSource(DataSource[LocalLocation]):
    """Data source backed by a local installation's archives."""

    name = "Local"

    def __init__(self, install_path: Path, key_store: KeyStore):
        """Load the current index file of every bucket.

        Args:
            install_path: Installation root (the directory holding ``Data``)
            key_store: Keys for encrypted blobs
        """
        super().__init__(key_store)
        self.install_path = install_path
        self.data_path = install_path / "Data" / DATA_DIR
        self._buckets: dict[int, dict[bytes, LocalIndexEntry]] = {i: {} for i in range(BUCKET_COUNT)}

        if not self.data_path.is_dir():
            logger.warning("local_data_missing", path=str(self.data_path))
            return

        for bucket, idx_path in sorted(find_current_index_files(self.data_path).items()):
            try:
                index = parse_local_idx_file(idx_path.read_bytes())
            except (OSError, DecodeError) as e:
                logger.warning("local_index_unreadable", path=str(idx_path), error=str(e))
                continue
            self._buckets[bucket] = index.effective_entries()

        logger.info("local_indexes_loaded", path=str(self.data_path), entries=len(self))

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._buckets.values())

    def find_location(self, encoding_key: bytes) -> LocalLocation | None:
        entry = self._buckets[compute_bucket(encoding_key)].get(encoding_key[:TRUNCATED_KEY_SIZE])
        return entry.location() if entry else None

    def read_encoded(self, location: LocalLocation) -> bytes:
        """Read a record from data.NNN and return its BLTE blob.

        Records start with a 30-byte local header (reversed encoding key,
        size, flags, checksums) before the BLTE magic.

        Raises:
            ExtractionError: If the archive is missing or short
            DecodeError: If no BLTE blob is found at the location
        """
        archive_path = self.data_path / format_data_filename(location.archive_id)
        try:
            with open(archive_path, 'rb') as f:
                f.seek(location.offset)
                record = f.read(location.size)
        except OSError as e:
            raise ExtractionError(f"Cannot read {archive_path}: {e}") from e

        if len(record) != location.size:
            raise ExtractionError(
                f"Short read from {archive_path.name} at {location.offset}: "
                f"{len(record)} of {location.size} bytes"
            )

        if is_blte(record):
            return record
        if is_blte(record[LOCAL_HEADER_SIZE:]):
            return record[LOCAL_HEADER_SIZE:]
        raise DecodeError(f"No BLTE data at {archive_path.name}:{location.offset}")
