"""WDC3 client database (DB2) reader.

Only the record layout needed to read id-keyed tables is supported:
non-sparse tables with inline records, ID lists and copy tables.
Sections encrypted with a TACT key are skipped.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from enum import IntEnum
from typing import BinaryIO, Union

import structlog
from pydantic import BaseModel, Field

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.formats.base import FormatParser

logger = structlog.get_logger()

FieldValue = Union[int, bytes, list[int]]


class StorageType(IntEnum):
    """Field compression types."""
    NONE = 0
    BITPACKED = 1
    COMMON_DATA = 2
    BITPACKED_INDEXED = 3
    BITPACKED_INDEXED_ARRAY = 4
    BITPACKED_SIGNED = 5


class WDC3Header(BaseModel):
    """WDC3 file header."""

    magic: bytes
    record_count: int
    field_count: int
    record_size: int
    string_table_size: int
    table_hash: int
    layout_hash: int
    min_id: int
    max_id: int
    locale: int
    flags: int
    id_index: int
    total_field_count: int
    bitpacked_data_offset: int
    lookup_column_count: int
    field_storage_info_size: int
    common_data_size: int
    pallet_data_size: int
    section_count: int

    @property
    def is_sparse(self) -> bool:
        return bool(self.flags & 0x1)


class WDC3Section(BaseModel):
    """Section header."""

    tact_key_hash: int
    file_offset: int
    record_count: int
    string_table_size: int
    offset_records_end: int
    id_list_size: int
    relationship_data_size: int
    offset_map_id_count: int
    copy_table_count: int


class FieldStorage(BaseModel):
    """Field storage info with resolved pallet/common data offsets."""

    offset_bits: int
    size_bits: int
    additional_data_size: int
    storage_type: int
    val1: int
    val2: int
    val3: int
    data_offset: int = Field(default=0, description="Offset into pallet or common data")


class WDC3Table(BaseModel):
    """Decoded table: record id to field values."""

    header: WDC3Header
    sections: list[WDC3Section]
    fields: list[FieldStorage]
    records: dict[int, list[FieldValue]] = Field(default_factory=dict)

    def get_record(self, record_id: int) -> list[FieldValue] | None:
        """Return the field values of a record, or None."""
        return self.records.get(record_id)

    def iter_records(self) -> Iterator[tuple[int, list[FieldValue]]]:
        """Iterate (id, values) in id order."""
        for record_id in sorted(self.records):
            yield record_id, self.records[record_id]

    def __len__(self) -> int:
        return len(self.records)


class WDC3Parser(FormatParser[WDC3Table]):
    """Parser for WDC3 tables."""

    MAGIC = b'WDC3'
    HEADER_FORMAT = '<4s9IHH7I'
    HEADER_SIZE = 72
    SECTION_FORMAT = '<Q8I'
    SECTION_SIZE = 40
    STORAGE_FORMAT = '<HHIIIII'
    STORAGE_SIZE = 24

    def parse(self, data: bytes | BinaryIO) -> WDC3Table:
        """Parse a WDC3 table.

        Args:
            data: Binary data or stream

        Returns:
            Decoded table
        """
        raw = self._as_bytes(data)
        if len(raw) < self.HEADER_SIZE:
            raise DecodeError("Incomplete WDC3 header")

        header = self._parse_header(raw)
        if header.is_sparse:
            raise DecodeError("Sparse WDC3 tables are not supported")

        try:
            table = self._parse_body(raw, header)
        except DecodeError:
            raise
        except (struct.error, IndexError, ValueError) as e:
            raise DecodeError(f"Malformed WDC3 table: {e}") from e

        logger.debug("wdc3_parsed", records=len(table.records), fields=len(table.fields))
        return table

    def _parse_body(self, raw: bytes, header: WDC3Header) -> WDC3Table:
        pos = self.HEADER_SIZE
        sections = []
        for _ in range(header.section_count):
            sections.append(WDC3Section(**dict(zip(
                WDC3Section.model_fields,
                struct.unpack_from(self.SECTION_FORMAT, _slice(raw, pos, self.SECTION_SIZE, "section header")),
                strict=True
            ))))
            pos += self.SECTION_SIZE

        # field structures (size, position) are superseded by storage info
        pos += 4 * header.total_field_count

        fields = self._parse_storage(raw, pos, header)
        pos += header.field_storage_info_size

        pallet_data = _slice(raw, pos, header.pallet_data_size, "pallet data")
        pos += header.pallet_data_size
        common_data = _slice(raw, pos, header.common_data_size, "common data")
        common_maps = self._parse_common(common_data, fields)

        table = WDC3Table(header=header, sections=sections, fields=fields)
        for index, section in enumerate(sections):
            if section.tact_key_hash:
                logger.debug("wdc3_section_encrypted", section=index, key_hash=f"{section.tact_key_hash:016x}")
                continue
            self._read_section(raw, header, section, fields, pallet_data, common_maps, table.records)
        return table

    def _parse_header(self, raw: bytes) -> WDC3Header:
        values = struct.unpack_from(self.HEADER_FORMAT, raw, 0)
        header = WDC3Header(**dict(zip(WDC3Header.model_fields, values, strict=True)))
        if header.magic != self.MAGIC:
            raise DecodeError(f"Invalid WDC3 magic: {header.magic!r}")
        return header

    def _parse_storage(self, raw: bytes, pos: int, header: WDC3Header) -> list[FieldStorage]:
        count = header.field_storage_info_size // self.STORAGE_SIZE
        block = _slice(raw, pos, header.field_storage_info_size, "field storage info")

        fields: list[FieldStorage] = []
        pallet_offset = 0
        common_offset = 0
        for i in range(count):
            values = struct.unpack_from(self.STORAGE_FORMAT, block, i * self.STORAGE_SIZE)
            field = FieldStorage(**dict(zip(list(FieldStorage.model_fields)[:7], values, strict=True)))
            if field.storage_type in (StorageType.BITPACKED_INDEXED, StorageType.BITPACKED_INDEXED_ARRAY):
                field.data_offset = pallet_offset
                pallet_offset += field.additional_data_size
            elif field.storage_type == StorageType.COMMON_DATA:
                field.data_offset = common_offset
                common_offset += field.additional_data_size
            fields.append(field)
        return fields

    def _parse_common(self, common_data: bytes, fields: list[FieldStorage]) -> dict[int, dict[int, int]]:
        """Map field index to {record id: value} for common-data fields."""
        maps: dict[int, dict[int, int]] = {}
        for index, field in enumerate(fields):
            if field.storage_type != StorageType.COMMON_DATA:
                continue
            block = common_data[field.data_offset:field.data_offset + field.additional_data_size]
            maps[index] = dict(struct.iter_unpack('<II', block))
        return maps

    def _read_section(
        self,
        raw: bytes,
        header: WDC3Header,
        section: WDC3Section,
        fields: list[FieldStorage],
        pallet_data: bytes,
        common_maps: dict[int, dict[int, int]],
        records: dict[int, list[FieldValue]],
    ) -> None:
        pos = section.file_offset
        records_data = _slice(raw, pos, section.record_count * header.record_size, "records")
        pos += section.record_count * header.record_size + section.string_table_size

        id_list: list[int] = []
        if section.id_list_size:
            id_list = [v for (v,) in struct.iter_unpack('<I', _slice(raw, pos, section.id_list_size, "id list"))]
            pos += section.id_list_size

        copy_table = _slice(raw, pos, section.copy_table_count * 8, "copy table")

        for i in range(section.record_count):
            record = records_data[i * header.record_size:(i + 1) * header.record_size]
            bits = int.from_bytes(record, 'little')

            record_id = id_list[i] if id_list else None
            values: list[FieldValue] = []
            for index, field in enumerate(fields):
                values.append(self._field_value(record, bits, field, index, record_id, pallet_data, common_maps))

            if record_id is None:
                id_value = values[header.id_index]
                record_id = int.from_bytes(id_value, 'little') if isinstance(id_value, bytes) else int(id_value)
                # common-data lookups need the id, re-resolve them now that it is known
                for index in common_maps:
                    values[index] = common_maps[index].get(record_id, fields[index].val1)

            records[record_id] = values

        for new_id, old_id in struct.iter_unpack('<II', copy_table):
            if old_id in records:
                records[new_id] = list(records[old_id])

    def _field_value(
        self,
        record: bytes,
        bits: int,
        field: FieldStorage,
        index: int,
        record_id: int | None,
        pallet_data: bytes,
        common_maps: dict[int, dict[int, int]],
    ) -> FieldValue:
        storage = field.storage_type

        if storage == StorageType.NONE:
            start = field.offset_bits // 8
            return record[start:start + field.size_bits // 8]

        if storage == StorageType.COMMON_DATA:
            if record_id is None:
                return field.val1
            return common_maps[index].get(record_id, field.val1)

        value = (bits >> field.offset_bits) & ((1 << field.size_bits) - 1)

        if storage == StorageType.BITPACKED:
            return value

        if storage == StorageType.BITPACKED_SIGNED:
            sign_bit = 1 << (field.size_bits - 1)
            return (value ^ sign_bit) - sign_bit

        if storage == StorageType.BITPACKED_INDEXED:
            return _pallet_u32(pallet_data, field.data_offset + value * 4)

        if storage == StorageType.BITPACKED_INDEXED_ARRAY:
            count = field.val3
            base = field.data_offset + value * count * 4
            return [_pallet_u32(pallet_data, base + j * 4) for j in range(count)]

        raise DecodeError(f"Unknown WDC3 storage type: {storage}")


def _slice(raw: bytes, pos: int, size: int, what: str) -> bytes:
    if pos + size > len(raw):
        raise DecodeError(f"Incomplete WDC3 {what}: need {size} bytes at {pos}")
    return raw[pos:pos + size]


def _pallet_u32(pallet_data: bytes, pos: int) -> int:
    if pos + 4 > len(pallet_data):
        raise DecodeError(f"WDC3 pallet index out of range at {pos}")
    return struct.unpack_from('<I', pallet_data, pos)[0]


class WDC3Builder:
    """Builder for single-section WDC3 tables with an ID list."""

    def __init__(self) -> None:
        self._fields: list[tuple[StorageType, int, int, int]] = []
        self._records: list[tuple[int, list[FieldValue]]] = []
        self._copies: list[tuple[int, int]] = []
        self.tact_key_hash = 0

    def add_field(self, storage_type: StorageType, size_bits: int = 32,
                  default: int = 0, array_count: int = 1) -> WDC3Builder:
        """Declare a field; NONE fields take bytes values of size_bits // 8."""
        self._fields.append((storage_type, size_bits, default, array_count))
        return self

    def add_record(self, record_id: int, values: list[FieldValue]) -> WDC3Builder:
        self._records.append((record_id, values))
        return self

    def add_copy(self, new_id: int, old_id: int) -> WDC3Builder:
        self._copies.append((new_id, old_id))
        return self

    def build(self) -> bytes:
        """Serialize to WDC3 bytes."""
        storage_infos: list[tuple[int, ...]] = []
        pallet = bytearray()
        common = bytearray()
        pallet_indexes: list[dict[tuple[int, ...], int]] = []
        offset_bits = 0

        for index, (storage, size_bits, default, array_count) in enumerate(self._fields):
            lookup: dict[tuple[int, ...], int] = {}
            additional = 0
            if storage == StorageType.NONE:
                offset_bits = (offset_bits + 7) // 8 * 8
            elif storage == StorageType.COMMON_DATA:
                size_bits = 0
                for record_id, values in self._records:
                    if values[index] != default:
                        common.extend(struct.pack('<II', record_id, values[index]))
                        additional += 8
            elif storage in (StorageType.BITPACKED_INDEXED, StorageType.BITPACKED_INDEXED_ARRAY):
                for _, values in self._records:
                    value = values[index]
                    key = tuple(value) if isinstance(value, list) else (value,)
                    if key not in lookup:
                        lookup[key] = len(lookup)
                        pallet.extend(struct.pack(f'<{len(key)}I', *key))
                        additional += 4 * len(key)
                size_bits = max(1, (len(lookup) - 1).bit_length())

            storage_infos.append((offset_bits, size_bits, additional, int(storage), default, 0, array_count))
            pallet_indexes.append(lookup)
            offset_bits += size_bits

        record_size = max(1, (offset_bits + 7) // 8)
        records = bytearray()
        for _, values in self._records:
            bits = 0
            for index, info in enumerate(storage_infos):
                storage = StorageType(info[3])
                value = values[index]
                if storage == StorageType.COMMON_DATA:
                    continue
                if storage == StorageType.NONE:
                    encoded = int.from_bytes(bytes(value), 'little')
                elif storage in (StorageType.BITPACKED_INDEXED, StorageType.BITPACKED_INDEXED_ARRAY):
                    key = tuple(value) if isinstance(value, list) else (value,)
                    encoded = pallet_indexes[index][key]
                else:
                    encoded = value & ((1 << info[1]) - 1)
                bits |= encoded << info[0]
            records.extend(bits.to_bytes(record_size, 'little'))

        field_count = len(self._fields)
        ids = [record_id for record_id, _ in self._records]
        data_offset = 72 + 40 + 4 * field_count + 24 * field_count + len(pallet) + len(common)

        out = bytearray()
        out.extend(struct.pack(
            WDC3Parser.HEADER_FORMAT, b'WDC3', len(self._records), field_count, record_size, 0, 0, 0,
            min(ids, default=0), max(ids, default=0), 0, 0, 0, field_count, 0, 0,
            24 * field_count, len(common), len(pallet), 1
        ))
        out.extend(struct.pack(
            WDC3Parser.SECTION_FORMAT, self.tact_key_hash, data_offset, len(self._records), 0, 0,
            4 * len(ids), 0, 0, len(self._copies)
        ))
        for info in storage_infos:
            out.extend(struct.pack('<hH', 32 - min(info[1], 32), info[0] // 8))
        for info in storage_infos:
            out.extend(struct.pack(WDC3Parser.STORAGE_FORMAT, *info))
        out.extend(pallet)
        out.extend(common)
        out.extend(records)
        for record_id in ids:
            out.extend(struct.pack('<I', record_id))
        for new_id, old_id in self._copies:
            out.extend(struct.pack('<II', new_id, old_id))
        return bytes(out)
