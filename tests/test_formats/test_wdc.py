"""Tests for WDC3 table reader."""

import struct

import pytest

from ngdp_fetch.core.errors import DecodeError
from ngdp_fetch.formats.wdc import StorageType, WDC3Builder, WDC3Parser


class TestWDC3Parser:
    """Test WDC3 table parsing."""

    def test_raw_byte_fields(self):
        """Uncompressed fields come back as raw bytes."""
        data = (
            WDC3Builder()
            .add_field(StorageType.NONE, size_bits=64)
            .add_record(7, [bytes.fromhex("0102030405060708")])
            .add_record(9, [bytes.fromhex("1112131415161718")])
            .build()
        )

        table = WDC3Parser().parse(data)

        assert len(table) == 2
        assert table.get_record(7) == [bytes.fromhex("0102030405060708")]
        assert table.get_record(8) is None
        assert [record_id for record_id, _ in table.iter_records()] == [7, 9]

    def test_key_sized_field(self):
        key = bytes(range(16))
        data = WDC3Builder().add_field(StorageType.NONE, size_bits=128).add_record(1, [key]).build()
        assert WDC3Parser().parse(data).get_record(1) == [key]

    def test_bitpacked_fields(self):
        data = (
            WDC3Builder()
            .add_field(StorageType.BITPACKED, size_bits=5)
            .add_field(StorageType.BITPACKED_SIGNED, size_bits=6)
            .add_record(1, [17, -3])
            .add_record(2, [31, 12])
            .build()
        )

        table = WDC3Parser().parse(data)

        assert table.get_record(1) == [17, -3]
        assert table.get_record(2) == [31, 12]

    def test_common_data_default(self):
        data = (
            WDC3Builder()
            .add_field(StorageType.COMMON_DATA, default=42)
            .add_record(1, [42])
            .add_record(2, [99])
            .build()
        )

        table = WDC3Parser().parse(data)

        assert table.get_record(1) == [42]
        assert table.get_record(2) == [99]

    def test_pallet_fields(self):
        data = (
            WDC3Builder()
            .add_field(StorageType.BITPACKED_INDEXED)
            .add_field(StorageType.BITPACKED_INDEXED_ARRAY, array_count=2)
            .add_record(1, [1000, [1, 2]])
            .add_record(2, [2000, [3, 4]])
            .add_record(3, [1000, [1, 2]])
            .build()
        )

        table = WDC3Parser().parse(data)

        assert table.get_record(1) == [1000, [1, 2]]
        assert table.get_record(2) == [2000, [3, 4]]
        assert table.get_record(3) == [1000, [1, 2]]

    def test_copy_table(self):
        data = (
            WDC3Builder()
            .add_field(StorageType.BITPACKED, size_bits=8)
            .add_record(1, [5])
            .add_copy(10, 1)
            .build()
        )
        assert WDC3Parser().parse(data).get_record(10) == [5]

    def test_encrypted_section_skipped(self):
        builder = WDC3Builder().add_field(StorageType.BITPACKED, size_bits=8).add_record(1, [5])
        builder.tact_key_hash = 0x1122334455667788
        assert len(WDC3Parser().parse(builder.build())) == 0

    def test_invalid_magic(self):
        data = bytearray(WDC3Builder().add_field(StorageType.BITPACKED).add_record(1, [1]).build())
        data[0:4] = b'WDC2'
        with pytest.raises(DecodeError, match="Invalid WDC3 magic"):
            WDC3Parser().parse(bytes(data))

    def test_sparse_rejected(self):
        data = bytearray(WDC3Builder().add_field(StorageType.BITPACKED).add_record(1, [1]).build())
        # flags field follows magic and nine u32s
        data[40:42] = struct.pack('<H', 0x01)
        with pytest.raises(DecodeError, match="Sparse"):
            WDC3Parser().parse(bytes(data))

    def test_truncated(self):
        data = WDC3Builder().add_field(StorageType.BITPACKED).add_record(1, [1]).build()
        with pytest.raises(DecodeError):
            WDC3Parser().parse(data[:-8])

    def test_misaligned_id_list(self):
        data = bytearray(WDC3Builder().add_field(StorageType.BITPACKED).add_record(1, [1]).build())
        # id_list_size of the first section header
        data[96:100] = struct.pack('<I', 6)
        with pytest.raises(DecodeError, match="Malformed WDC3 table"):
            WDC3Parser().parse(bytes(data))
