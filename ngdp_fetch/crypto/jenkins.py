"""Bob Jenkins' lookup3 hash functions.

Used for guarded block checksums in local ``.idx`` files and for the
64-bit file name hashes stored in Root manifests.

Reference: http://burtleburtle.net/bob/c/lookup3.c (public domain).
"""

from __future__ import annotations

import struct

_MASK = 0xFFFFFFFF


def _rot(x: int, k: int) -> int:
    """Rotate x left by k bits (32-bit)."""
    return ((x << k) | (x >> (32 - k))) & _MASK


def _mix(a: int, b: int, c: int) -> tuple[int, int, int]:
    """Mix 3 32-bit values reversibly."""
    for shift_a, shift_b, shift_c in ((4, 6, 8), (16, 19, 4)):
        a = ((a - c) & _MASK) ^ _rot(c, shift_a)
        c = (c + b) & _MASK
        b = ((b - a) & _MASK) ^ _rot(a, shift_b)
        a = (a + c) & _MASK
        c = ((c - b) & _MASK) ^ _rot(b, shift_c)
        b = (b + a) & _MASK
    return a, b, c


def _final(a: int, b: int, c: int) -> tuple[int, int, int]:
    """Final mixing of 3 32-bit values into c."""
    c = ((c ^ b) - _rot(b, 14)) & _MASK
    a = ((a ^ c) - _rot(c, 11)) & _MASK
    b = ((b ^ a) - _rot(a, 25)) & _MASK
    c = ((c ^ b) - _rot(b, 16)) & _MASK
    a = ((a ^ c) - _rot(c, 4)) & _MASK
    b = ((b ^ a) - _rot(a, 14)) & _MASK
    c = ((c ^ b) - _rot(b, 24)) & _MASK
    return a, b, c


def _hash(data: bytes, a: int, b: int, c: int) -> tuple[int, int]:
    """Run the lookup3 block loop and tail, returning (c, b)."""
    length = len(data)
    if length == 0:
        return c, b

    offset = 0
    while length - offset > 12:
        k0, k1, k2 = struct.unpack_from('<3I', data, offset)
        a = (a + k0) & _MASK
        b = (b + k1) & _MASK
        c = (c + k2) & _MASK
        a, b, c = _mix(a, b, c)
        offset += 12

    # Zero padding is equivalent to the byte-wise tail switch
    tail = data[offset:].ljust(12, b'\x00')
    k0, k1, k2 = struct.unpack('<3I', tail)
    a = (a + k0) & _MASK
    b = (b + k1) & _MASK
    c = (c + k2) & _MASK
    a, b, c = _final(a, b, c)
    return c, b


def hashlittle(data: bytes, initval: int = 0) -> int:
    """Hash a variable-length key into a 32-bit value.

    Args:
        data: The data to hash
        initval: Seed for the hash

    Returns:
        32-bit hash value
    """
    a = b = c = (0xDEADBEEF + len(data) + initval) & _MASK
    return _hash(data, a, b, c)[0]


def hashlittle2(data: bytes, pc: int = 0, pb: int = 0) -> tuple[int, int]:
    """Compute two 32-bit hash values from the same key.

    Args:
        data: The data to hash
        pc: Primary seed
        pb: Secondary seed

    Returns:
        Tuple of (pc, pb) hash values
    """
    a = b = c = (0xDEADBEEF + len(data) + pc) & _MASK
    c = (c + pb) & _MASK
    return _hash(data, a, b, c)


def name_hash(path: str) -> int:
    """Compute the 64-bit Root name hash of a file path.

    Paths are hashed upper-cased with backslash separators.
    """
    normalized = path.replace('/', '\\').upper().encode('ascii', errors='replace')
    pc, pb = hashlittle2(normalized)
    return (pc << 32) | pb
