"""
Bit Encoder Module

Maps an unsigned 32-bit number to a fixed-width record: a 4-byte key and a
vector of 32 attributes, one per bit. Each attribute holds one of two shared
sentinel values, ONE or ZERO, so that a record can be found again by an
exact-match search over all of its bits.
"""

import struct
from dataclasses import dataclass
from typing import Sequence, Tuple

# Constants
BIT_WIDTH = 32
UINT32_MAX = 0xFFFFFFFF

# Sentinel attribute values, shared by every record
ONE = b"one"
ZERO = b"zero"

_KEY_FORMAT = '>I'


@dataclass(frozen=True)
class BitRecord:
    """A record ready to be written: packed key plus attribute vector."""
    key: bytes
    attributes: Tuple[bytes, ...]


def _check_uint32(n: int) -> None:
    if not 0 <= n <= UINT32_MAX:
        raise ValueError(f"{n} is not an unsigned 32-bit integer")


def bits_pack_key(n: int) -> bytes:
    """
    Pack a number into its 4-byte key (big-endian, network order).

    Args:
        n: Unsigned 32-bit integer

    Returns:
        4-byte key
    """
    _check_uint32(n)
    return struct.pack(_KEY_FORMAT, n)


def bits_unpack_key(key: bytes) -> int:
    """Unpack a 4-byte key back into its number."""
    if len(key) != struct.calcsize(_KEY_FORMAT):
        raise ValueError(f"Key must be {struct.calcsize(_KEY_FORMAT)} bytes, got {len(key)}")
    return struct.unpack(_KEY_FORMAT, key)[0]


def bits_attributes(n: int) -> Tuple[bytes, ...]:
    """
    Build the attribute vector for a number.

    Attribute i is ONE when bit i of n is set, ZERO otherwise (bit 0 = LSB).

    Args:
        n: Unsigned 32-bit integer

    Returns:
        Tuple of exactly BIT_WIDTH sentinel values
    """
    _check_uint32(n)
    return tuple(ONE if (n >> i) & 1 else ZERO for i in range(BIT_WIDTH))


def bits_encode(n: int) -> BitRecord:
    """
    Encode a number into the record that represents it in the store.

    Args:
        n: Unsigned 32-bit integer

    Returns:
        BitRecord with the packed key and the 32 attributes

    Raises:
        ValueError: If n is outside [0, 2^32)
    """
    return BitRecord(key=bits_pack_key(n), attributes=bits_attributes(n))


def bits_decode(attributes: Sequence[bytes]) -> int:
    """
    Rebuild the number from an attribute vector.

    Args:
        attributes: Vector of BIT_WIDTH sentinel values

    Returns:
        The number whose encoding produced the vector

    Raises:
        ValueError: If the vector has the wrong length or holds a
            value that is neither ONE nor ZERO
    """
    if len(attributes) != BIT_WIDTH:
        raise ValueError(f"Attribute vector must have {BIT_WIDTH} entries, got {len(attributes)}")

    n = 0
    for i, value in enumerate(attributes):
        if value == ONE:
            n |= 1 << i
        elif value != ZERO:
            raise ValueError(f"Attribute {i} holds unknown value {value!r}")
    return n


def bits_key_hex(key: bytes) -> str:
    """Render a key as hex for diagnostics."""
    return key.hex()
