"""
Unsigned LEB128 varints.

    value 300 -> 0xAC 0x02
    7-bit groups, least significant first, high bit set on all but the last byte.

The encoder always produces the minimal form. The decoder is total: it never
indexes past the buffer and caps values at 128 bits.
"""

from __future__ import annotations

from anchor_tokens import U128_MAX
from anchor_tokens.errors import FieldOverflowError, MalformedVarint, ValidationError

# ceil(128 / 7)
MAX_VARINT_BYTES = 19


def _check(n: int, max_value: int, field: str) -> None:
    if isinstance(n, bool) or not isinstance(n, int):
        raise ValidationError(f"{field} must be an integer, got {type(n).__name__}")
    if n < 0 or n > max_value:
        raise FieldOverflowError(field, n, max_value)


def encode(n: int, *, max_value: int = U128_MAX, field: str = "value") -> bytes:
    """Encode ``n`` as a minimal-length varint.

    Raises FieldOverflowError if ``n`` is negative or above ``max_value``.
    """
    _check(n, max_value, field)
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def length(n: int, *, max_value: int = U128_MAX, field: str = "value") -> int:
    """Number of bytes ``encode(n)`` produces, without building them."""
    _check(n, max_value, field)
    if n == 0:
        return 1
    return (n.bit_length() + 6) // 7


def decode(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a varint starting at ``offset``.

    Returns (value, bytes_consumed). Raises MalformedVarint if the buffer ends
    mid-varint or the value does not fit in 128 bits.
    """
    if offset < 0 or offset >= len(data):
        raise MalformedVarint(f"Varint at offset {offset} is past end of {len(data)}-byte buffer")

    value = 0
    shift = 0
    pos = offset
    end = len(data)
    while pos < end:
        byte = data[pos]
        pos += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if value > U128_MAX:
                raise MalformedVarint("Varint overflow: value exceeds 128 bits")
            return value, pos - offset
        shift += 7
        if pos - offset >= MAX_VARINT_BYTES:
            raise MalformedVarint(f"Varint overflow: more than {MAX_VARINT_BYTES} bytes")

    raise MalformedVarint("Incomplete varint: buffer ended before terminating byte")
