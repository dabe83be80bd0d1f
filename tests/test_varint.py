"""
Tests for anchor_tokens.varint — LEB128 encode / decode / length.
"""

from __future__ import annotations

import pytest

from anchor_tokens import U64_MAX, U128_MAX
from anchor_tokens import varint
from anchor_tokens.errors import FieldOverflowError, MalformedInput, MalformedVarint, ValidationError


# ---------------------------------------------------------------------------
# TestEncode
# ---------------------------------------------------------------------------

class TestEncode:

    @pytest.mark.parametrize("value, expected", [
        (0, b"\x00"),
        (1, b"\x01"),
        (127, b"\x7f"),
        (128, b"\x80\x01"),
        (300, b"\xac\x02"),
        (16383, b"\xff\x7f"),
        (16384, b"\x80\x80\x01"),
    ])
    def test_known_values(self, value, expected):
        assert varint.encode(value) == expected

    def test_minimal_no_trailing_zero_groups(self):
        for value in (1, 128, 2**35, U64_MAX, U128_MAX):
            encoded = varint.encode(value)
            assert encoded[-1] != 0x00
            assert encoded[-1] & 0x80 == 0
            assert all(b & 0x80 for b in encoded[:-1])

    def test_u128_max_is_19_bytes(self):
        assert len(varint.encode(U128_MAX)) == 19

    def test_reject_negative(self):
        with pytest.raises(FieldOverflowError):
            varint.encode(-1)

    def test_reject_above_u128(self):
        with pytest.raises(FieldOverflowError) as exc:
            varint.encode(U128_MAX + 1)
        assert isinstance(exc.value, OverflowError)
        assert exc.value.max_value == U128_MAX

    def test_custom_max_value(self):
        varint.encode(U64_MAX, max_value=U64_MAX)
        with pytest.raises(FieldOverflowError, match="token_id"):
            varint.encode(U64_MAX + 1, max_value=U64_MAX, field="token_id")

    def test_reject_non_int(self):
        with pytest.raises(ValidationError):
            varint.encode("5")
        with pytest.raises(ValidationError):
            varint.encode(1.0)
        with pytest.raises(ValidationError):
            varint.encode(True)


# ---------------------------------------------------------------------------
# TestLength
# ---------------------------------------------------------------------------

class TestLength:

    @pytest.mark.parametrize("value", [0, 1, 127, 128, 2**35, U64_MAX, U128_MAX])
    def test_matches_encode(self, value):
        assert varint.length(value) == len(varint.encode(value))

    def test_non_decreasing(self):
        previous = 0
        for bits in range(0, 129):
            value = (1 << bits) - 1
            size = varint.length(value)
            assert size >= previous
            previous = size

    def test_every_boundary(self):
        for k in range(1, 19):
            assert varint.length(2 ** (7 * k) - 1) == k
            assert varint.length(2 ** (7 * k)) == k + 1

    def test_reject_out_of_range(self):
        with pytest.raises(FieldOverflowError):
            varint.length(-5)
        with pytest.raises(FieldOverflowError):
            varint.length(U128_MAX + 1)


# ---------------------------------------------------------------------------
# TestDecode
# ---------------------------------------------------------------------------

class TestDecode:

    @pytest.mark.parametrize("value", [0, 1, 127, 128, 300, 2**35, U64_MAX, U128_MAX])
    def test_roundtrip(self, value):
        encoded = varint.encode(value)
        assert varint.decode(encoded) == (value, len(encoded))

    def test_offset(self):
        assert varint.decode(b"\x00\xac\x02\xff", 1) == (300, 2)

    def test_stops_at_terminator(self):
        value, consumed = varint.decode(b"\x05\x80\x80")
        assert (value, consumed) == (5, 1)

    def test_unterminated(self):
        with pytest.raises(MalformedVarint, match="Incomplete"):
            varint.decode(b"\x80")
        with pytest.raises(MalformedVarint):
            varint.decode(b"\xff\xff\xff")

    def test_empty_buffer(self):
        with pytest.raises(MalformedVarint):
            varint.decode(b"")

    def test_offset_past_end(self):
        with pytest.raises(MalformedVarint):
            varint.decode(b"\x01", 1)
        with pytest.raises(MalformedVarint):
            varint.decode(b"\x01", -1)

    def test_too_many_bytes(self):
        with pytest.raises(MalformedVarint, match="overflow"):
            varint.decode(b"\x80" * 19 + b"\x01")

    def test_value_above_128_bits(self):
        # 18 full groups (126 bits) then a group carrying bit 128
        with pytest.raises(MalformedVarint, match="overflow"):
            varint.decode(b"\xff" * 18 + b"\x04")

    def test_is_malformed_input(self):
        with pytest.raises(MalformedInput):
            varint.decode(b"\x80\x80")

    def test_accepts_bytearray_and_memoryview(self):
        data = varint.encode(2**35)
        assert varint.decode(bytearray(data))[0] == 2**35
        assert varint.decode(memoryview(data))[0] == 2**35
