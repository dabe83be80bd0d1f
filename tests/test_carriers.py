"""
Tests for anchor_tokens.carriers — fee model, carrier recommendation,
per-carrier costs, selection and OP_RETURN scripts.
"""

from __future__ import annotations

import math

import pytest

from anchor_tokens.carriers import (
    CARRIERS,
    CarrierPreferences,
    CarrierStatus,
    CarrierType,
    FeeSavings,
    build_op_return_script,
    calculate_fee_savings,
    can_handle,
    carrier_fee,
    carrier_vbytes,
    estimate_fee,
    get_recommended_carrier,
    parse_op_return,
    select_carrier,
)
from anchor_tokens.envelope import encode_token_message, parse_token_message
from anchor_tokens.errors import NoSuitableCarrier, ValidationError
from anchor_tokens.ops import Burn, Deploy, calculate_payload_size, encode


# ---------------------------------------------------------------------------
# TestCarrierTable
# ---------------------------------------------------------------------------

class TestCarrierTable:

    def test_ids(self):
        assert [int(c) for c in CarrierType] == [0, 1, 2, 3, 4]

    def test_str(self):
        assert str(CarrierType.OP_RETURN) == "op_return"
        assert str(CarrierType.TAPROOT_ANNEX) == "taproot_annex"
        assert str(CarrierType.WITNESS_DATA) == "witness_data"

    @pytest.mark.parametrize("carrier, max_size, discounted", [
        (CarrierType.OP_RETURN, 80, False),
        (CarrierType.INSCRIPTION, 4_000_000, True),
        (CarrierType.STAMPS, 8_000, False),
        (CarrierType.TAPROOT_ANNEX, 10_000, True),
        (CarrierType.WITNESS_DATA, 4_000_000, True),
    ])
    def test_sizes_and_discounts(self, carrier, max_size, discounted):
        info = CARRIERS[carrier]
        assert info.carrier == carrier
        assert info.max_size == max_size
        assert info.witness_discount is discounted

    def test_stamps_are_permanent(self):
        info = CARRIERS[CarrierType.STAMPS]
        assert not info.is_prunable
        assert info.utxo_impact

    def test_annex_reserved(self):
        assert CARRIERS[CarrierType.TAPROOT_ANNEX].status is CarrierStatus.RESERVED
        assert CARRIERS[CarrierType.WITNESS_DATA].status is CarrierStatus.ACTIVE

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            CARRIERS[CarrierType.OP_RETURN] = None
        with pytest.raises(AttributeError):
            CARRIERS[CarrierType.OP_RETURN].max_size = 100_000


# ---------------------------------------------------------------------------
# TestEstimateFee
# ---------------------------------------------------------------------------

class TestEstimateFee:

    def test_witness(self):
        # 150 + ceil((100 + 6) / 4)
        assert estimate_fee(100, 1, use_witness=True) == 177

    def test_op_return(self):
        # 150 + 10 + 100 + 6
        assert estimate_fee(100, 1, use_witness=False) == 266

    def test_witness_rounds_up(self):
        assert estimate_fee(2, 1) == 152  # 8 / 4 = 2
        assert estimate_fee(3, 1) == 153  # ceil(9 / 4) = 3

    def test_fee_rate_scales(self):
        assert estimate_fee(100, 3) == 177 * 3
        assert estimate_fee(100, 2.5, use_witness=False) == 266 * 2.5

    def test_defaults(self):
        assert estimate_fee(0) == 152

    def test_rejects_bad_input(self):
        with pytest.raises(ValidationError):
            estimate_fee(-1)
        with pytest.raises(ValidationError):
            estimate_fee(10, -1)
        with pytest.raises(ValidationError):
            estimate_fee(10, "fast")

    @pytest.mark.parametrize("rate", [float("nan"), float("inf"), float("-inf")])
    def test_rejects_non_finite_rate(self, rate):
        with pytest.raises(ValidationError):
            estimate_fee(10, rate)
        with pytest.raises(ValidationError):
            calculate_fee_savings(10, rate)

    def test_uses_payload_size_not_bytes(self):
        op = Deploy("FOO", 8, 21_000_000)
        assert estimate_fee(calculate_payload_size(op)) == estimate_fee(len(encode(op)))


# ---------------------------------------------------------------------------
# TestRecommendedCarrier
# ---------------------------------------------------------------------------

class TestRecommendedCarrier:

    def test_boundary(self):
        assert get_recommended_carrier(4_000_000) == CarrierType.WITNESS_DATA
        assert get_recommended_carrier(4_000_001) == CarrierType.INSCRIPTION

    def test_small_payloads_still_witness(self):
        # OP_RETURN is never auto-recommended, even when the payload fits
        assert get_recommended_carrier(0) == CarrierType.WITNESS_DATA
        assert get_recommended_carrier(20) == CarrierType.WITNESS_DATA

    def test_never_recommends_manual_carriers(self):
        manual = {CarrierType.OP_RETURN, CarrierType.STAMPS, CarrierType.TAPROOT_ANNEX}
        for size in (0, 1, 80, 8_000, 10_000, 4_000_000, 10**9):
            assert get_recommended_carrier(size) not in manual


# ---------------------------------------------------------------------------
# TestFeeSavings
# ---------------------------------------------------------------------------

class TestFeeSavings:

    def test_values(self):
        result = calculate_fee_savings(100, 1)
        assert isinstance(result, FeeSavings)
        assert result.op_return_fee == 266
        assert result.witness_fee == 177
        assert result.savings == 89
        assert result.savings_percent == pytest.approx(89 / 266 * 100)

    @pytest.mark.parametrize("size", [1, 10, 80, 1_000, 100_000, 4_000_000])
    @pytest.mark.parametrize("rate", [0.1, 1, 25])
    def test_witness_always_cheaper(self, size, rate):
        result = calculate_fee_savings(size, rate)
        assert result.witness_fee < result.op_return_fee
        assert result.savings_percent > 0

    def test_zero_fee_rate(self):
        result = calculate_fee_savings(100, 0)
        assert result.savings == 0
        assert result.savings_percent == 0.0


# ---------------------------------------------------------------------------
# TestCarrierFee
# ---------------------------------------------------------------------------

class TestCarrierFee:

    @pytest.mark.parametrize("carrier, size, expected", [
        (CarrierType.OP_RETURN, 10, 21),       # 8 + 1 + (1 + 1 + 10)
        (CarrierType.OP_RETURN, 80, 92),       # OP_PUSHDATA1
        (CarrierType.OP_RETURN, 300, 313),     # OP_PUSHDATA2
        (CarrierType.STAMPS, 62, 114),         # 2 chunks, 1 output
        (CarrierType.STAMPS, 63, 228),         # 3 chunks, 2 outputs
        (CarrierType.WITNESS_DATA, 100, 30),   # ceil(120 / 4)
        (CarrierType.INSCRIPTION, 100, 39),    # ceil(153 / 4)
        (CarrierType.TAPROOT_ANNEX, 100, 27),  # ceil(108 / 4)
    ])
    def test_vbytes(self, carrier, size, expected):
        assert carrier_vbytes(carrier, size) == expected
        assert carrier_fee(carrier, size, 1) == expected

    def test_fee_rounds_up(self):
        assert carrier_fee(CarrierType.WITNESS_DATA, 100, 1.01) == math.ceil(30 * 1.01)

    @pytest.mark.parametrize("rate", [float("nan"), float("inf")])
    def test_non_finite_rate_is_validation_error(self, rate):
        for carrier in CarrierType:
            with pytest.raises(ValidationError, match="finite"):
                carrier_fee(carrier, 10, rate)

    def test_non_finite_max_fee_check(self):
        prefs = CarrierPreferences(max_fee=100, fee_rate=float("nan"))
        with pytest.raises(ValidationError):
            select_carrier(10, prefs)

    def test_accepts_int_ids(self):
        assert carrier_fee(4, 100) == carrier_fee(CarrierType.WITNESS_DATA, 100)

    def test_stamps_most_expensive_for_medium_payload(self):
        fees = {c: carrier_fee(c, 1_000, 10) for c in CarrierType}
        assert max(fees, key=fees.get) == CarrierType.STAMPS

    def test_can_handle(self):
        assert can_handle(CarrierType.OP_RETURN, 80)
        assert not can_handle(CarrierType.OP_RETURN, 81)
        assert can_handle(CarrierType.STAMPS, 8_000)
        assert not can_handle(CarrierType.TAPROOT_ANNEX, 10_001)


# ---------------------------------------------------------------------------
# TestSelectCarrier
# ---------------------------------------------------------------------------

class TestSelectCarrier:

    def test_default_prefers_op_return_when_it_fits(self):
        assert select_carrier(50) == CarrierType.OP_RETURN

    def test_default_falls_back_to_inscription(self):
        assert select_carrier(100) == CarrierType.INSCRIPTION

    def test_exclude(self):
        prefs = CarrierPreferences(exclude={CarrierType.INSCRIPTION})
        assert select_carrier(100, prefs) == CarrierType.WITNESS_DATA

    def test_permanent(self):
        assert select_carrier(100, CarrierPreferences.permanent()) == CarrierType.STAMPS

    def test_permanent_too_large(self):
        with pytest.raises(NoSuitableCarrier) as exc:
            select_carrier(9_000, CarrierPreferences.permanent())
        assert exc.value.size == 9_000

    def test_max_fee(self):
        # inscription costs 39, witness 30 for 100 bytes at 1 sat/vB
        prefs = CarrierPreferences(max_fee=35)
        assert select_carrier(100, prefs) == CarrierType.WITNESS_DATA

    def test_unlisted_carriers_rank_last(self):
        prefs = CarrierPreferences(preferred=[CarrierType.STAMPS], exclude={CarrierType.STAMPS})
        assert select_carrier(100, prefs) in set(CarrierType) - {CarrierType.STAMPS}

    def test_large_data(self):
        assert select_carrier(500_000, CarrierPreferences.large_data()) == CarrierType.INSCRIPTION
        with pytest.raises(NoSuitableCarrier):
            select_carrier(4_000_001, CarrierPreferences.large_data())


# ---------------------------------------------------------------------------
# TestOpReturnScript
# ---------------------------------------------------------------------------

class TestOpReturnScript:

    def test_direct_push(self):
        assert build_op_return_script(b"\x01\x02") == "6a020102"

    def test_pushdata1(self):
        data = b"\xab" * 80
        assert build_op_return_script(data) == "6a4c50" + "ab" * 80

    def test_pushdata2(self):
        data = b"\xcd" * 300
        assert build_op_return_script(data) == "6a4d2c01" + "cd" * 300

    def test_too_large(self):
        with pytest.raises(ValidationError):
            build_op_return_script(b"\x00" * 0x10000)

    @pytest.mark.parametrize("size", [0, 1, 75, 76, 255, 256, 1000])
    def test_parse_inverse(self, size):
        data = bytes(i % 256 for i in range(size))
        assert parse_op_return(build_op_return_script(data)) == data

    def test_parse_uppercase_and_whitespace(self):
        assert parse_op_return(" 6A020102 ") == b"\x01\x02"

    def test_parse_accepts_0x_prefix(self):
        assert parse_op_return("0x6a020102") == b"\x01\x02"

    @pytest.mark.parametrize("script", [
        "",
        "6a",
        "76a914" + "00" * 20 + "88ac",  # P2PKH
        "6a0501020304",                  # push longer than data
        "6a02010203",                    # trailing byte
        "6a4c",                          # PUSHDATA1 without length
        "6a4d01",                        # PUSHDATA2 without full length
        "6a4e00000000",                  # PUSHDATA4 unsupported
        "6a0g",
        "6a0",
        None,
    ])
    def test_parse_rejects(self, script):
        assert parse_op_return(script) is None

    def test_token_message_through_op_return(self):
        op = Burn(token_id=5, amount=1000)
        message = encode_token_message(op)
        assert can_handle(CarrierType.OP_RETURN, len(message))
        script = build_op_return_script(message)
        assert parse_token_message(parse_op_return(script)) == op
