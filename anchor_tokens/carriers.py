"""
Carrier economics — where the envelope bytes go in a Bitcoin transaction, and
what that costs.

    Carrier        Max size    Witness discount   Prunable
    OP_RETURN      80 B        no                 yes
    Inscription    ~4 MB       yes                yes
    Stamps         ~8 KB       no                 NO (bare multisig, UTXO bloat)
    Taproot Annex  ~10 KB      yes                yes (reserved, non-standard relay)
    Witness Data   ~4 MB       yes                yes

Witness bytes weigh 1 WU, everything else 4 WU, so witness carriers pay for
roughly a quarter of their bytes in vbytes.

Everything here is a pure function of its arguments. Building and signing the
actual transaction happens elsewhere.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Mapping

from anchor_tokens import (
    BASE_TX_VSIZE,
    OP_RETURN_OUTPUT_OVERHEAD,
    PROTOCOL_OVERHEAD,
    WITNESS_SCALE_FACTOR,
)
from anchor_tokens.errors import NoSuitableCarrier, ValidationError
from anchor_tokens.hexutil import hex_to_bytes

log = logging.getLogger(__name__)

# Script opcodes
_OP_RETURN = 0x6A
_OP_PUSHDATA1 = 0x4C
_OP_PUSHDATA2 = 0x4D
_MAX_DIRECT_PUSH = 0x4B  # 75

# Per-carrier embedding constants
MARKER = b"ANCHOR"
MAX_PUSH_SIZE = 520  # Tapscript push limit
INSCRIPTION_ENVELOPE_OVERHEAD = 50  # OP_FALSE OP_IF, protocol id, content type, body tag, OP_ENDIF
STAMPS_DATA_PER_CHUNK = 31  # 33-byte fake pubkey minus the 0x02/0x03 prefix
STAMPS_DATA_KEYS_PER_OUTPUT = 2  # 1-of-3: two data keys + one burn key
ANNEX_PREFIX = 0x50


class CarrierType(IntEnum):
    OP_RETURN = 0
    INSCRIPTION = 1
    STAMPS = 2
    TAPROOT_ANNEX = 3
    WITNESS_DATA = 4

    def __str__(self) -> str:
        return self.name.lower()


class CarrierStatus(Enum):
    ACTIVE = "active"
    RESERVED = "reserved"


@dataclass(frozen=True)
class CarrierInfo:
    carrier: CarrierType
    name: str
    max_size: int
    witness_discount: bool
    description: str
    is_prunable: bool = True
    utxo_impact: bool = False
    status: CarrierStatus = CarrierStatus.ACTIVE


CARRIERS: Mapping[CarrierType, CarrierInfo] = MappingProxyType({
    CarrierType.OP_RETURN: CarrierInfo(
        CarrierType.OP_RETURN, "OP_RETURN", 80, False,
        "Standard OP_RETURN output (80 bytes max)",
    ),
    CarrierType.INSCRIPTION: CarrierInfo(
        CarrierType.INSCRIPTION, "Inscription", 4_000_000, True,
        "Ordinals-style inscription (~4MB max, 75% discount)",
    ),
    CarrierType.STAMPS: CarrierInfo(
        CarrierType.STAMPS, "Stamps", 8_000, False,
        "Permanent bare multisig (~8KB max, unprunable)",
        is_prunable=False, utxo_impact=True,
    ),
    CarrierType.TAPROOT_ANNEX: CarrierInfo(
        CarrierType.TAPROOT_ANNEX, "Taproot Annex", 10_000, True,
        "Taproot annex field (reserved)",
        status=CarrierStatus.RESERVED,
    ),
    CarrierType.WITNESS_DATA: CarrierInfo(
        CarrierType.WITNESS_DATA, "Witness Data", 4_000_000, True,
        "Raw witness data (~4MB max, 75% discount)",
    ),
})


def _check_size(payload_size: int) -> None:
    if isinstance(payload_size, bool) or not isinstance(payload_size, int) or payload_size < 0:
        raise ValidationError(f"payload_size must be a non-negative integer, got {payload_size!r}")


def _check_fee_rate(fee_rate: float) -> None:
    if isinstance(fee_rate, bool) or not isinstance(fee_rate, (int, float)) or fee_rate < 0:
        raise ValidationError(f"fee_rate must be a non-negative number, got {fee_rate!r}")
    if isinstance(fee_rate, float) and not math.isfinite(fee_rate):
        raise ValidationError(f"fee_rate must be finite, got {fee_rate!r}")


# ---------------------------------------------------------------------------
# Envelope-level fee model
# ---------------------------------------------------------------------------

def estimate_fee(payload_size: int, fee_rate: float = 1, use_witness: bool = True) -> float:
    """Estimated fee in sats for a token transaction.

    Witness:   (150 + ceil((payload + 6) / 4)) * fee_rate
    OP_RETURN: (150 + 10 + payload + 6) * fee_rate
    """
    _check_size(payload_size)
    _check_fee_rate(fee_rate)
    data_bytes = payload_size + PROTOCOL_OVERHEAD
    if use_witness:
        vbytes = math.ceil(data_bytes / WITNESS_SCALE_FACTOR)
        return (BASE_TX_VSIZE + vbytes) * fee_rate
    return (BASE_TX_VSIZE + OP_RETURN_OUTPUT_OVERHEAD + data_bytes) * fee_rate


def get_recommended_carrier(payload_size: int) -> CarrierType:
    """Witness Data whenever it fits, Inscription beyond that.

    OP_RETURN, Stamps and Taproot Annex are only ever chosen explicitly.
    """
    _check_size(payload_size)
    if payload_size <= CARRIERS[CarrierType.WITNESS_DATA].max_size:
        return CarrierType.WITNESS_DATA
    return CarrierType.INSCRIPTION


@dataclass(frozen=True)
class FeeSavings:
    op_return_fee: float
    witness_fee: float
    savings: float
    savings_percent: float


def calculate_fee_savings(payload_size: int, fee_rate: float = 1) -> FeeSavings:
    """Compare the OP_RETURN-style and witness-style cost of one payload."""
    op_return_fee = estimate_fee(payload_size, fee_rate, use_witness=False)
    witness_fee = estimate_fee(payload_size, fee_rate, use_witness=True)
    savings = op_return_fee - witness_fee
    savings_percent = savings / op_return_fee * 100 if op_return_fee else 0.0
    return FeeSavings(op_return_fee, witness_fee, savings, savings_percent)


# ---------------------------------------------------------------------------
# Per-carrier embedding cost
# ---------------------------------------------------------------------------

def _compact_size_len(n: int) -> int:
    if n < 253:
        return 1
    if n < 0x10000:
        return 3
    return 5


def _op_return_vbytes(size: int) -> int:
    if size <= _MAX_DIRECT_PUSH:
        script = 1 + 1 + size
    elif size <= 0xFF:
        script = 1 + 2 + size
    else:
        script = 1 + 3 + size
    return 8 + 1 + script  # value + script length + script


def _inscription_vbytes(size: int) -> int:
    chunks = math.ceil(size / MAX_PUSH_SIZE)
    witness = INSCRIPTION_ENVELOPE_OVERHEAD + chunks * 3 + size
    return math.ceil(witness / WITNESS_SCALE_FACTOR)


def _stamps_vbytes(size: int) -> int:
    chunks = math.ceil(size / STAMPS_DATA_PER_CHUNK)
    outputs = math.ceil(chunks / STAMPS_DATA_KEYS_PER_OUTPUT)
    # OP_1 <key>*3 OP_3 OP_CHECKMULTISIG, 34 bytes per key push
    script = 1 + (STAMPS_DATA_KEYS_PER_OUTPUT + 1) * 34 + 2
    return outputs * (8 + 1 + script)


def _annex_vbytes(size: int) -> int:
    annex = 1 + len(MARKER) + size  # ANNEX_PREFIX byte, marker, data
    witness = _compact_size_len(annex) + annex
    return math.ceil(witness / WITNESS_SCALE_FACTOR)


def _witness_vbytes(size: int) -> int:
    chunks = math.ceil(size / MAX_PUSH_SIZE)
    length_prefixes = (1 + chunks) * 2
    # MARKER OP_DROP (<chunk> OP_DROP)* OP_TRUE
    script = len(MARKER) + 1 + chunks * 2 + 1
    witness = length_prefixes + len(MARKER) + size + script
    return math.ceil(witness / WITNESS_SCALE_FACTOR)


_VBYTES = {
    CarrierType.OP_RETURN: _op_return_vbytes,
    CarrierType.INSCRIPTION: _inscription_vbytes,
    CarrierType.STAMPS: _stamps_vbytes,
    CarrierType.TAPROOT_ANNEX: _annex_vbytes,
    CarrierType.WITNESS_DATA: _witness_vbytes,
}


def carrier_vbytes(carrier: CarrierType, payload_size: int) -> int:
    """Virtual size of the bytes a carrier adds to embed ``payload_size`` bytes."""
    _check_size(payload_size)
    return _VBYTES[CarrierType(carrier)](payload_size)


def carrier_fee(carrier: CarrierType, payload_size: int, fee_rate: float = 1) -> int:
    """Embedding cost in whole sats (rounded up) for one carrier."""
    _check_fee_rate(fee_rate)
    return math.ceil(carrier_vbytes(carrier, payload_size) * fee_rate)


def can_handle(carrier: CarrierType, payload_size: int) -> bool:
    _check_size(payload_size)
    return payload_size <= CARRIERS[CarrierType(carrier)].max_size


# ---------------------------------------------------------------------------
# Carrier selection
# ---------------------------------------------------------------------------

@dataclass
class CarrierPreferences:
    """Constraints for select_carrier().

    Attributes:
        require_permanent: Only accept carriers nodes cannot prune.
        max_fee: Upper bound in sats on carrier_fee(), or None.
        preferred: Carriers in order of preference; unlisted ones sort last.
        exclude: Carriers never to pick.
        fee_rate: sat/vB used for the max_fee check.
    """

    require_permanent: bool = False
    max_fee: int | None = None
    preferred: list[CarrierType] = field(default_factory=lambda: [
        CarrierType.OP_RETURN,
        CarrierType.INSCRIPTION,
        CarrierType.WITNESS_DATA,
        CarrierType.STAMPS,
    ])
    exclude: set[CarrierType] = field(default_factory=set)
    fee_rate: float = 1.0

    @classmethod
    def permanent(cls) -> CarrierPreferences:
        return cls(require_permanent=True, preferred=[CarrierType.STAMPS])

    @classmethod
    def large_data(cls) -> CarrierPreferences:
        return cls(preferred=[CarrierType.INSCRIPTION, CarrierType.WITNESS_DATA])


def select_carrier(payload_size: int, prefs: CarrierPreferences | None = None) -> CarrierType:
    """Pick the most preferred carrier that satisfies every constraint.

    Raises NoSuitableCarrier if none does.
    """
    _check_size(payload_size)
    prefs = prefs or CarrierPreferences()

    candidates = []
    for info in CARRIERS.values():
        if info.max_size < payload_size:
            continue
        if info.carrier in prefs.exclude:
            continue
        if prefs.require_permanent and info.is_prunable:
            continue
        if prefs.max_fee is not None and carrier_fee(info.carrier, payload_size, prefs.fee_rate) > prefs.max_fee:
            continue
        candidates.append(info.carrier)

    if not candidates:
        raise NoSuitableCarrier(payload_size)

    def rank(carrier: CarrierType) -> int:
        try:
            return prefs.preferred.index(carrier)
        except ValueError:
            return len(prefs.preferred)

    chosen = min(candidates, key=rank)
    log.debug("Selected carrier %s for %d-byte payload", chosen, payload_size)
    return chosen


# ---------------------------------------------------------------------------
# OP_RETURN scripts
# ---------------------------------------------------------------------------

def build_op_return_script(data: bytes) -> str:
    """Build the scriptPubKey hex for an OP_RETURN output carrying ``data``.

    Format: 6a <push opcode(s)> <data>
        <= 75 bytes:    single-byte push
        <= 255 bytes:   OP_PUSHDATA1 <len:1>
        <= 65535 bytes: OP_PUSHDATA2 <len:2 LE>
    """
    data = bytes(data)
    size = len(data)
    if size <= _MAX_DIRECT_PUSH:
        push = bytes((size,))
    elif size <= 0xFF:
        push = bytes((_OP_PUSHDATA1, size))
    elif size <= 0xFFFF:
        push = bytes((_OP_PUSHDATA2,)) + size.to_bytes(2, "little")
    else:
        raise ValidationError(f"OP_RETURN data too large: {size} bytes")
    return (bytes((_OP_RETURN,)) + push + data).hex()


def parse_op_return(script_hex: str) -> bytes | None:
    """Extract the pushed data from an OP_RETURN scriptPubKey.

    Returns None if the script is not a single-push OP_RETURN.
    """
    if not isinstance(script_hex, str):
        return None

    try:
        script = hex_to_bytes(script_hex.strip())
    except ValidationError:
        return None

    if len(script) < 2 or script[0] != _OP_RETURN:
        return None

    op = script[1]
    if op <= _MAX_DIRECT_PUSH:
        start, size = 2, op
    elif op == _OP_PUSHDATA1 and len(script) >= 3:
        start, size = 3, script[2]
    elif op == _OP_PUSHDATA2 and len(script) >= 4:
        start, size = 4, int.from_bytes(script[2:4], "little")
    else:
        return None

    if len(script) != start + size:
        return None
    return script[start:]
