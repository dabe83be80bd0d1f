"""
Token operation records and their binary encoding.

Wire layouts (varint = unsigned LEB128, see anchor_tokens.varint):

    Deploy   (0x01): [op][ticker_len:1][ticker][decimals:1][max_supply:varint][mint_limit:varint][flags:1]
    Mint     (0x02): [op][token_id:varint][amount:varint][output_idx:1]
    Transfer (0x03): [op][token_id:varint][count:1]([output_idx:1][amount:varint])*count
    Burn     (0x04): [op][token_id:varint][amount:varint]
    Split    (0x05): same body as Transfer

A mint_limit of varint 0 on the wire means "no explicit limit" and decodes to
None. Encoders validate every field before producing output. The decoder never
raises anything other than MalformedInput, whatever bytes it is handed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Any, Callable, ClassVar, Union

from anchor_tokens import (
    MAX_ALLOCATIONS,
    MAX_DECIMALS,
    MAX_TICKER_LENGTH,
    U8_MAX,
    U64_MAX,
    U128_MAX,
)
from anchor_tokens import varint
from anchor_tokens.errors import (
    InvalidTicker,
    MalformedInput,
    TruncatedInput,
    UnknownOpcode,
    ValidationError,
)

log = logging.getLogger(__name__)

_TICKER_RE = re.compile(r"[A-Za-z0-9]+")
_AMOUNT_RE = re.compile(r"(\d*)(?:\.(\d*))?")


class Opcode(IntEnum):
    DEPLOY = 0x01
    MINT = 0x02
    TRANSFER = 0x03
    BURN = 0x04
    SPLIT = 0x05


class DeployFlags(IntFlag):
    """Deploy policy bits. Combinable; OPEN_MINT vs FIXED_SUPPLY is not policed here."""

    NONE = 0x00
    OPEN_MINT = 0x01
    FIXED_SUPPLY = 0x02
    BURNABLE = 0x04


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Allocation:
    """Token amount assigned to a transaction output."""

    output_index: int
    amount: int


@dataclass(frozen=True)
class Deploy:
    ticker: str
    decimals: int
    max_supply: int
    mint_limit: int | None = None
    flags: int = 0

    opcode: ClassVar[Opcode] = Opcode.DEPLOY

    @property
    def is_open_mint(self) -> bool:
        return bool(self.flags & DeployFlags.OPEN_MINT)

    @property
    def is_fixed_supply(self) -> bool:
        return bool(self.flags & DeployFlags.FIXED_SUPPLY)

    @property
    def is_burnable(self) -> bool:
        return bool(self.flags & DeployFlags.BURNABLE)


@dataclass(frozen=True)
class Mint:
    token_id: int
    amount: int
    output_index: int

    opcode: ClassVar[Opcode] = Opcode.MINT


@dataclass(frozen=True)
class _Distribution:
    """Shared body of Transfer and Split: a token id and its allocations."""

    token_id: int
    allocations: tuple[Allocation, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept any iterable, store an immutable tuple.
        if not isinstance(self.allocations, tuple):
            object.__setattr__(self, "allocations", tuple(self.allocations))

    @property
    def total(self) -> int:
        return sum(a.amount for a in self.allocations)


@dataclass(frozen=True)
class Transfer(_Distribution):
    opcode: ClassVar[Opcode] = Opcode.TRANSFER


@dataclass(frozen=True)
class Split(_Distribution):
    opcode: ClassVar[Opcode] = Opcode.SPLIT


@dataclass(frozen=True)
class Burn:
    token_id: int
    amount: int

    opcode: ClassVar[Opcode] = Opcode.BURN


TokenOperation = Union[Deploy, Mint, Transfer, Burn, Split]


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------

def validate_ticker(ticker: str) -> None:
    """Raise ValidationError unless ticker is 1-32 bytes of [A-Za-z0-9]."""
    if not isinstance(ticker, str):
        raise ValidationError(f"Ticker must be a string, got {type(ticker).__name__}")
    if not ticker:
        raise ValidationError("Ticker cannot be empty")
    size = len(ticker.encode("utf-8"))
    if size > MAX_TICKER_LENGTH:
        raise ValidationError(
            f"Ticker too long: {size} bytes (max {MAX_TICKER_LENGTH})"
        )
    if not _TICKER_RE.fullmatch(ticker):
        raise ValidationError(f"Ticker must be alphanumeric, got {ticker!r}")


def is_valid_ticker(ticker: str) -> bool:
    try:
        validate_ticker(ticker)
    except ValidationError:
        return False
    return True


def _check_u8(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {type(value).__name__}")
    if not 0 <= value <= U8_MAX:
        raise ValidationError(f"{name} must fit in one byte (0-255), got {value}")
    return value


def _mint_limit_wire(mint_limit: int | None) -> int:
    if mint_limit is None:
        return 0
    if mint_limit == 0:
        # 0 is the wire sentinel for "no limit"
        raise ValidationError("mint_limit of 0 is not representable; use None for no limit")
    return mint_limit


def _check_allocations(allocations: tuple[Allocation, ...]) -> None:
    if len(allocations) > MAX_ALLOCATIONS:
        raise ValidationError(
            f"Too many allocations: {len(allocations)} (max {MAX_ALLOCATIONS})"
        )
    for alloc in allocations:
        if not isinstance(alloc, Allocation):
            raise ValidationError(f"Expected Allocation, got {type(alloc).__name__}")


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_deploy(op: Deploy) -> bytes:
    validate_ticker(op.ticker)
    ticker = op.ticker.upper().encode("utf-8")
    decimals = _check_u8("decimals", op.decimals)
    flags = _check_u8("flags", op.flags)
    max_supply = varint.encode(op.max_supply, field="max_supply")
    mint_limit = varint.encode(_mint_limit_wire(op.mint_limit), field="mint_limit")

    return b"".join((
        bytes((Opcode.DEPLOY, len(ticker))),
        ticker,
        bytes((decimals,)),
        max_supply,
        mint_limit,
        bytes((flags,)),
    ))


def encode_mint(op: Mint) -> bytes:
    token_id = varint.encode(op.token_id, max_value=U64_MAX, field="token_id")
    amount = varint.encode(op.amount, field="amount")
    output_index = _check_u8("output_index", op.output_index)
    return bytes((Opcode.MINT,)) + token_id + amount + bytes((output_index,))


def _encode_distribution(op: _Distribution, opcode: Opcode) -> bytes:
    _check_allocations(op.allocations)
    token_id = varint.encode(op.token_id, max_value=U64_MAX, field="token_id")
    parts = [bytes((opcode,)), token_id, bytes((len(op.allocations),))]
    for i, alloc in enumerate(op.allocations):
        parts.append(bytes((_check_u8(f"allocations[{i}].output_index", alloc.output_index),)))
        parts.append(varint.encode(alloc.amount, field=f"allocations[{i}].amount"))
    return b"".join(parts)


def encode_transfer(op: Transfer) -> bytes:
    return _encode_distribution(op, Opcode.TRANSFER)


def encode_split(op: Split) -> bytes:
    return _encode_distribution(op, Opcode.SPLIT)


def encode_burn(op: Burn) -> bytes:
    token_id = varint.encode(op.token_id, max_value=U64_MAX, field="token_id")
    amount = varint.encode(op.amount, field="amount")
    return bytes((Opcode.BURN,)) + token_id + amount


_ENCODERS: dict[type, Callable[[Any], bytes]] = {
    Deploy: encode_deploy,
    Mint: encode_mint,
    Transfer: encode_transfer,
    Burn: encode_burn,
    Split: encode_split,
}


def encode(op: TokenOperation) -> bytes:
    """Encode any token operation record."""
    encoder = _ENCODERS.get(type(op))
    if encoder is None:
        raise ValidationError(f"Not a token operation: {type(op).__name__}")
    return encoder(op)


def calculate_payload_size(op: TokenOperation) -> int:
    """Exact ``len(encode(op))``, computed from field sizes only.

    Used for fee estimation. Out-of-range fields raise the same errors the
    encoder would.
    """
    if isinstance(op, Deploy):
        validate_ticker(op.ticker)
        _check_u8("decimals", op.decimals)
        _check_u8("flags", op.flags)
        return (
            1 + 1 + len(op.ticker.encode("utf-8")) + 1
            + varint.length(op.max_supply, field="max_supply")
            + varint.length(_mint_limit_wire(op.mint_limit), field="mint_limit")
            + 1
        )
    if isinstance(op, Mint):
        _check_u8("output_index", op.output_index)
        return (
            1 + varint.length(op.token_id, max_value=U64_MAX, field="token_id")
            + varint.length(op.amount, field="amount") + 1
        )
    if isinstance(op, (Transfer, Split)):
        _check_allocations(op.allocations)
        size = 1 + varint.length(op.token_id, max_value=U64_MAX, field="token_id") + 1
        for i, alloc in enumerate(op.allocations):
            _check_u8(f"allocations[{i}].output_index", alloc.output_index)
            size += 1 + varint.length(alloc.amount, field=f"allocations[{i}].amount")
        return size
    if isinstance(op, Burn):
        return (
            1 + varint.length(op.token_id, max_value=U64_MAX, field="token_id")
            + varint.length(op.amount, field="amount")
        )
    raise ValidationError(f"Not a token operation: {type(op).__name__}")


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

class _Reader:
    """Bounds-checked cursor over an operation body."""

    def __init__(self, data: bytes, pos: int = 0) -> None:
        self.data = data
        self.pos = pos

    def u8(self, name: str) -> int:
        if self.pos >= len(self.data):
            raise TruncatedInput(f"Payload ended before {name} at offset {self.pos}")
        value = self.data[self.pos]
        self.pos += 1
        return value

    def take(self, n: int, name: str) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise TruncatedInput(
                f"{name} needs {n} bytes at offset {self.pos}, "
                f"only {len(self.data) - self.pos} left"
            )
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def varint(self, name: str, max_value: int = U128_MAX) -> int:
        if self.pos >= len(self.data):
            raise TruncatedInput(f"Payload ended before {name} at offset {self.pos}")
        value, consumed = varint.decode(self.data, self.pos)
        if value > max_value:
            raise MalformedInput(f"{name} out of range: {value} (max {max_value})")
        self.pos += consumed
        return value


def _parse_deploy(r: _Reader) -> Deploy:
    ticker_len = r.u8("ticker_len")
    raw = r.take(ticker_len, "ticker")
    try:
        ticker = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidTicker(f"Ticker is not valid UTF-8: {e}") from e
    decimals = r.u8("decimals")
    max_supply = r.varint("max_supply")
    mint_limit = r.varint("mint_limit")
    flags = r.u8("flags")
    return Deploy(
        ticker=ticker,
        decimals=decimals,
        max_supply=max_supply,
        mint_limit=mint_limit or None,
        flags=flags,
    )


def _parse_mint(r: _Reader) -> Mint:
    token_id = r.varint("token_id", U64_MAX)
    amount = r.varint("amount")
    output_index = r.u8("output_index")
    return Mint(token_id=token_id, amount=amount, output_index=output_index)


def _parse_allocations(r: _Reader) -> tuple[int, tuple[Allocation, ...]]:
    token_id = r.varint("token_id", U64_MAX)
    count = r.u8("alloc_count")
    allocations = []
    for i in range(count):
        output_index = r.u8(f"allocations[{i}].output_index")
        amount = r.varint(f"allocations[{i}].amount")
        allocations.append(Allocation(output_index, amount))
    return token_id, tuple(allocations)


def _parse_transfer(r: _Reader) -> Transfer:
    token_id, allocations = _parse_allocations(r)
    return Transfer(token_id=token_id, allocations=allocations)


def _parse_split(r: _Reader) -> Split:
    token_id, allocations = _parse_allocations(r)
    return Split(token_id=token_id, allocations=allocations)


def _parse_burn(r: _Reader) -> Burn:
    token_id = r.varint("token_id", U64_MAX)
    amount = r.varint("amount")
    return Burn(token_id=token_id, amount=amount)


_PARSERS: dict[int, Callable[[_Reader], Any]] = {
    Opcode.DEPLOY: _parse_deploy,
    Opcode.MINT: _parse_mint,
    Opcode.TRANSFER: _parse_transfer,
    Opcode.BURN: _parse_burn,
    Opcode.SPLIT: _parse_split,
}


def decode(data: bytes) -> TokenOperation:
    """Decode one token operation from an envelope body.

    Raises MalformedInput (or a subclass) for empty, truncated, or unknown
    input. Bytes after a complete record are ignored.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedInput(f"Expected bytes, got {type(data).__name__}")
    buf = bytes(data)
    if not buf:
        raise TruncatedInput("Empty payload")

    parser = _PARSERS.get(buf[0])
    if parser is None:
        raise UnknownOpcode(buf[0])
    return parser(_Reader(buf, 1))


def try_decode(data: bytes) -> TokenOperation | None:
    """Like decode(), but returns None for anything that is not a token operation."""
    try:
        return decode(data)
    except MalformedInput as e:
        log.debug("Rejected token payload: %s", e)
        return None


# ---------------------------------------------------------------------------
# Semantic checks
# ---------------------------------------------------------------------------

def validate_operation(op: TokenOperation) -> None:
    """Indexer-level acceptance rules, stricter than what the wire allows.

    Raises ValidationError if:
        - deploy: bad ticker, decimals > 18, or max_supply == 0
        - mint / burn: amount == 0
        - transfer / split: no allocations, or any zero allocation
    """
    if isinstance(op, Deploy):
        validate_ticker(op.ticker)
        if op.decimals > MAX_DECIMALS:
            raise ValidationError(f"Invalid decimals: {op.decimals} (max {MAX_DECIMALS})")
        if op.max_supply == 0:
            raise ValidationError("Max supply cannot be zero")
    elif isinstance(op, Mint):
        if op.amount == 0:
            raise ValidationError("Mint amount cannot be zero")
    elif isinstance(op, (Transfer, Split)):
        if not op.allocations:
            raise ValidationError("Allocations cannot be empty")
        if any(a.amount == 0 for a in op.allocations):
            raise ValidationError("Allocation amount cannot be zero")
    elif isinstance(op, Burn):
        if op.amount == 0:
            raise ValidationError("Burn amount cannot be zero")
    else:
        raise ValidationError(f"Not a token operation: {type(op).__name__}")


def requires_anchor(op: TokenOperation) -> bool:
    """Everything but a deploy spends from an existing token UTXO."""
    return not isinstance(op, Deploy)


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_token_amount(amount: int, decimals: int) -> str:
    """Render base units as a decimal string, trimming trailing zeros.

    >>> format_token_amount(150_000_000, 8)
    '1.5'
    """
    if decimals == 0:
        return str(amount)
    divisor = 10 ** decimals
    int_part, frac_part = divmod(amount, divisor)
    frac = str(frac_part).rjust(decimals, "0").rstrip("0")
    return f"{int_part}.{frac}" if frac else str(int_part)


def parse_token_amount(text: str, decimals: int) -> int:
    """Parse a decimal string into base units.

    Fractional digits beyond ``decimals`` are truncated, not rounded.
    """
    m = _AMOUNT_RE.fullmatch(text.strip()) if isinstance(text, str) else None
    if m is None or not (m.group(1) or m.group(2)):
        raise ValidationError(f"Invalid token amount: {text!r}")
    int_part = int(m.group(1) or "0")
    frac = (m.group(2) or "").ljust(decimals, "0")[:decimals]
    return int_part * 10 ** decimals + int(frac or "0")


def operation_to_dict(op: TokenOperation) -> dict[str, Any]:
    """JSON-friendly view. Amounts are strings so 128-bit values survive JSON."""
    if isinstance(op, Deploy):
        return {
            "operation": "deploy",
            "ticker": op.ticker,
            "decimals": op.decimals,
            "max_supply": str(op.max_supply),
            "mint_limit": None if op.mint_limit is None else str(op.mint_limit),
            "flags": op.flags,
        }
    if isinstance(op, Mint):
        return {
            "operation": "mint",
            "token_id": op.token_id,
            "amount": str(op.amount),
            "output_index": op.output_index,
        }
    if isinstance(op, (Transfer, Split)):
        return {
            "operation": "transfer" if isinstance(op, Transfer) else "split",
            "token_id": op.token_id,
            "allocations": [
                {"output_index": a.output_index, "amount": str(a.amount)}
                for a in op.allocations
            ],
        }
    if isinstance(op, Burn):
        return {"operation": "burn", "token_id": op.token_id, "amount": str(op.amount)}
    raise ValidationError(f"Not a token operation: {type(op).__name__}")
