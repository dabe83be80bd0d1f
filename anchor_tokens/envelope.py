"""
Anchor protocol envelope around a token operation body.

Format:
    [4 bytes: A1 1C 00 01]  [1 byte: kind = 20]  [1 byte: anchor count]
    [9 bytes per anchor: 8-byte txid prefix + 1-byte vout]
    [body: token operation]

Anchors are compact back-references to earlier protocol messages. An 8-byte
txid prefix is not collision-free; indexers that care must disambiguate
(e.g. by block height) themselves.

A buffer with another magic or kind belongs to some other protocol, so
unwrap()/parse_message() return None for it rather than raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from anchor_tokens import (
    ANCHOR_MAGIC,
    ANCHOR_SIZE,
    HEADER_SIZE,
    KIND_TOKEN,
    MAX_ANCHORS,
    MAX_RECOMMENDED_ANCHORS,
    TXID_PREFIX_SIZE,
)
from anchor_tokens import ops
from anchor_tokens.errors import ValidationError
from anchor_tokens.hexutil import hex_to_bytes

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnchorRef:
    """Reference to output ``vout`` of a transaction whose txid starts with ``txid_prefix``."""

    txid_prefix: bytes
    vout: int

    def __post_init__(self) -> None:
        if not isinstance(self.txid_prefix, (bytes, bytearray)) or len(self.txid_prefix) != TXID_PREFIX_SIZE:
            raise ValidationError(f"txid_prefix must be exactly {TXID_PREFIX_SIZE} bytes")
        if isinstance(self.vout, bool) or not isinstance(self.vout, int) or not 0 <= self.vout <= 255:
            raise ValidationError(f"vout must fit in one byte (0-255), got {self.vout!r}")
        if isinstance(self.txid_prefix, bytearray):
            object.__setattr__(self, "txid_prefix", bytes(self.txid_prefix))

    @classmethod
    def from_txid(cls, txid_hex: str, vout: int) -> AnchorRef:
        """Build from a display-order txid (the 64-hex form explorers show).

        The prefix is taken from the internal byte order, i.e. the reversed
        display bytes.
        """
        raw = hex_to_bytes(txid_hex)
        if len(raw) != 32:
            raise ValidationError(f"txid must be 32 bytes, got {len(raw)}")
        return cls(raw[::-1][:TXID_PREFIX_SIZE], vout)

    def matches_txid(self, txid_hex: str) -> bool:
        try:
            raw = hex_to_bytes(txid_hex)
        except ValidationError:
            return False
        return len(raw) == 32 and raw[::-1][:TXID_PREFIX_SIZE] == self.txid_prefix

    def to_bytes(self) -> bytes:
        return self.txid_prefix + bytes((self.vout,))


@dataclass(frozen=True)
class ProtocolMessage:
    kind: int
    anchors: tuple[AnchorRef, ...] = field(default_factory=tuple)
    body: bytes = b""


def _check_anchors(anchors: Iterable[AnchorRef]) -> list[AnchorRef]:
    anchors = list(anchors)
    if len(anchors) > MAX_ANCHORS:
        raise ValidationError(f"Too many anchors: {len(anchors)} (max {MAX_ANCHORS})")
    for anchor in anchors:
        if not isinstance(anchor, AnchorRef):
            raise ValidationError(f"Expected AnchorRef, got {type(anchor).__name__}")
    if len(anchors) > MAX_RECOMMENDED_ANCHORS:
        log.warning(
            "Envelope carries %d anchors (recommended max %d)",
            len(anchors), MAX_RECOMMENDED_ANCHORS,
        )
    return anchors


def _assemble(payload: bytes, anchors: list[AnchorRef]) -> bytes:
    parts = [ANCHOR_MAGIC, bytes((KIND_TOKEN, len(anchors)))]
    parts.extend(a.to_bytes() for a in anchors)
    parts.append(bytes(payload))
    return b"".join(parts)


def wrap(payload: bytes, anchors: Sequence[AnchorRef] = ()) -> bytes:
    """Wrap an operation payload in a token-kind envelope.

    Raises ValidationError for a non-bytes payload or more than 255 anchors.
    """
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise ValidationError(f"Payload must be bytes, got {type(payload).__name__}")
    return _assemble(payload, _check_anchors(anchors))


def _split(data: bytes) -> tuple[int, int] | None:
    """Return (anchor_count, body_offset) for a token envelope, else None."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        return None
    if len(data) < HEADER_SIZE:
        return None
    if bytes(data[:4]) != ANCHOR_MAGIC:
        return None
    if data[4] != KIND_TOKEN:
        return None
    count = data[5]
    offset = HEADER_SIZE + count * ANCHOR_SIZE
    if len(data) < offset:
        log.debug("Envelope truncated: %d anchors need %d bytes, have %d", count, offset, len(data))
        return None
    return count, offset


def unwrap(data: bytes) -> bytes | None:
    """Return the body of a token envelope, or None if this is not one."""
    split = _split(data)
    if split is None:
        return None
    _, offset = split
    return bytes(data[offset:])


def parse_message(data: bytes) -> ProtocolMessage | None:
    """Parse a token envelope including its anchor list."""
    split = _split(data)
    if split is None:
        return None
    count, offset = split
    anchors = []
    for i in range(count):
        start = HEADER_SIZE + i * ANCHOR_SIZE
        anchors.append(AnchorRef(
            bytes(data[start:start + TXID_PREFIX_SIZE]),
            data[start + TXID_PREFIX_SIZE],
        ))
    return ProtocolMessage(kind=KIND_TOKEN, anchors=tuple(anchors), body=bytes(data[offset:]))


def encode_token_message(op: ops.TokenOperation, anchors: Iterable[AnchorRef] = ()) -> bytes:
    """Encode an operation and wrap it in one step.

    Anchors are checked before the operation is encoded.
    """
    anchors = _check_anchors(anchors)
    return _assemble(ops.encode(op), anchors)


def parse_token_message(data: bytes) -> ops.TokenOperation | None:
    """Unwrap and decode. None if the envelope or the body is not a token operation."""
    body = unwrap(data)
    if body is None:
        return None
    return ops.try_decode(body)
