"""Hex <-> bytes helpers for JSON / API transport."""

from __future__ import annotations

import re

from anchor_tokens.errors import ValidationError

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


def bytes_to_hex(data: bytes) -> str:
    """Lowercase hex, no separators."""
    return bytes(data).hex()


def hex_to_bytes(text: str) -> bytes:
    """Parse a hex string, with or without a leading ``0x``.

    Raises ValidationError on odd length or non-hex characters.
    """
    if not isinstance(text, str):
        raise ValidationError(f"Hex input must be a string, got {type(text).__name__}")
    clean = text[2:] if text[:2] in ("0x", "0X") else text
    if len(clean) % 2 != 0:
        raise ValidationError(f"Invalid hex string length: {len(clean)}")
    if not _HEX_RE.fullmatch(clean):
        raise ValidationError("Invalid hex string: non-hex characters")
    return bytes.fromhex(clean)
