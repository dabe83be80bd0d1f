"""
Exception hierarchy for the token codec.

Encode paths raise ValidationError (or its FieldOverflowError subclass) before
any output is produced. Decode paths only ever raise MalformedInput, since
their input is arbitrary bytes lifted from a transaction.
"""

from __future__ import annotations


class TokenCodecError(Exception):
    """Base class for all anchor-tokens errors."""


class ValidationError(TokenCodecError, ValueError):
    """Caller-supplied fields cannot be encoded."""


class FieldOverflowError(ValidationError, OverflowError):
    """An integer field is outside its fixed-width range.

    Attributes:
        field: Name of the offending field.
        value: The rejected value.
        max_value: Largest value the field can hold.
    """

    def __init__(self, field: str, value: int, max_value: int) -> None:
        super().__init__(f"{field} out of range: {value} (allowed 0..{max_value})")
        self.field = field
        self.value = value
        self.max_value = max_value


class MalformedInput(TokenCodecError):
    """Bytes do not form a valid token operation or envelope."""


class TruncatedInput(MalformedInput):
    """Buffer ended before a field was complete."""


class MalformedVarint(MalformedInput):
    """Varint is unterminated or wider than the codec accepts."""


class UnknownOpcode(MalformedInput):
    """Leading operation byte is not one of the five token opcodes."""

    def __init__(self, opcode: int) -> None:
        super().__init__(f"Unknown token opcode: 0x{opcode:02x}")
        self.opcode = opcode


class InvalidTicker(MalformedInput):
    """Ticker bytes on the wire are not valid UTF-8."""


class NoSuitableCarrier(TokenCodecError):
    """No carrier satisfies the size and preference constraints."""

    def __init__(self, size: int) -> None:
        super().__init__(f"No suitable carrier for payload of {size} bytes")
        self.size = size
