"""
Anchor Tokens — binary codec for fungible-token operations carried in Bitcoin
transactions.

Layout:
    Envelope:  A1 1C 00 01 (magic) + kind (20) + anchor count + anchors (9B each) + body
    Body:      one token operation (deploy / mint / transfer / burn / split)
    Carrier:   where the envelope bytes live in the transaction (OP_RETURN, witness, ...)

Zero external dependencies at runtime.
"""

__version__ = "0.1.0"

# Anchor protocol envelope
ANCHOR_MAGIC = b"\xa1\x1c\x00\x01"
ANCHOR_MAGIC_HEX = "a11c0001"
KIND_TOKEN = 20  # custom kind assigned to token operations
TXID_PREFIX_SIZE = 8
ANCHOR_SIZE = 9  # 8 (txid prefix) + 1 (vout)
HEADER_SIZE = 6  # 4 (magic) + 1 (kind) + 1 (anchor count)
MAX_ANCHORS = 255
MAX_RECOMMENDED_ANCHORS = 16

# Token operation limits
MAX_TICKER_LENGTH = 32  # bytes, after UTF-8 encoding
MAX_DECIMALS = 18
MAX_ALLOCATIONS = 255
U8_MAX = 0xFF
U64_MAX = 2**64 - 1  # token ids
U128_MAX = 2**128 - 1  # amounts, max supply, mint limit

# Fee model (vbytes)
BASE_TX_VSIZE = 150
PROTOCOL_OVERHEAD = HEADER_SIZE  # magic + kind + anchor count, no anchors
OP_RETURN_OUTPUT_OVERHEAD = 10
WITNESS_SCALE_FACTOR = 4
DEFAULT_FEE_RATE = 1  # sat/vB
FEE_RATE_ENV = "ANCHOR_TOKENS_FEE_RATE"
