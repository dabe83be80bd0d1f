"""
Anchor Tokens CLI — encode, decode and price token operations.

Commands:
  anchor-tokens encode deploy   - Encode a DEPLOY payload
  anchor-tokens encode mint     - Encode a MINT payload
  anchor-tokens encode transfer - Encode a TRANSFER payload
  anchor-tokens encode burn     - Encode a BURN payload
  anchor-tokens encode split    - Encode a SPLIT payload
  anchor-tokens decode          - Decode a payload, envelope, or OP_RETURN script
  anchor-tokens fee             - Compare carrier costs for a payload size
  anchor-tokens carriers        - List supported carriers
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
import sys

from anchor_tokens import ANCHOR_MAGIC, DEFAULT_FEE_RATE, FEE_RATE_ENV
from anchor_tokens.errors import TokenCodecError


def _add_fee_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--fee-rate",
        type=float,
        help=f"Fee rate in sat/vB (or set {FEE_RATE_ENV}, default {DEFAULT_FEE_RATE})",
    )


def _get_fee_rate(args: argparse.Namespace) -> float:
    """Fee rate from --fee-rate, then the environment, then the default."""
    if getattr(args, "fee_rate", None) is not None:
        rate = args.fee_rate
    else:
        raw = os.environ.get(FEE_RATE_ENV, "")
        if not raw:
            return DEFAULT_FEE_RATE
        try:
            rate = float(raw)
        except ValueError:
            print(f"Error: {FEE_RATE_ENV} is not a number: {raw!r}", file=sys.stderr)
            sys.exit(1)
    if not math.isfinite(rate):
        print(f"Error: fee rate must be a finite number: {rate}", file=sys.stderr)
        sys.exit(1)
    if rate < 0:
        print(f"Error: fee rate cannot be negative: {rate}", file=sys.stderr)
        sys.exit(1)
    return rate


def _parse_allocation(text: str):
    """argparse type for OUTPUT:AMOUNT."""
    from anchor_tokens.ops import Allocation

    index, sep, amount = text.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"allocation must be OUTPUT:AMOUNT, got {text!r}")
    try:
        return Allocation(int(index), int(amount))
    except ValueError:
        raise argparse.ArgumentTypeError(f"allocation must be OUTPUT:AMOUNT, got {text!r}")


def _parse_anchor(text: str):
    """argparse type for TXID:VOUT."""
    from anchor_tokens.envelope import AnchorRef

    txid, sep, vout = text.rpartition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"anchor must be TXID:VOUT, got {text!r}")
    try:
        return AnchorRef.from_txid(txid, int(vout))
    except (ValueError, TokenCodecError) as e:
        raise argparse.ArgumentTypeError(f"invalid anchor {text!r}: {e}")


def _build_operation(args: argparse.Namespace):
    from anchor_tokens.ops import Burn, Deploy, DeployFlags, Mint, Split, Transfer

    kind = args.op_command
    if kind == "deploy":
        flags = args.flags
        if args.open_mint:
            flags |= int(DeployFlags.OPEN_MINT)
        if args.fixed_supply:
            flags |= int(DeployFlags.FIXED_SUPPLY)
        if args.burnable:
            flags |= int(DeployFlags.BURNABLE)
        return Deploy(
            ticker=args.ticker,
            decimals=args.decimals,
            max_supply=args.max_supply,
            mint_limit=args.mint_limit,
            flags=flags,
        )
    if kind == "mint":
        return Mint(token_id=args.token_id, amount=args.amount, output_index=args.output_index)
    if kind == "transfer":
        return Transfer(token_id=args.token_id, allocations=args.alloc or [])
    if kind == "split":
        return Split(token_id=args.token_id, allocations=args.alloc or [])
    return Burn(token_id=args.token_id, amount=args.amount)


def cmd_encode(args: argparse.Namespace) -> None:
    """Encode an operation and print its hex, size and carrier recommendation."""
    from anchor_tokens.carriers import estimate_fee, get_recommended_carrier
    from anchor_tokens.envelope import wrap
    from anchor_tokens.ops import encode, validate_operation

    op = _build_operation(args)
    anchors = args.anchor or []
    fee_rate = _get_fee_rate(args)

    try:
        payload = encode(op)
        data = wrap(payload, anchors) if (args.wrap or anchors) else payload
    except TokenCodecError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        validate_operation(op)
    except TokenCodecError as e:
        print(f"Warning: indexers will reject this operation: {e}", file=sys.stderr)

    carrier = get_recommended_carrier(len(payload))
    print(data.hex())
    if args.quiet:
        return
    print(f"  size:    {len(data)} bytes (payload {len(payload)})", file=sys.stderr)
    print(f"  carrier: {carrier}", file=sys.stderr)
    print(f"  fee:     {estimate_fee(len(payload), fee_rate):g} sats @ {fee_rate:g} sat/vB", file=sys.stderr)


def cmd_decode(args: argparse.Namespace) -> None:
    """Decode a bare payload, an envelope, or an OP_RETURN script."""
    from anchor_tokens.carriers import parse_op_return
    from anchor_tokens.envelope import parse_message
    from anchor_tokens.hexutil import hex_to_bytes
    from anchor_tokens.ops import decode, operation_to_dict

    try:
        data = hex_to_bytes(args.hex.strip())
    except TokenCodecError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.script:
        pushed = parse_op_return(data.hex())
        if pushed is None:
            print("Error: not an OP_RETURN script", file=sys.stderr)
            sys.exit(1)
        data = pushed

    result: dict = {}
    message = parse_message(data)
    if message is not None:
        result["anchors"] = [
            {"txid_prefix": a.txid_prefix.hex(), "vout": a.vout} for a in message.anchors
        ]
        data = message.body
    elif data[:4] == ANCHOR_MAGIC:
        print("Error: anchor envelope is not a token message (wrong kind or truncated)", file=sys.stderr)
        sys.exit(1)

    try:
        op = decode(data)
    except TokenCodecError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    result["operation"] = operation_to_dict(op)
    print(json.dumps(result, indent=2))


def cmd_fee(args: argparse.Namespace) -> None:
    """Compare OP_RETURN and witness cost, and per-carrier embedding cost."""
    from anchor_tokens.carriers import (
        CARRIERS,
        calculate_fee_savings,
        can_handle,
        carrier_fee,
        get_recommended_carrier,
    )

    fee_rate = _get_fee_rate(args)
    try:
        savings = calculate_fee_savings(args.size, fee_rate)
        recommended = get_recommended_carrier(args.size)
    except TokenCodecError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Payload: {args.size} bytes @ {fee_rate:g} sat/vB")
    print(f"  OP_RETURN fee: {savings.op_return_fee:g} sats")
    print(f"  Witness fee:   {savings.witness_fee:g} sats")
    print(f"  Savings:       {savings.savings:g} sats ({savings.savings_percent:.1f}%)")
    print(f"  Recommended:   {recommended}")
    print()
    print(f"  {'CARRIER':<16} {'FITS':<5} {'EMBED COST':>12}")
    for carrier, info in CARRIERS.items():
        fits = "yes" if can_handle(carrier, args.size) else "no"
        cost = carrier_fee(carrier, args.size, fee_rate)
        print(f"  {info.name:<16} {fits:<5} {cost:>9} sat")


def cmd_carriers(args: argparse.Namespace) -> None:
    """List the carrier table."""
    from anchor_tokens.carriers import CARRIERS

    print(f"{'ID':<3} {'CARRIER':<16} {'MAX SIZE':>10}  {'DISCOUNT':<9} {'PRUNABLE':<9} STATUS")
    for carrier, info in CARRIERS.items():
        print(
            f"{int(carrier):<3} {info.name:<16} {info.max_size:>10}  "
            f"{'yes' if info.witness_discount else 'no':<9} "
            f"{'yes' if info.is_prunable else 'no':<9} {info.status.value}"
        )
        if args.verbose:
            print(f"    {info.description}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="anchor-tokens",
        description="Anchor Tokens — encode and decode token operations embedded in Bitcoin transactions.",
    )
    from anchor_tokens import __version__
    parser.add_argument("--version", action="version", version=f"anchor-tokens {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # encode (with subcommands)
    p_enc = sub.add_parser("encode", help="Encode a token operation")
    enc_sub = p_enc.add_subparsers(dest="op_command")

    def add_encode_parser(name: str, help_text: str) -> argparse.ArgumentParser:
        p = enc_sub.add_parser(name, help=help_text)
        p.add_argument("--wrap", action="store_true", help="Wrap the payload in an anchor envelope")
        p.add_argument(
            "--anchor", action="append", type=_parse_anchor, metavar="TXID:VOUT",
            help="Anchor reference (repeatable, implies --wrap)",
        )
        p.add_argument("-q", "--quiet", action="store_true", help="Print only the hex")
        _add_fee_args(p)
        return p

    p_deploy = add_encode_parser("deploy", "Deploy a new token")
    p_deploy.add_argument("--ticker", required=True, help="1-32 alphanumeric characters")
    p_deploy.add_argument("--decimals", type=int, default=0, help="Decimal places (default: 0)")
    p_deploy.add_argument("--max-supply", type=int, required=True, help="Maximum supply in base units")
    p_deploy.add_argument("--mint-limit", type=int, help="Per-mint limit in base units (default: none)")
    p_deploy.add_argument("--flags", type=int, default=0, help="Raw flag byte")
    p_deploy.add_argument("--open-mint", action="store_true", help="Anyone can mint")
    p_deploy.add_argument("--fixed-supply", action="store_true", help="No minting after deploy")
    p_deploy.add_argument("--burnable", action="store_true", help="Tokens can be burned")

    p_mint = add_encode_parser("mint", "Mint tokens")
    p_mint.add_argument("--token-id", type=int, required=True)
    p_mint.add_argument("--amount", type=int, required=True, help="Amount in base units")
    p_mint.add_argument("--output-index", type=int, default=0, help="Receiving output (default: 0)")

    for name, help_text in (("transfer", "Transfer tokens"), ("split", "Split tokens across outputs")):
        p = add_encode_parser(name, help_text)
        p.add_argument("--token-id", type=int, required=True)
        p.add_argument(
            "--alloc", action="append", type=_parse_allocation, metavar="OUTPUT:AMOUNT",
            help="Allocation (repeatable)",
        )

    p_burn = add_encode_parser("burn", "Burn tokens")
    p_burn.add_argument("--token-id", type=int, required=True)
    p_burn.add_argument("--amount", type=int, required=True, help="Amount in base units")

    # decode
    p_dec = sub.add_parser("decode", help="Decode a payload or envelope from hex")
    p_dec.add_argument("hex", help="Hex bytes (optional 0x prefix)")
    p_dec.add_argument("--script", action="store_true", help="Input is an OP_RETURN scriptPubKey")

    # fee
    p_fee = sub.add_parser("fee", help="Compare carrier costs for a payload size")
    p_fee.add_argument("size", type=int, help="Payload size in bytes")
    _add_fee_args(p_fee)

    # carriers
    sub.add_parser("carriers", help="List supported carriers")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    if not args.command:
        print("Anchor Tokens — token operations for the Anchor protocol")
        print()
        print("Usage:")
        print("  anchor-tokens encode deploy --ticker FOO --decimals 8 --max-supply 21000000 --open-mint")
        print("  anchor-tokens encode mint --token-id 1 --amount 1000 --output-index 0")
        print("  anchor-tokens encode transfer --token-id 1 --alloc 0:500 --alloc 1:500 --anchor <txid>:0")
        print("  anchor-tokens encode burn --token-id 1 --amount 100")
        print("  anchor-tokens decode <hex>")
        print("  anchor-tokens fee <size> [--fee-rate N]")
        print("  anchor-tokens carriers")
        print()
        print("Run 'anchor-tokens <command> --help' for details on any command.")
        sys.exit(0)

    if args.command == "encode":
        if not args.op_command:
            print("Usage: anchor-tokens encode {deploy|mint|transfer|burn|split}")
            sys.exit(0)
        cmd_encode(args)
        return

    commands = {
        "decode": cmd_decode,
        "fee": cmd_fee,
        "carriers": cmd_carriers,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
