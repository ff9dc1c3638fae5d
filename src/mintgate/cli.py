"""Mintgate CLI — offline tools for documents, costs and signatures.

Usage:
    python -m mintgate.cli hash message.eml
    python -m mintgate.cli package message.eml
    python -m mintgate.cli cost --attachments 2
    python -m mintgate.cli sign --request-id 0x... --key 0x...
    python -m mintgate.cli verify --request-id 0x... --signature 0x... --signer 0xAbc...
    python -m mintgate.cli status --env-file .env
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from mintgate.config import MintgateConfig
from mintgate.content.hasher import ContentHasher
from mintgate.content.package import build_content_package
from mintgate.errors import MintgateError
from mintgate.identity.signature import SignatureVerifier, sign_request
from mintgate.models.credit import DEFAULT_CREDIT_COSTS
from mintgate.service import MintgateService


def _read_document(path: Path):
    return ContentHasher().hash_document(path.read_bytes())


def cmd_hash(args: argparse.Namespace) -> int:
    try:
        parsed = _read_document(args.file)
    except (OSError, MintgateError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    output = parsed.digest.to_dict()
    output["message_id"] = parsed.message_id
    output["attachment_count"] = parsed.attachment_count
    print(json.dumps(output, indent=2))
    return 0


def cmd_package(args: argparse.Namespace) -> int:
    try:
        parsed = _read_document(args.file)
    except (OSError, MintgateError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps(build_content_package(parsed), indent=2, ensure_ascii=False))
    return 0


def cmd_cost(args: argparse.Namespace) -> int:
    try:
        cost = DEFAULT_CREDIT_COSTS.cost_for(args.attachments)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps({"attachments": args.attachments, "credit_cost": cost}))
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    try:
        signature = sign_request(args.request_id, args.key)
    except (ValueError, TypeError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(signature)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    if SignatureVerifier().verify(args.request_id, args.signature, args.signer):
        print("Signature valid")
        return 0
    print("Failed: signature does not match signer", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    try:
        service = MintgateService(MintgateConfig.from_env(args.env_file))
    except (ValueError, MintgateError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps(service.status(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mintgate",
        description="Mintgate — authorization-gated content minting CLI",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    # hash
    p_hash = sub.add_parser("hash", help="Print the canonical hashes of a document")
    p_hash.add_argument("file", type=Path, help="Raw RFC 822 document")

    # package
    p_pkg = sub.add_parser("package", help="Print the content package for a document")
    p_pkg.add_argument("file", type=Path, help="Raw RFC 822 document")

    # cost
    p_cost = sub.add_parser("cost", help="Credit cost of a request")
    p_cost.add_argument("--attachments", type=int, required=True, help="Attachment count")

    # sign
    p_sign = sub.add_parser("sign", help="Sign a request id with a private key")
    p_sign.add_argument("--request-id", required=True, help="0x-prefixed request id")
    p_sign.add_argument("--key", required=True, help="Hex private key")

    # verify
    p_ver = sub.add_parser("verify", help="Check a signature against a claimed signer")
    p_ver.add_argument("--request-id", required=True, help="0x-prefixed request id")
    p_ver.add_argument("--signature", required=True, help="0x-prefixed signature")
    p_ver.add_argument("--signer", required=True, help="Claimed signer address")

    # status
    p_status = sub.add_parser("status", help="Show service status from configuration")
    p_status.add_argument("--env-file", type=Path, help="Path to a .env file")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "hash": cmd_hash,
        "package": cmd_package,
        "cost": cmd_cost,
        "sign": cmd_sign,
        "verify": cmd_verify,
        "status": cmd_status,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
