#!/usr/bin/env python3
"""
Gift claim command line interface

Usage:
    giftclaim keygen [--kid <kid>] [--secrets-dir <dir>] [--trust-store <file>]
    giftclaim issue-credential --address <addr> [--key <file>] [--ttl <seconds>]
    giftclaim commitment --password <pw> --salt <salt> --gift-id <id> --contract <addr> --chain-id <id>
    giftclaim register --token-id <id> --gift-id <id> [--modules 1,2]
    giftclaim resolve --token-id <id>

Registry and ledger settings come from the same environment variables as
the HTTP service.
"""

import argparse
import json
import os
import sys

from nacl.signing import SigningKey

from .errors import ClaimError
from .util import b64d, b64e

DEFAULT_SIGNING_KEY_PATH = "secrets/session_signing_key.json"


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def cmd_keygen(args):
    """Generate a session issuer key and publish it in the trust store."""
    sk = SigningKey.generate()
    key_path = os.path.join(args.secrets_dir, "session_signing_key.json")
    save_json({"kid": args.kid, "private_key_b64": b64e(bytes(sk))}, key_path)

    trust = load_json(args.trust_store) if os.path.exists(args.trust_store) else {}
    trust.setdefault("trust_store_id", "giftclaim-session-issuers")
    trust.setdefault("session_keys", {})[args.kid] = b64e(bytes(sk.verify_key))
    save_json(trust, args.trust_store)

    print(f"Signing key saved to: {key_path}")
    print(f"Trust store updated: {args.trust_store} (kid {args.kid})")
    return 0


def cmd_issue_credential(args):
    """Mint a bearer credential for an address."""
    from .credentials import issue_credential

    key_data = load_json(args.key)
    sk = SigningKey(b64d(key_data["private_key_b64"]))
    token = issue_credential(sk, key_data["kid"], args.address, ttl_seconds=args.ttl)
    print(token)
    return 0


def cmd_commitment(args):
    """Compute the password commitment for a gift."""
    from .commitment import commitment_hex

    print(commitment_hex(args.password, args.salt, args.gift_id, args.contract, args.chain_id))
    return 0


def _registry():
    from .config import load_config
    from .registry import get_gift_registry

    config = load_config()
    return get_gift_registry(
        backend=config.registry_backend,
        db_path=config.registry_db_path,
        redis_url=config.redis_url,
    )


def cmd_register(args):
    """Store a tokenId -> giftId mapping."""
    registry = _registry()
    registry.register(args.token_id, args.gift_id)
    print(f"tokenId {args.token_id} -> giftId {args.gift_id}")
    if args.modules:
        modules = [int(m) for m in args.modules.split(",") if m.strip()]
        registry.set_gate_requirement(args.gift_id, modules)
        print(f"giftId {args.gift_id} requires modules {modules}")
    return 0


def cmd_resolve(args):
    """Look up a tokenId through the configured resolver."""
    from .authorizer import build_resolver
    from .config import load_config
    from .ledger import JsonRpcLedgerClient

    config = load_config()
    client = None
    if config.rpc_url and config.event_fallback_enabled:
        config = config.validate()
        client = JsonRpcLedgerClient(
            config.rpc_url,
            timeout_seconds=config.ledger_timeout_seconds,
            connect_timeout_seconds=config.ledger_connect_timeout_seconds,
        )
    resolver = build_resolver(config, client)
    gift_id = resolver.lookup(args.token_id)
    if gift_id is None:
        print(f"tokenId {args.token_id}: not found", file=sys.stderr)
        return 1
    print(json.dumps({"tokenId": args.token_id, "giftId": gift_id}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="giftclaim",
        description="Gift escrow claim authorization tools",
    )
    subparsers = parser.add_subparsers(dest="command")

    keygen = subparsers.add_parser("keygen", help="Generate a session issuer key")
    keygen.add_argument("--kid", default="session-01", help="Key id")
    keygen.add_argument("--secrets-dir", default="secrets", help="Where the private key is written")
    keygen.add_argument("--trust-store", default=os.getenv("TRUST_STORE_PATH", "trust/trust_store.json"))
    keygen.set_defaults(func=cmd_keygen)

    issue = subparsers.add_parser("issue-credential", help="Mint a bearer credential")
    issue.add_argument("--address", required=True, help="Wallet address")
    issue.add_argument("--key", default=DEFAULT_SIGNING_KEY_PATH, help="Signing key file")
    issue.add_argument("--ttl", type=int, default=24 * 3600, help="Lifetime in seconds")
    issue.set_defaults(func=cmd_issue_credential)

    commit = subparsers.add_parser("commitment", help="Compute a password commitment")
    commit.add_argument("--password", required=True)
    commit.add_argument("--salt", required=True)
    commit.add_argument("--gift-id", type=int, required=True)
    commit.add_argument("--contract", required=True, help="Escrow contract address")
    commit.add_argument("--chain-id", type=int, required=True)
    commit.set_defaults(func=cmd_commitment)

    register = subparsers.add_parser("register", help="Store a tokenId -> giftId mapping")
    register.add_argument("--token-id", required=True)
    register.add_argument("--gift-id", type=int, required=True)
    register.add_argument("--modules", help="Comma-separated education modules required")
    register.set_defaults(func=cmd_register)

    resolve = subparsers.add_parser("resolve", help="Look up the giftId for a tokenId")
    resolve.add_argument("--token-id", required=True)
    resolve.set_defaults(func=cmd_resolve)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except (ClaimError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
