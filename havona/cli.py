#!/usr/bin/env python3
"""
Havona Command Line Interface

Usage:
    havona digest --key <hex> --file <file> --signer <address> --deadline <epoch> --contract <address>
    havona hash --file <file> [--expect <hex>]
    havona verify-p256 (--digest <hex> | --file <file>) --r <hex> --s <hex> --x <hex> --y <hex>
    havona keygen --output <file>
    havona verify-log --file <file> [--public-key <b64>]
"""

import argparse
import json
import sys
from typing import List, Optional

from .events import DEFAULT_EVENT_KID, verify_event_chain, write_key_file
from .hashing import keccak256, sha256_digest, verify_digest
from .p256 import P256Verifier
from .store import DEFAULT_CHAIN_ID
from .typed_data import DOMAIN_NAME, DOMAIN_VERSION, TypedDataDomain, set_blob_struct_hash, typed_data_digest
from .util import from_hex, int_from_hex, normalize_address, to_hex


def load_json(path: str):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def read_bytes(path: str) -> bytes:
    with open(path, 'rb') as f:
        return f.read()


def cmd_digest(args) -> int:
    """Compute the typed-data digest a signer must sign for a write."""
    key = from_hex(args.key)
    if len(key) != 32:
        print("Error: key must be 32 bytes", file=sys.stderr)
        return 2

    content = read_bytes(args.file)
    domain = TypedDataDomain(
        chain_id=args.chain_id,
        verifying_contract=args.contract,
        name=args.domain_name,
        version=args.domain_version,
    )
    separator = domain.separator()
    struct_hash = set_blob_struct_hash(key, keccak256(content), args.nonce, args.deadline)

    print(json.dumps({
        "signer": normalize_address(args.signer),
        "nonce": args.nonce,
        "deadline": args.deadline,
        "domain_separator": to_hex(separator),
        "struct_hash": to_hex(struct_hash),
        "digest": to_hex(typed_data_digest(separator, struct_hash)),
    }, indent=2))
    return 0


def cmd_hash(args) -> int:
    """Hash a file the way the store does."""
    data = read_bytes(args.file)
    result = {
        "file": args.file,
        "length": len(data),
        "keccak256": to_hex(keccak256(data)),
        "sha256": to_hex(sha256_digest(data)),
    }

    if args.expect:
        matches = verify_digest(from_hex(args.expect), data)
        result["matches"] = matches
        print(json.dumps(result, indent=2))
        return 0 if matches else 1

    print(json.dumps(result, indent=2))
    return 0


def cmd_verify_p256(args) -> int:
    """Verify a P-256 signature."""
    if args.digest:
        digest = from_hex(args.digest)
    elif args.file:
        digest = sha256_digest(read_bytes(args.file))
    else:
        print("Error: one of --digest or --file is required", file=sys.stderr)
        return 2

    verifier = P256Verifier()
    valid = verifier.verify(
        digest,
        int_from_hex(args.r),
        int_from_hex(args.s),
        int_from_hex(args.x),
        int_from_hex(args.y),
    )

    if valid:
        print("✓ Signature VALID")
        return 0
    print("✗ Signature INVALID")
    return 1


def cmd_keygen(args) -> int:
    """Generate an Ed25519 event signing key."""
    info = write_key_file(args.output, kid=args.key_id)
    print(f"Generated event signing key: {info['kid']}")
    print(f"Public key (base64): {info['public_key_b64']}")
    print(f"Private key written to: {args.output}")
    return 0


def cmd_verify_log(args) -> int:
    """Verify an exported event log."""
    data = load_json(args.file)
    if isinstance(data, list):
        entries = data
        public_key = args.public_key
    else:
        entries = data.get("entries", [])
        public_key = args.public_key or data.get("public_key_b64")

    if not public_key:
        print("Error: no public key given or found in the export", file=sys.stderr)
        return 2

    ok, reason = verify_event_chain(entries, public_key)
    print(f"{'✓' if ok else '✗'} {reason} ({len(entries)} entries)")
    return 0 if ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Havona persistor tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # digest
    digest_parser = subparsers.add_parser("digest", help="Compute typed-data write digest")
    digest_parser.add_argument("-k", "--key", required=True, help="32-byte record key (hex)")
    digest_parser.add_argument("-f", "--file", required=True, help="Content file")
    digest_parser.add_argument("-s", "--signer", required=True, help="Signer address")
    digest_parser.add_argument("-d", "--deadline", required=True, type=int, help="Deadline (Unix time)")
    digest_parser.add_argument("-n", "--nonce", type=int, default=0, help="Signer nonce")
    digest_parser.add_argument("-c", "--contract", required=True, help="Store address")
    digest_parser.add_argument("--chain-id", type=int, default=DEFAULT_CHAIN_ID, help="Chain id")
    digest_parser.add_argument("--domain-name", default=DOMAIN_NAME, help="Domain name")
    digest_parser.add_argument("--domain-version", default=DOMAIN_VERSION, help="Domain version")

    # hash
    hash_parser = subparsers.add_parser("hash", help="Compute content digests")
    hash_parser.add_argument("-f", "--file", required=True, help="File to hash")
    hash_parser.add_argument("-e", "--expect", help="Expected keccak-256 digest (hex)")

    # verify-p256
    p256_parser = subparsers.add_parser("verify-p256", help="Verify a P-256 signature")
    p256_parser.add_argument("--digest", help="Message digest (hex)")
    p256_parser.add_argument("-f", "--file", help="Message file (hashed with SHA-256)")
    p256_parser.add_argument("--r", required=True, help="Signature r (hex)")
    p256_parser.add_argument("--s", required=True, help="Signature s (hex)")
    p256_parser.add_argument("--x", required=True, help="Public key x (hex)")
    p256_parser.add_argument("--y", required=True, help="Public key y (hex)")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate event signing key")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output key file")
    keygen_parser.add_argument("-k", "--key-id", default=DEFAULT_EVENT_KID, help="Key identifier")

    # verify-log
    log_parser = subparsers.add_parser("verify-log", help="Verify an exported event log")
    log_parser.add_argument("-f", "--file", required=True, help="Exported event log JSON")
    log_parser.add_argument("-p", "--public-key", help="Ed25519 public key (base64)")

    args = parser.parse_args(argv)

    try:
        if args.command == "digest":
            return cmd_digest(args)
        elif args.command == "hash":
            return cmd_hash(args)
        elif args.command == "verify-p256":
            return cmd_verify_p256(args)
        elif args.command == "keygen":
            return cmd_keygen(args)
        elif args.command == "verify-log":
            return cmd_verify_log(args)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
