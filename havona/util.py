"""
Utility functions for the Havona persistor.

Provides canonical JSON serialization, hashing, hex/base64 encoding,
address handling, and time utilities.
"""

import base64
import hashlib
import json
import re
import secrets
import time
from typing import Any, Union

ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')
HEX_PATTERN = re.compile(r'^(0x)?[a-fA-F0-9]*$')


def canonicalize(obj: Any) -> bytes:
    """
    Convert object to canonical JSON bytes.

    Canonical JSON:
    - Lexicographically sorted keys
    - No whitespace
    - UTF-8 encoded
    """
    s = json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return s.encode('utf-8')


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'), validate=True)


def to_hex(b: bytes) -> str:
    """Encode bytes as a 0x-prefixed lowercase hex string."""
    return "0x" + b.hex()


def from_hex(s: str) -> bytes:
    """
    Decode a hex string, with or without 0x prefix.

    Raises:
        ValueError: If the string is not valid hexadecimal
    """
    if not isinstance(s, str) or not HEX_PATTERN.match(s):
        raise ValueError(f"invalid hex string: {s!r}")
    if s.startswith("0x"):
        s = s[2:]
    if len(s) % 2:
        raise ValueError("hex string must have an even number of digits")
    return bytes.fromhex(s)


def int_from_hex(s: str) -> int:
    """Decode a hex string (any digit count) into a non-negative integer."""
    if not isinstance(s, str) or not HEX_PATTERN.match(s):
        raise ValueError(f"invalid hex string: {s!r}")
    digits = s[2:] if s.startswith("0x") else s
    return int(digits, 16) if digits else 0


def is_address(value: Any) -> bool:
    """Check whether a value is a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def normalize_address(value: str) -> str:
    """
    Normalize an account address to lowercase 0x form.

    Raises:
        ValueError: If the value is not a 20-byte hex address
    """
    if not is_address(value):
        raise ValueError(f"invalid address: {value!r}")
    return value.lower()


def generate_address() -> str:
    """Generate a random account-style address (used for deployment identities)."""
    return to_hex(secrets.token_bytes(20))
