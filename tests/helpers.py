"""Shared fixtures for the Havona test suite."""

import hashlib
from typing import Tuple

from coincurve import PrivateKey
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature

from havona.typed_data import account_address

OPERATOR = "0x1111111111111111111111111111111111111111"
STORE_ADDRESS = "0x2222222222222222222222222222222222222222"
READER = "0x3333333333333333333333333333333333333333"
OUTSIDER = "0x4444444444444444444444444444444444444444"
CHAIN_ID = 23295
NOW = 1_700_000_000


def make_key(label: str) -> bytes:
    """Deterministic 32-byte record key."""
    return hashlib.sha256(label.encode("utf-8")).digest()


class FixedClock:
    """Settable clock for deadline tests."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now


class Secp256k1Account:
    """secp256k1 account for typed-data signatures."""

    def __init__(self, secret: bytes = None):
        self.private_key = secret or PrivateKey().secret
        self.address = account_address(self.private_key)


class P256Key:
    """P-256 key pair standing in for a hardware token."""

    def __init__(self, private_value: int = None):
        if private_value is None:
            self._sk = ec.generate_private_key(ec.SECP256R1())
        else:
            self._sk = ec.derive_private_key(private_value, ec.SECP256R1())
        numbers = self._sk.public_key().public_numbers()
        self.x = numbers.x
        self.y = numbers.y

    def sign_digest(self, digest: bytes) -> Tuple[int, int]:
        der = self._sk.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        return decode_dss_signature(der)

    def sign(self, message: bytes) -> Tuple[int, int]:
        return self.sign_digest(hashlib.sha256(message).digest())
