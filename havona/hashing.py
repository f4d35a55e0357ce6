"""
Havona Hashing

Record contents, signature hashes, and typed-data digests all use
Keccak-256 (the original Keccak padding, not NIST SHA3-256).
P-256 message digests use SHA-256.
"""

import hashlib
from typing import Union

from Crypto.Hash import keccak


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute the Keccak-256 digest.

    Returns:
        32-byte digest
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def content_digest(content: bytes) -> bytes:
    """Digest recorded for a stored blob."""
    return keccak256(content)


def signature_hash(signature: bytes) -> bytes:
    """Key under which a consumed signature is remembered."""
    return keccak256(signature)


def sha256_digest(data: Union[bytes, str]) -> bytes:
    """SHA-256 digest, the message hash for P-256 signatures."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def verify_digest(declared: bytes, data: bytes) -> bool:
    """Recompute the content digest and compare it with a declared one."""
    return content_digest(data) == declared
