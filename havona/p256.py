"""
Havona P-256 Signature Verifier

Verifies ECDSA signatures produced by hardware security tokens and WebAuthn
authenticators over NIST P-256.

Verification is a pure predicate: malformed input returns False, it never
raises. The store turns a False into an InvalidSignature rejection.
"""

import logging
import re
from typing import Any, Optional, Union

from . import curve
from .hashing import sha256_digest
from .util import generate_address

logger = logging.getLogger(__name__)

P256_IDENTITY_PREFIX = "p256:"
P256_IDENTITY_PATTERN = re.compile(r"^p256:[0-9a-fA-F]{128}$")


def p256_identity(x: int, y: int) -> str:
    """
    Textual identity of a P-256 public key.

    Writes authorized by a hardware token are attributed to the key itself,
    not to an account address.
    """
    return f"{P256_IDENTITY_PREFIX}{x:064x}{y:064x}"


def is_p256_identity(value: Any) -> bool:
    return isinstance(value, str) and bool(P256_IDENTITY_PATTERN.match(value))


def webauthn_message_hash(authenticator_data: bytes, client_data_json: bytes) -> bytes:
    """
    Compute the message hash a WebAuthn authenticator signs.

    The assertion signature covers authenticatorData || SHA-256(clientDataJSON),
    and P-256 signatures are made over the SHA-256 of that message.
    """
    return sha256_digest(authenticator_data + sha256_digest(client_data_json))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def digest_to_int(digest: Union[bytes, int]) -> int:
    """Interpret a 32-byte message digest as a big-endian integer."""
    if isinstance(digest, int):
        return digest
    return int.from_bytes(digest, "big")


class P256Verifier:
    """
    ECDSA verifier for P-256.

    ``skip_verification`` is fixed at construction and cannot be changed
    afterwards. When set, every signature whose public key passes the range
    and on-curve checks is accepted. It exists for non-production
    environments only; Settings.validate refuses it in production.
    """

    def __init__(self, skip_verification: bool = False, address: Optional[str] = None):
        self._skip_verification = bool(skip_verification)
        self._address = address or generate_address()
        if self._skip_verification:
            logger.warning("P-256 verifier %s constructed with verification disabled", self._address)

    @property
    def skip_verification(self) -> bool:
        return self._skip_verification

    @property
    def address(self) -> str:
        """Deployment identity reported in VerifierUpdated events."""
        return self._address

    def verify(self, digest: Union[bytes, int], r: int, s: int, x: int, y: int) -> bool:
        """
        Verify an ECDSA signature.

        Args:
            digest: 32-byte message hash (or its integer value)
            r, s: Signature scalars
            x, y: Public key coordinates

        Returns:
            True if the signature is valid, False otherwise
        """
        if not all(_is_int(v) for v in (r, s, x, y)):
            return False
        if not (_is_int(digest) or isinstance(digest, (bytes, bytearray))):
            return False
        if not (0 < r < curve.N) or not (0 < s < curve.N):
            return False
        if not (0 <= x < curve.P) or not (0 <= y < curve.P):
            return False
        if not curve.is_on_curve(x, y):
            return False

        if self._skip_verification:
            return True

        e = digest_to_int(digest)

        w = curve.mod_inverse(s, curve.N)
        u1 = (e * w) % curve.N
        u2 = (r * w) % curve.N

        point = curve.double_scalar_mult(u1, curve.G, u2, curve.Point(x, y))
        if point.infinity:
            return False

        return point.x % curve.N == r

    def verify_message(self, message: bytes, r: int, s: int, x: int, y: int) -> bool:
        """Verify a signature over SHA-256(message)."""
        if not isinstance(message, (bytes, bytearray)):
            return False
        return self.verify(sha256_digest(message), r, s, x, y)
