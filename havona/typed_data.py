"""
Havona Structured-Data Authorization

EIP-712 typed-data digests and secp256k1 signer recovery for writes
authorized by an arbitrary account and submitted by the operator.

The signed payload binds the record key, the content hash, the signer's
current nonce and a deadline to one deployment:

    digest = keccak256(0x19 0x01 || domainSeparator || structHash)

Replay is blocked twice: the nonce must be the signer's current one (it is
incremented on every accepted write), and the keccak-256 of the raw
signature bytes is remembered once consumed.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

from coincurve import PrivateKey, PublicKey

from .errors import ExpiryTooFar, InvalidSignature, SignatureExpired, SignatureReplayed
from .hashing import content_digest, keccak256, signature_hash
from .util import normalize_address, to_hex

logger = logging.getLogger(__name__)

DOMAIN_NAME = "HavonaPersistor"
DOMAIN_VERSION = "1"

# Pre-signed writes may not be valid for longer than this, in seconds
MAX_SIGNATURE_VALIDITY = 3600

EIP712_DOMAIN_TYPE = (
    "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
)
SET_BLOB_TYPE = "SetBlob(bytes32 key,bytes32 dataHash,uint256 nonce,uint256 deadline)"

EIP712_DOMAIN_TYPEHASH = keccak256(EIP712_DOMAIN_TYPE)
SET_BLOB_TYPEHASH = keccak256(SET_BLOB_TYPE)

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

SIGNATURE_LENGTH = 65


def _uint256(value: int) -> bytes:
    if value < 0 or value >= 1 << 256:
        raise ValueError(f"value out of uint256 range: {value}")
    return value.to_bytes(32, "big")


def _address_word(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(normalize_address(address)[2:])


@dataclass(frozen=True)
class TypedDataDomain:
    """EIP-712 domain of one store deployment."""
    chain_id: int
    verifying_contract: str
    name: str = DOMAIN_NAME
    version: str = DOMAIN_VERSION

    def separator(self) -> bytes:
        """Compute the domain separator; any differing field changes it."""
        return keccak256(
            EIP712_DOMAIN_TYPEHASH
            + keccak256(self.name)
            + keccak256(self.version)
            + _uint256(self.chain_id)
            + _address_word(self.verifying_contract)
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "version": self.version,
            "chain_id": self.chain_id,
            "verifying_contract": normalize_address(self.verifying_contract),
            "separator": to_hex(self.separator()),
        }


def set_blob_struct_hash(key: bytes, data_hash: bytes, nonce: int, deadline: int) -> bytes:
    """Hash of the SetBlob struct."""
    if len(key) != 32 or len(data_hash) != 32:
        raise ValueError("key and data hash must be 32 bytes")
    return keccak256(SET_BLOB_TYPEHASH + key + data_hash + _uint256(nonce) + _uint256(deadline))


def typed_data_digest(domain_separator: bytes, struct_hash: bytes) -> bytes:
    """Final EIP-712 digest that the signer signs."""
    return keccak256(b"\x19\x01" + domain_separator + struct_hash)


def address_from_public_key(public_key: PublicKey) -> str:
    """Account address: last 20 bytes of keccak256 over the uncompressed point."""
    uncompressed = public_key.format(compressed=False)
    return to_hex(keccak256(uncompressed[1:])[-20:])


def split_signature(signature: bytes) -> Tuple[int, int, int]:
    """
    Split a 65-byte r || s || v signature.

    Returns:
        Tuple of (r, s, recovery_id) with recovery_id in {0, 1}

    Raises:
        InvalidSignature: If the signature is malformed or malleable
    """
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignature(f"expected {SIGNATURE_LENGTH} bytes, got {len(signature)}")

    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]

    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        raise InvalidSignature(f"invalid recovery byte {signature[64]}")
    if not (0 < r < SECP256K1_N):
        raise InvalidSignature("r out of range")
    if not (0 < s <= SECP256K1_HALF_N):
        raise InvalidSignature("s out of range")

    return r, s, v


def recover_signer(digest: bytes, signature: bytes) -> str:
    """
    Recover the signing account address from a 32-byte digest.

    Raises:
        InvalidSignature: If the signature is malformed or recovery fails
    """
    r, s, v = split_signature(signature)
    compact = r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v])
    try:
        public_key = PublicKey.from_signature_and_message(compact, digest, hasher=None)
    except ValueError as exc:
        raise InvalidSignature("public key recovery failed") from exc
    return address_from_public_key(public_key)


def sign_digest(private_key: bytes, digest: bytes) -> bytes:
    """
    Sign a typed-data digest, returning r || s || v with v in {27, 28}.

    libsecp256k1 always produces low-s signatures.
    """
    raw = PrivateKey(private_key).sign_recoverable(digest, hasher=None)
    return raw[:64] + bytes([raw[64] + 27])


def account_address(private_key: bytes) -> str:
    """Address of the account owning a secp256k1 private key."""
    return address_from_public_key(PrivateKey(private_key).public_key)


class TypedDataAuth:
    """
    Structured-data write authorization.

    Owns the per-signer nonces and the consumed-signature set. Both are part
    of the store's state; release() undoes one authorization.
    """

    def __init__(self, domain: TypedDataDomain):
        self.domain = domain
        self._separator = domain.separator()
        self._nonces: Dict[str, int] = {}
        self._used_signatures: Set[bytes] = set()

    @property
    def domain_separator(self) -> bytes:
        return self._separator

    def nonce(self, signer: str) -> int:
        """Current nonce a signer must embed in its next signed write."""
        return self._nonces.get(normalize_address(signer), 0)

    def is_signature_used(self, signature: bytes) -> bool:
        return signature_hash(signature) in self._used_signatures

    def write_digest(
        self,
        key: bytes,
        content: bytes,
        signer: str,
        deadline: int,
        nonce: Optional[int] = None
    ) -> bytes:
        """
        Digest a signer must sign to authorize writing ``content`` at ``key``.

        Args:
            key: 32-byte record key
            content: Content to be written
            signer: Account address of the signer
            deadline: Unix timestamp after which the signature is void
            nonce: Nonce to embed (default: the signer's current nonce)
        """
        if nonce is None:
            nonce = self.nonce(signer)
        struct_hash = set_blob_struct_hash(key, content_digest(content), nonce, deadline)
        return typed_data_digest(self._separator, struct_hash)

    def authorize_write(
        self,
        key: bytes,
        content: bytes,
        signature: bytes,
        claimed_signer: str,
        deadline: int,
        now: int
    ) -> str:
        """
        Authorize a signed write and consume the signature.

        Returns:
            Normalized address of the signer the write is attributed to

        Raises:
            SignatureExpired: now is past the deadline
            ExpiryTooFar: deadline is beyond the maximum validity window
            InvalidSignature: malformed signature or signer mismatch
            SignatureReplayed: signature already consumed
        """
        if now > deadline:
            raise SignatureExpired(deadline, now)
        max_deadline = now + MAX_SIGNATURE_VALIDITY
        if deadline > max_deadline:
            raise ExpiryTooFar(deadline, max_deadline)

        # Consumed signatures are rejected before recovery
        sig_hash = signature_hash(signature)
        if sig_hash in self._used_signatures:
            raise SignatureReplayed(sig_hash)

        try:
            signer = normalize_address(claimed_signer)
        except ValueError as exc:
            raise InvalidSignature("claimed signer is not an address") from exc

        digest = self.write_digest(key, content, signer, deadline)
        recovered = recover_signer(digest, signature)
        if recovered != signer:
            raise InvalidSignature("recovered signer does not match claimed signer")

        self._used_signatures.add(sig_hash)
        self._nonces[signer] = self._nonces.get(signer, 0) + 1

        logger.debug("typed-data write authorized for %s (nonce now %d)", signer, self._nonces[signer])
        return signer

    def release(self, signer: str, signature: bytes) -> None:
        """Undo a successful authorize_write: un-consume the signature and step the nonce back."""
        self._used_signatures.discard(signature_hash(signature))
        signer = normalize_address(signer)
        nonce = self._nonces.get(signer, 0) - 1
        if nonce > 0:
            self._nonces[signer] = nonce
        else:
            self._nonces.pop(signer, None)
