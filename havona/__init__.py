"""
Havona Persistor

Version: 0.1.0
License: Apache 2.0

An authenticated, versioned, access-controlled blob store for a
confidential execution environment.

Writes are accepted through three authorization channels:
    - direct writes by the operator
    - EIP-712 typed-data signatures from any secp256k1 account
    - P-256 signatures from hardware tokens and WebAuthn authenticators

Every accepted write archives the prior content as an immutable version,
grants the attributed identity read access, and appends a signed entry to a
hash-chained event log.

Usage:
    from havona import BlobStore

    store = BlobStore(operator="0x...")
    store.set_blob(operator, key, b"content")
    store.get_blob(operator, key)

    # On behalf of a secp256k1 signer
    digest = store.write_digest(key, content, signer, deadline)
    signature = sign_digest(private_key, digest)
    store.set_blob_with_signature(operator, key, content, signer, deadline, signature)
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from .access import AccessControl
from .config import Settings, build_store
from .errors import (
    AccessDenied,
    BatchLengthMismatch,
    BatchTooLarge,
    ExpiryTooFar,
    HavonaError,
    IndexOutOfBounds,
    InvalidInput,
    InvalidSignature,
    RecordNotFound,
    ReentrantCall,
    SignatureExpired,
    SignatureReplayed,
    Unauthorized,
    VersionLimitExceeded,
)
from .events import (
    EventLog,
    EventSigner,
    InMemoryEventBackend,
    SqliteEventBackend,
    verify_event_chain,
)
from .hashing import content_digest, keccak256
from .p256 import P256Verifier, p256_identity, webauthn_message_hash
from .store import (
    MAX_BATCH_SIZE,
    MAX_SIGNATURE_VALIDITY,
    MAX_VERSIONS,
    BlobDecoder,
    BlobStore,
    Page,
    PageEntry,
)
from .typed_data import TypedDataAuth, TypedDataDomain, account_address, recover_signer, sign_digest

__all__ = [
    # Store
    "BlobStore",
    "BlobDecoder",
    "Page",
    "PageEntry",
    "MAX_VERSIONS",
    "MAX_BATCH_SIZE",
    "MAX_SIGNATURE_VALIDITY",
    # Components
    "AccessControl",
    "P256Verifier",
    "p256_identity",
    "webauthn_message_hash",
    "TypedDataAuth",
    "TypedDataDomain",
    "account_address",
    "recover_signer",
    "sign_digest",
    "keccak256",
    "content_digest",
    # Event log
    "EventLog",
    "EventSigner",
    "InMemoryEventBackend",
    "SqliteEventBackend",
    "verify_event_chain",
    # Configuration
    "Settings",
    "build_store",
    # Errors
    "HavonaError",
    "AccessDenied",
    "Unauthorized",
    "InvalidSignature",
    "SignatureExpired",
    "ExpiryTooFar",
    "SignatureReplayed",
    "VersionLimitExceeded",
    "BatchTooLarge",
    "BatchLengthMismatch",
    "RecordNotFound",
    "IndexOutOfBounds",
    "ReentrantCall",
    "InvalidInput",
]
