"""
Havona Blob Store

The composition root: a versioned, access-controlled content map whose writes
are authorized through one of three channels.

    caller ──► submission gate (operator only)
                  │
                  ├─ direct            attribution: operator
                  ├─ typed data        attribution: recovered secp256k1 signer
                  └─ P-256 / WebAuthn  attribution: hardware key identity
                  │
                  ▼
               commit ──► archive prior version ──► store ──► grant reader
                  │
                  ▼
               event log (signed, hash-chained)

Every call holds the store lock for its whole duration and marks the store
as entered; a nested call from a verifier, decoder or event backend is
rejected with ReentrantCall. Every change a call makes is recorded in an
undo journal and replayed in reverse on any exception, so a failed call
leaves nothing behind.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, MutableMapping, Optional, Sequence, Tuple

from . import curve
from .access import AccessControl
from .errors import (
    AccessDenied,
    BatchLengthMismatch,
    BatchTooLarge,
    HavonaError,
    IndexOutOfBounds,
    InvalidInput,
    InvalidSignature,
    RecordNotFound,
    ReentrantCall,
    Unauthorized,
    VersionLimitExceeded,
)
from .events import (
    ACCESS_GRANTED,
    ACCESS_REVOKED,
    BLOB_STORED,
    BLOB_VERSIONED,
    Event,
    EventLog,
    access_changed,
    blob_removed,
    blob_stored,
    blob_versioned,
    operator_transferred,
    verifier_updated,
)
from .hashing import content_digest, sha256_digest
from .logging_config import audit_log
from .p256 import P256Verifier, is_p256_identity, p256_identity
from .typed_data import (
    DOMAIN_NAME,
    DOMAIN_VERSION,
    MAX_SIGNATURE_VALIDITY,
    TypedDataAuth,
    TypedDataDomain,
)
from .util import b64e, generate_address, is_address, normalize_address, now_epoch, to_hex

logger = logging.getLogger(__name__)

MAX_VERSIONS = 100
MAX_BATCH_SIZE = 50
KEY_LENGTH = 32

# Rejections reported on the audit stream; the rest are logged at debug
AUTHORIZATION_CODES = frozenset({
    "ACCESS_DENIED",
    "UNAUTHORIZED",
    "INVALID_SIGNATURE",
    "SIGNATURE_EXPIRED",
    "EXPIRY_TOO_FAR",
    "SIGNATURE_REPLAYED",
})

# Oasis Sapphire testnet
DEFAULT_CHAIN_ID = 23295

__all__ = [
    "MAX_VERSIONS",
    "MAX_BATCH_SIZE",
    "MAX_SIGNATURE_VALIDITY",
    "BlobDecoder",
    "BlobStore",
    "Page",
    "PageEntry",
    "StoreState",
    "normalize_identity",
]


class BlobDecoder(ABC):
    """
    Parser for stored content.

    Decoding is supplied by the host; the store only hands it the current
    content of a readable record.
    """

    @abstractmethod
    def fields(self, blob: bytes) -> List[Tuple[bytes, bytes]]:
        """Decode a blob into ordered (name, value) pairs."""
        pass

    @abstractmethod
    def elements(self, blob: bytes) -> List[bytes]:
        """Decode a blob into array elements."""
        pass


@dataclass
class StoreState:
    """All record state owned by one store."""
    contents: Dict[bytes, bytes] = field(default_factory=dict)
    digests: Dict[bytes, bytes] = field(default_factory=dict)
    versions: Dict[Tuple[bytes, int], bytes] = field(default_factory=dict)
    version_counts: Dict[bytes, int] = field(default_factory=dict)
    # Key -> insertion sequence; dict order is listing order
    keys: Dict[bytes, int] = field(default_factory=dict)
    # Monotonic; may skip values
    next_sequence: int = 0

    def add_key(self, key: bytes) -> bool:
        if key in self.keys:
            return False
        self.keys[key] = self.next_sequence
        self.next_sequence += 1
        return True

    def sort_keys(self) -> None:
        """Restore listing order after a removed key is put back."""
        ordered = sorted(self.keys.items(), key=lambda item: item[1])
        self.keys.clear()
        self.keys.update(ordered)


_MISSING = object()


def _put_back(mapping: MutableMapping, key: Any, old: Any) -> None:
    if old is _MISSING:
        mapping.pop(key, None)
    else:
        mapping[key] = old


class UndoJournal:
    """
    Undo actions for the entries one call changed, replayed newest first.
    """

    def __init__(self):
        self._actions: List[Callable[[], None]] = []

    def record(self, action: Callable[[], None]) -> None:
        self._actions.append(action)

    def put(self, mapping: MutableMapping, key: Any, value: Any) -> None:
        self.record(partial(_put_back, mapping, key, mapping.get(key, _MISSING)))
        mapping[key] = value

    def pop(self, mapping: MutableMapping, key: Any) -> Any:
        old = mapping.pop(key)
        self.record(partial(_put_back, mapping, key, old))
        return old

    def rollback(self) -> None:
        while self._actions:
            self._actions.pop()()

    def clear(self) -> None:
        self._actions = []


@dataclass(frozen=True)
class PageEntry:
    """One key in a paginated listing; content only when the caller may read it."""
    key: bytes
    readable: bool
    content: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": to_hex(self.key),
            "readable": self.readable,
            "content": b64e(self.content) if self.content is not None else None,
        }


@dataclass(frozen=True)
class Page:
    entries: List[PageEntry]
    total: int
    offset: int
    limit: int


def normalize_identity(value: Any, field_name: str = "identity") -> str:
    """
    Normalize an identity: an account address or a P-256 key identity.

    Raises:
        InvalidInput: If the value is neither
    """
    if is_address(value):
        return value.lower()
    if is_p256_identity(value):
        return value.lower()
    raise InvalidInput(field_name, f"not an address or P-256 identity: {value!r}")


def _check_key(key: Any) -> bytes:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise InvalidInput("key", f"must be {KEY_LENGTH} bytes")
    return bytes(key)


def _check_content(content: Any) -> bytes:
    if not isinstance(content, (bytes, bytearray)):
        raise InvalidInput("content", "must be bytes")
    return bytes(content)


def _check_scalar(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(field_name, "must be an integer")
    return value


class BlobStore:
    """
    Versioned, access-controlled blob store.

    Args:
        operator: Account address of the privileged operator
        verifier: P-256 verifier (default: a verifying P256Verifier)
        chain_id: Chain identifier bound into the typed-data domain
        address: Store instance address (generated when omitted)
        event_log: Event log (default: in-memory with a fresh signing key)
        decoder: Optional content decoder for field and element reads
        clock: Callable returning the current Unix time
        domain_name: Typed-data domain name
        domain_version: Typed-data domain version
        allow_skip_verification: Whether a skipping verifier may be installed
    """

    def __init__(
        self,
        operator: str,
        verifier: Optional[P256Verifier] = None,
        chain_id: int = DEFAULT_CHAIN_ID,
        address: Optional[str] = None,
        event_log: Optional[EventLog] = None,
        decoder: Optional[BlobDecoder] = None,
        clock: Optional[Callable[[], int]] = None,
        domain_name: str = DOMAIN_NAME,
        domain_version: str = DOMAIN_VERSION,
        allow_skip_verification: bool = False
    ):
        try:
            self._operator = normalize_address(operator)
            self.address = normalize_address(address) if address else generate_address()
        except ValueError as exc:
            raise InvalidInput("address", str(exc)) from exc

        self._allow_skip = allow_skip_verification
        self._verifier = verifier or P256Verifier()
        self._check_verifier(self._verifier)

        self.state = StoreState()
        self.auth = TypedDataAuth(TypedDataDomain(
            chain_id=chain_id,
            verifying_contract=self.address,
            name=domain_name,
            version=domain_version,
        ))
        self.access = AccessControl(self._operator, max_batch_size=MAX_BATCH_SIZE)
        self.events = event_log or EventLog()
        self.decoder = decoder
        self._clock = clock or now_epoch

        self._lock = threading.RLock()
        self._entered = False
        self._pending: List[Event] = []
        self._journal = UndoJournal()

        logger.info("Blob store %s initialized (chain %d, operator %s)", self.address, chain_id, self._operator)

    # ============================================================
    # Call discipline
    # ============================================================

    @contextmanager
    def _call(self, operation: str, caller: Any = "") -> Iterator[None]:
        """
        Run one store call: serialized, non-reentrant and all-or-nothing
        including the event log append.
        """
        with self._lock:
            if self._entered:
                audit_log.security_event("reentrant_call", severity="high", operation=operation)
                raise ReentrantCall(operation)
            self._entered = True
            self._journal.clear()
            self._pending = []
            try:
                yield
                if self._pending:
                    self.events.append(self._pending)
                    for event in self._pending:
                        self._audit(operation, event)
            except HavonaError as exc:
                self._journal.rollback()
                self._log_rejection(operation, caller, exc)
                raise
            except Exception:
                self._journal.rollback()
                logger.exception("%s failed; state restored", operation)
                raise
            finally:
                self._journal.clear()
                self._pending = []
                self._entered = False

    def _log_rejection(self, operation: str, caller: Any, exc: HavonaError) -> None:
        if exc.code in AUTHORIZATION_CODES:
            audit_log.authorization_rejected(operation, str(caller), exc.code, exc.message)
        else:
            logger.debug("%s rejected: %s %s", operation, exc.code, exc.message)

    def _set_operator(self, operator: str) -> None:
        self._operator = operator
        self.access.operator = operator

    def _set_verifier(self, verifier: P256Verifier) -> None:
        self._verifier = verifier

    def _grant(self, key: bytes, identity: str) -> bool:
        changed = self.access.grant(key, identity)
        if changed:
            self._journal.record(partial(self.access.grants.pop, (key, identity), None))
        return changed

    def _emit(self, event: Event) -> None:
        self._pending.append(event)

    def _audit(self, operation: str, event: Event) -> None:
        f = event.fields
        if event.name == BLOB_STORED:
            audit_log.write_committed(f["key"], f["identity"], f["length"], f["digest"], operation)
        elif event.name == BLOB_VERSIONED:
            audit_log.version_archived(f["key"], f["version"], f["old_digest"])
        elif event.name in (ACCESS_GRANTED, ACCESS_REVOKED):
            audit_log.access_changed(f["key"], f["identity"], event.name == ACCESS_GRANTED)
        else:
            audit_log.security_event(event.name, severity="low", **f)

    def _require_operator(self, caller: Any, operation: str) -> str:
        if not is_address(caller) or caller.lower() != self._operator:
            raise Unauthorized(str(caller), operation)
        return self._operator

    def _check_verifier(self, verifier: P256Verifier) -> None:
        if verifier.skip_verification and not self._allow_skip:
            audit_log.security_event("skip_verifier_refused", severity="critical", verifier=verifier.address)
            raise InvalidInput("verifier", "signature verification may not be skipped in this environment")

    # ============================================================
    # Commit
    # ============================================================

    def _commit(self, key: bytes, content: bytes, identity: str) -> None:
        """
        Archive the prior version if any, store content, grant the writer.

        A key holds at most MAX_VERSIONS contents counting the current one,
        so the write that would archive version MAX_VERSIONS is refused.
        """
        state = self.state
        journal = self._journal
        now = self._clock()
        digest = content_digest(content)

        if key in state.contents:
            version = state.version_counts.get(key, 0) + 1
            if version >= MAX_VERSIONS:
                raise VersionLimitExceeded(key, MAX_VERSIONS)
            old_digest = state.digests[key]
            journal.put(state.versions, (key, version), state.contents[key])
            journal.put(state.version_counts, key, version)
            self._emit(blob_versioned(to_hex(key), version, to_hex(old_digest), to_hex(digest), now))

        journal.put(state.contents, key, content)
        journal.put(state.digests, key, digest)
        if state.add_key(key):
            journal.record(partial(state.keys.pop, key, None))

        if self._grant(key, identity):
            self._emit(access_changed(True, to_hex(key), identity, now))
        self._emit(blob_stored(to_hex(key), identity, len(content), to_hex(digest), now))

    def _verify_p256(self, digest: bytes, r: Any, s: Any, x: Any, y: Any) -> str:
        r = _check_scalar(r, "r")
        s = _check_scalar(s, "s")
        x = _check_scalar(x, "x")
        y = _check_scalar(y, "y")
        if not self._verifier.verify(digest, r, s, x, y):
            if not curve.is_on_curve(x, y):
                raise InvalidSignature("public key is not on P-256")
            raise InvalidSignature("P-256 signature verification failed")
        return p256_identity(x, y)

    # ============================================================
    # Writes
    # ============================================================

    def set_blob(self, caller: str, key: bytes, content: bytes) -> None:
        """Write content as the operator."""
        with self._call("set_blob", caller):
            identity = self._require_operator(caller, "set_blob")
            self._commit(_check_key(key), _check_content(content), identity)

    def set_blob_with_signature(
        self,
        caller: str,
        key: bytes,
        content: bytes,
        signer: str,
        deadline: int,
        signature: bytes
    ) -> str:
        """
        Write content on behalf of a secp256k1 signer.

        The operator submits; the typed-data signature decides attribution.

        Returns:
            The signer address the write is attributed to
        """
        with self._call("set_blob_with_signature", caller):
            self._require_operator(caller, "set_blob_with_signature")
            key = _check_key(key)
            content = _check_content(content)
            if not isinstance(signature, (bytes, bytearray)):
                raise InvalidInput("signature", "must be bytes")
            deadline = _check_scalar(deadline, "deadline")

            signature = bytes(signature)
            identity = self.auth.authorize_write(key, content, signature, signer, deadline, self._clock())
            self._journal.record(partial(self.auth.release, identity, signature))
            self._commit(key, content, identity)
            return identity

    def set_blob_with_p256(
        self,
        caller: str,
        key: bytes,
        content: bytes,
        r: int,
        s: int,
        x: int,
        y: int
    ) -> str:
        """
        Write content authorized by a P-256 signature over SHA-256(content).

        Returns:
            The P-256 identity the write is attributed to
        """
        with self._call("set_blob_with_p256", caller):
            self._require_operator(caller, "set_blob_with_p256")
            key = _check_key(key)
            content = _check_content(content)
            identity = self._verify_p256(sha256_digest(content), r, s, x, y)
            self._commit(key, content, identity)
            return identity

    def set_blob_with_webauthn(
        self,
        caller: str,
        key: bytes,
        content: bytes,
        message_hash: bytes,
        r: int,
        s: int,
        x: int,
        y: int
    ) -> str:
        """
        Write content authorized by a WebAuthn assertion.

        ``message_hash`` is the pre-hashed assertion value the authenticator
        signed (see p256.webauthn_message_hash).
        """
        with self._call("set_blob_with_webauthn", caller):
            self._require_operator(caller, "set_blob_with_webauthn")
            key = _check_key(key)
            content = _check_content(content)
            if not isinstance(message_hash, (bytes, bytearray)) or len(message_hash) != 32:
                raise InvalidInput("message_hash", "must be 32 bytes")
            identity = self._verify_p256(bytes(message_hash), r, s, x, y)
            self._commit(key, content, identity)
            return identity

    def set_blobs_batch(self, caller: str, keys: Sequence[bytes], contents: Sequence[bytes]) -> int:
        """
        Write several records as the operator, all or nothing.

        Duplicate keys are applied in order.

        Returns:
            Number of items written
        """
        with self._call("set_blobs_batch", caller):
            identity = self._require_operator(caller, "set_blobs_batch")
            if len(keys) != len(contents):
                raise BatchLengthMismatch(len(keys), len(contents))
            if len(keys) > MAX_BATCH_SIZE:
                raise BatchTooLarge(len(keys), MAX_BATCH_SIZE)

            for key, content in zip(keys, contents):
                self._commit(_check_key(key), _check_content(content), identity)
            return len(keys)

    def remove_blob(self, caller: str, key: bytes) -> None:
        """
        Remove the current content of a record.

        Archived versions and the version counter are kept and remain
        readable through get_version.
        """
        with self._call("remove_blob", caller):
            identity = self._require_operator(caller, "remove_blob")
            key = _check_key(key)
            state = self.state
            if key not in state.contents:
                raise RecordNotFound(key)

            self._journal.pop(state.contents, key)
            self._journal.pop(state.digests, key)
            # Runs after the key is put back
            self._journal.record(state.sort_keys)
            self._journal.pop(state.keys, key)
            self._emit(blob_removed(to_hex(key), identity, self._clock()))

    # ============================================================
    # Reads
    # ============================================================

    def _readable(self, caller: Any, key: Any) -> bytes:
        key = _check_key(key)
        identity = normalize_identity(caller, "caller")
        if not self.access.can_read(identity, key):
            raise AccessDenied(identity, key)
        return key

    def _current(self, caller: Any, key: Any) -> bytes:
        key = self._readable(caller, key)
        try:
            return self.state.contents[key]
        except KeyError:
            raise RecordNotFound(key) from None

    def get_blob(self, caller: str, key: bytes) -> bytes:
        """
        Read the current content of a record.

        Raises:
            AccessDenied: Caller is neither the operator nor granted
            RecordNotFound: No current content at key
        """
        with self._call("get_blob", caller):
            return self._current(caller, key)

    def get_blob_hash(self, caller: str, key: bytes) -> bytes:
        """Keccak-256 digest of the current content."""
        with self._call("get_blob_hash", caller):
            key = self._readable(caller, key)
            try:
                return self.state.digests[key]
            except KeyError:
                raise RecordNotFound(key) from None

    def get_version(self, caller: str, key: bytes, version: int) -> bytes:
        """
        Read an archived version; version 1 is the oldest.

        Raises:
            RecordNotFound: Key never held content
            IndexOutOfBounds: version outside 1..version_count
        """
        with self._call("get_version", caller):
            key = self._readable(caller, key)
            version = _check_scalar(version, "version")
            count = self.state.version_counts.get(key, 0)
            if count == 0 and key not in self.state.contents:
                raise RecordNotFound(key)
            if not 0 < version <= count:
                raise IndexOutOfBounds(version, count, "version")
            return self.state.versions[(key, version)]

    def get_blobs_batch(self, caller: str, keys: Sequence[bytes]) -> List[bytes]:
        """Read several records; any unreadable or missing key fails the call."""
        with self._call("get_blobs_batch", caller):
            if len(keys) > MAX_BATCH_SIZE:
                raise BatchTooLarge(len(keys), MAX_BATCH_SIZE)
            return [self._current(caller, key) for key in keys]

    def get_paginated(self, caller: str, offset: int, limit: int) -> Page:
        """
        List keys in insertion order.

        Every key in the slice is listed; content is included only for keys
        the caller may read.
        """
        with self._call("get_paginated", caller):
            identity = normalize_identity(caller, "caller")
            offset = _check_scalar(offset, "offset")
            limit = _check_scalar(limit, "limit")
            if offset < 0:
                raise InvalidInput("offset", "must be non-negative")
            if limit < 0:
                raise InvalidInput("limit", "must be non-negative")

            keys = list(self.state.keys)
            total = len(keys)
            if offset > total:
                raise IndexOutOfBounds(offset, total, "offset")

            entries = []
            for key in keys[offset:offset + limit]:
                if self.access.can_read(identity, key):
                    entries.append(PageEntry(key, True, self.state.contents[key]))
                else:
                    entries.append(PageEntry(key, False))
            return Page(entries=entries, total=total, offset=offset, limit=limit)

    def get_field(self, caller: str, key: bytes, name: bytes) -> bytes:
        """Decode the current content and return the named field."""
        with self._call("get_field", caller):
            content = self._current(caller, key)
            for field_name, value in self._require_decoder().fields(content):
                if field_name == name:
                    return value
            raise InvalidInput("name", f"no field {name!r}")

    def get_element(self, caller: str, key: bytes, index: int) -> bytes:
        """Decode the current content as an array and return one element."""
        with self._call("get_element", caller):
            content = self._current(caller, key)
            index = _check_scalar(index, "index")
            if index < 0:
                raise InvalidInput("index", "must be non-negative")
            elements = self._require_decoder().elements(content)
            if index >= len(elements):
                raise IndexOutOfBounds(index, len(elements), "element")
            return elements[index]

    def _require_decoder(self) -> BlobDecoder:
        if self.decoder is None:
            raise InvalidInput("decoder", "no decoder configured")
        return self.decoder

    # ============================================================
    # Public queries
    # ============================================================

    @property
    def operator(self) -> str:
        return self._operator

    @property
    def verifier(self) -> P256Verifier:
        return self._verifier

    def exists(self, key: bytes) -> bool:
        with self._call("exists"):
            return _check_key(key) in self.state.contents

    def version_count(self, key: bytes) -> int:
        with self._call("version_count"):
            return self.state.version_counts.get(_check_key(key), 0)

    def total_records(self) -> int:
        with self._call("total_records"):
            return len(self.state.keys)

    def can_read(self, identity: str, key: bytes) -> bool:
        with self._call("can_read"):
            return self.access.can_read(normalize_identity(identity), _check_key(key))

    def nonce(self, signer: str) -> int:
        with self._call("nonce"):
            try:
                return self.auth.nonce(signer)
            except ValueError as exc:
                raise InvalidInput("signer", str(exc)) from exc

    def is_signature_used(self, signature: bytes) -> bool:
        with self._call("is_signature_used"):
            return self.auth.is_signature_used(bytes(signature))

    def domain_separator(self) -> bytes:
        return self.auth.domain_separator

    def write_digest(self, key: bytes, content: bytes, signer: str, deadline: int) -> bytes:
        """Digest the signer must sign for its next typed-data write."""
        with self._call("write_digest"):
            try:
                return self.auth.write_digest(_check_key(key), _check_content(content), signer, deadline)
            except ValueError as exc:
                raise InvalidInput("write_digest", str(exc)) from exc

    # ============================================================
    # Access administration
    # ============================================================
    def grant_access(self, caller: str, key: bytes, identity: str) -> bool:
        """Grant read access; returns True if the grant changed state."""
        with self._call("grant_access", caller):
            self._require_operator(caller, "grant_access")
            key = _check_key(key)
            identity = normalize_identity(identity)
            changed = self._grant(key, identity)
            if changed:
                self._emit(access_changed(True, to_hex(key), identity, self._clock()))
            return changed

    def revoke_access(self, caller: str, key: bytes, identity: str) -> bool:
        """Revoke read access; returns True if a grant was removed."""
        with self._call("revoke_access", caller):
            self._require_operator(caller, "revoke_access")
            key = _check_key(key)
            identity = normalize_identity(identity)
            changed = self.access.revoke(key, identity)
            if changed:
                self._journal.record(partial(self.access.grants.__setitem__, (key, identity), True))
                self._emit(access_changed(False, to_hex(key), identity, self._clock()))
            return changed

    def grant_access_batch(self, caller: str, keys: Sequence[bytes], identities: Sequence[str]) -> int:
        """
        Grant keys[i] to identities[i], all or nothing.

        Returns:
            Number of grants that changed state
        """
        with self._call("grant_access_batch", caller):
            self._require_operator(caller, "grant_access_batch")
            checked_keys = [_check_key(k) for k in keys]
            checked_ids = [normalize_identity(i) for i in identities]
            changed = self.access.grant_batch(checked_keys, checked_ids)
            now = self._clock()
            for key, identity in changed:
                self._journal.record(partial(self.access.grants.pop, (key, identity), None))
                self._emit(access_changed(True, to_hex(key), identity, now))
            return len(changed)

    # ============================================================
    # Administration
    # ============================================================

    def set_verifier(self, caller: str, verifier: P256Verifier) -> None:
        """Bind a different P-256 verifier."""
        with self._call("set_verifier", caller):
            self._require_operator(caller, "set_verifier")
            self._check_verifier(verifier)
            old = self._verifier
            self._journal.record(partial(self._set_verifier, old))
            self._set_verifier(verifier)
            self._emit(verifier_updated(old.address, verifier.address, self._clock()))

    def transfer_operator(self, caller: str, new_operator: str) -> None:
        """Hand the operator role to another account."""
        with self._call("transfer_operator", caller):
            old = self._require_operator(caller, "transfer_operator")
            try:
                new = normalize_address(new_operator)
            except ValueError as exc:
                raise InvalidInput("new_operator", str(exc)) from exc
            self._journal.record(partial(self._set_operator, old))
            self._set_operator(new)
            self._emit(operator_transferred(old, new, self._clock()))
