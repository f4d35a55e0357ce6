"""
Havona Event Log

Append-only notification log for off-chain indexers.

Each entry commits to the previous one:

    payload_hash = SHA-256(canonical JSON(event))
    entry_hash   = SHA-256(prev_entry_hash || payload_hash)

and the entry hash is signed with the enclave's Ed25519 event key, so an
exported log can be checked offline with only the public key.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .util import b64d, b64e, canonicalize, sha256_hex

logger = logging.getLogger(__name__)

DEFAULT_EVENT_KID = "havona-events-01"


# ============================================================
# Events
# ============================================================

BLOB_STORED = "BlobStored"
BLOB_VERSIONED = "BlobVersioned"
BLOB_REMOVED = "BlobRemoved"
ACCESS_GRANTED = "AccessGranted"
ACCESS_REVOKED = "AccessRevoked"
VERIFIER_UPDATED = "VerifierUpdated"
OPERATOR_TRANSFERRED = "OperatorTransferred"


@dataclass(frozen=True)
class Event:
    """One store notification. Binary fields are carried as 0x hex."""
    name: str
    timestamp: int
    fields: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        d = {"event": self.name, "timestamp": self.timestamp}
        d.update(self.fields)
        return d


def blob_stored(key: str, identity: str, length: int, digest: str, timestamp: int) -> Event:
    return Event(BLOB_STORED, timestamp, {
        "key": key,
        "identity": identity,
        "length": length,
        "digest": digest,
    })


def blob_versioned(key: str, version: int, old_digest: str, new_digest: str, timestamp: int) -> Event:
    return Event(BLOB_VERSIONED, timestamp, {
        "key": key,
        "version": version,
        "old_digest": old_digest,
        "new_digest": new_digest,
    })


def blob_removed(key: str, identity: str, timestamp: int) -> Event:
    return Event(BLOB_REMOVED, timestamp, {"key": key, "identity": identity})


def access_changed(granted: bool, key: str, identity: str, timestamp: int) -> Event:
    name = ACCESS_GRANTED if granted else ACCESS_REVOKED
    return Event(name, timestamp, {"key": key, "identity": identity})


def verifier_updated(old: Optional[str], new: str, timestamp: int) -> Event:
    return Event(VERIFIER_UPDATED, timestamp, {"old": old, "new": new})


def operator_transferred(old: str, new: str, timestamp: int) -> Event:
    return Event(OPERATOR_TRANSFERRED, timestamp, {"old": old, "new": new})


# ============================================================
# Log entries
# ============================================================

@dataclass(frozen=True)
class EventLogEntry:
    """A signed, hash-chained log entry."""
    seq: int
    event: Dict[str, Any]
    payload_hash: str
    prev_entry_hash: Optional[str]
    entry_hash: str
    kid: str
    sig_b64: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "event": self.event,
            "payload_hash": self.payload_hash,
            "prev_entry_hash": self.prev_entry_hash,
            "entry_hash": self.entry_hash,
            "kid": self.kid,
            "sig_b64": self.sig_b64,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EventLogEntry":
        return cls(
            seq=int(d["seq"]),
            event=dict(d["event"]),
            payload_hash=d["payload_hash"],
            prev_entry_hash=d.get("prev_entry_hash"),
            entry_hash=d["entry_hash"],
            kid=d["kid"],
            sig_b64=d["sig_b64"],
        )


def event_payload_hash(event: Dict[str, Any]) -> str:
    return sha256_hex(canonicalize(event))


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """
    Compute the hash chain entry hash.

    Args:
        prev_entry_hash: Hash of the previous entry (or None for first)
        payload_hash: Hash of the current payload

    Returns:
        SHA-256 hash of the concatenated hashes
    """
    data = (prev_entry_hash or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)


# ============================================================
# Signing
# ============================================================

class EventSigner:
    """Ed25519 signer for log entries."""

    def __init__(self, signing_key: Optional[SigningKey] = None, kid: str = DEFAULT_EVENT_KID):
        self._sk = signing_key or SigningKey.generate()
        self._kid = kid

    @classmethod
    def from_file(cls, path: str) -> "EventSigner":
        """Load a key file written by ``write_key_file``."""
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return cls(SigningKey(b64d(raw["private_key_b64"])), kid=raw["kid"])

    @property
    def kid(self) -> str:
        return self._kid

    @property
    def public_key_b64(self) -> str:
        return b64e(bytes(self._sk.verify_key))

    def sign(self, message: bytes) -> str:
        return b64e(self._sk.sign(message).signature)


def write_key_file(path: str, kid: str = DEFAULT_EVENT_KID) -> Dict[str, str]:
    """
    Generate a new Ed25519 event key and write it as JSON.

    Returns:
        Dict with kid and public_key_b64 (the private key stays in the file)
    """
    sk = SigningKey.generate()
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"kid": kid, "private_key_b64": b64e(bytes(sk))}, f, indent=2)
    return {"kid": kid, "public_key_b64": b64e(bytes(sk.verify_key))}


def verify_ed25519(sig_b64: str, message: bytes, public_key_b64: str) -> bool:
    """Verify an Ed25519 signature."""
    try:
        VerifyKey(b64d(public_key_b64)).verify(message, b64d(sig_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


# ============================================================
# Backends
# ============================================================

class EventBackend(ABC):
    """Durable storage for log entries."""

    @abstractmethod
    def write_entries(self, entries: Sequence[EventLogEntry]) -> None:
        """Persist entries atomically: all of them or none."""
        pass

    @abstractmethod
    def load_entries(self) -> List[EventLogEntry]:
        """Load all persisted entries in sequence order."""
        pass


class InMemoryEventBackend(EventBackend):
    """In-memory backend for development and testing."""

    def __init__(self):
        self._entries: List[EventLogEntry] = []

    def write_entries(self, entries: Sequence[EventLogEntry]) -> None:
        self._entries.extend(entries)

    def load_entries(self) -> List[EventLogEntry]:
        return list(self._entries)


class SqliteEventBackend(EventBackend):
    """SQLite backend; each append batch is written in one transaction."""

    def __init__(self, db_path: str):
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on failure."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS event_log (
                seq INTEGER PRIMARY KEY,
                event_name TEXT NOT NULL,
                event_json TEXT NOT NULL,
                payload_hash TEXT NOT NULL,
                prev_entry_hash TEXT,
                entry_hash TEXT NOT NULL,
                kid TEXT NOT NULL,
                sig_b64 TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_event_log_name
            ON event_log(event_name);""")

    def write_entries(self, entries: Sequence[EventLogEntry]) -> None:
        with self._transaction() as conn:
            conn.executemany(
                "INSERT INTO event_log(seq, event_name, event_json, payload_hash, "
                "prev_entry_hash, entry_hash, kid, sig_b64) VALUES(?,?,?,?,?,?,?,?)",
                [
                    (
                        e.seq,
                        e.event["event"],
                        json.dumps(e.event, sort_keys=True),
                        e.payload_hash,
                        e.prev_entry_hash,
                        e.entry_hash,
                        e.kid,
                        e.sig_b64,
                    )
                    for e in entries
                ],
            )

    def load_entries(self) -> List[EventLogEntry]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT seq, event_json, payload_hash, prev_entry_hash, entry_hash, kid, sig_b64 "
                "FROM event_log ORDER BY seq ASC"
            )
            rows = cur.fetchall()
        return [
            EventLogEntry(
                seq=row["seq"],
                event=json.loads(row["event_json"]),
                payload_hash=row["payload_hash"],
                prev_entry_hash=row["prev_entry_hash"],
                entry_hash=row["entry_hash"],
                kid=row["kid"],
                sig_b64=row["sig_b64"],
            )
            for row in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


# ============================================================
# Log
# ============================================================

class EventLog:
    """
    Signed hash chain of store events.

    ``append`` is all-or-nothing: entries are built and signed first, the
    backend persists them atomically, and only then does the chain head move.
    """

    def __init__(self, signer: Optional[EventSigner] = None, backend: Optional[EventBackend] = None):
        self.signer = signer or EventSigner()
        self.backend = backend or InMemoryEventBackend()
        self._entries: List[EventLogEntry] = self.backend.load_entries()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def head(self) -> Optional[str]:
        """Entry hash of the most recent entry."""
        return self._entries[-1].entry_hash if self._entries else None

    def append(self, events: Sequence[Event]) -> List[EventLogEntry]:
        """Sign, chain and persist a group of events."""
        if not events:
            return []

        prev = self.head
        seq = len(self._entries)
        built = []
        for event in events:
            body = event.to_dict()
            payload_hash = event_payload_hash(body)
            entry_hash = chain_entry_hash(prev, payload_hash)
            built.append(EventLogEntry(
                seq=seq,
                event=body,
                payload_hash=payload_hash,
                prev_entry_hash=prev,
                entry_hash=entry_hash,
                kid=self.signer.kid,
                sig_b64=self.signer.sign(entry_hash.encode("utf-8")),
            ))
            prev = entry_hash
            seq += 1

        self.backend.write_entries(built)
        self._entries.extend(built)
        return built

    def entries(self, name: Optional[str] = None) -> List[EventLogEntry]:
        if name is None:
            return list(self._entries)
        return [e for e in self._entries if e.event.get("event") == name]

    def export(self) -> List[Dict[str, Any]]:
        """Export the full log for offline verification."""
        return [e.to_dict() for e in self._entries]


def verify_event_chain(entries: Sequence[Dict[str, Any]], public_key_b64: str) -> Tuple[bool, str]:
    """
    Verify an exported event log.

    Checks sequence numbering, payload hashes, chain links and signatures.

    Returns:
        Tuple of (valid, reason)
    """
    prev = None
    for index, raw in enumerate(entries):
        try:
            entry = EventLogEntry.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            return False, f"Malformed entry at index {index}: {exc}"

        if entry.seq != index:
            return False, f"Sequence gap at index {index} (seq {entry.seq})"
        if entry.prev_entry_hash != prev:
            return False, f"Chain link mismatch at seq {entry.seq}"
        if event_payload_hash(entry.event) != entry.payload_hash:
            return False, f"Payload hash mismatch at seq {entry.seq}"
        if chain_entry_hash(prev, entry.payload_hash) != entry.entry_hash:
            return False, f"Entry hash mismatch at seq {entry.seq}"
        if not verify_ed25519(entry.sig_b64, entry.entry_hash.encode("utf-8"), public_key_b64):
            return False, f"Invalid signature at seq {entry.seq}"
        prev = entry.entry_hash

    return True, "Event log chain valid"
