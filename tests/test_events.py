"""
Event log tests: chaining, signing, persistence and offline verification.
"""

import os
import tempfile
import unittest

from havona.events import (
    BLOB_STORED,
    EventLog,
    EventSigner,
    InMemoryEventBackend,
    SqliteEventBackend,
    access_changed,
    blob_stored,
    blob_versioned,
    chain_entry_hash,
    verify_event_chain,
    write_key_file,
)


class FailingBackend(InMemoryEventBackend):

    def write_entries(self, entries):
        raise RuntimeError("disk full")


def sample_events(ts=100):
    return [
        blob_stored("0x" + "aa" * 32, "0x" + "11" * 20, 5, "0x" + "bb" * 32, ts),
        blob_versioned("0x" + "aa" * 32, 1, "0x" + "bb" * 32, "0x" + "cc" * 32, ts),
        access_changed(True, "0x" + "aa" * 32, "0x" + "33" * 20, ts),
    ]


class TestEventLog(unittest.TestCase):

    def setUp(self):
        self.signer = EventSigner()
        self.log = EventLog(signer=self.signer)

    def test_append_chains_entries(self):
        entries = self.log.append(sample_events())
        self.assertEqual([e.seq for e in entries], [0, 1, 2])
        self.assertIsNone(entries[0].prev_entry_hash)
        self.assertEqual(entries[1].prev_entry_hash, entries[0].entry_hash)
        self.assertEqual(entries[1].entry_hash, chain_entry_hash(entries[0].entry_hash, entries[1].payload_hash))
        self.assertEqual(self.log.head, entries[-1].entry_hash)

    def test_event_body(self):
        entry = self.log.append(sample_events(ts=42))[0]
        self.assertEqual(entry.event["event"], BLOB_STORED)
        self.assertEqual(entry.event["timestamp"], 42)
        self.assertEqual(entry.event["length"], 5)

    def test_filter_by_name(self):
        self.log.append(sample_events())
        self.assertEqual(len(self.log.entries(BLOB_STORED)), 1)

    def test_export_verifies(self):
        self.log.append(sample_events())
        self.log.append(sample_events(ts=200))
        ok, reason = verify_event_chain(self.log.export(), self.signer.public_key_b64)
        self.assertTrue(ok, reason)

    def test_tampered_event_detected(self):
        self.log.append(sample_events())
        exported = self.log.export()
        exported[1]["event"]["version"] = 2
        ok, reason = verify_event_chain(exported, self.signer.public_key_b64)
        self.assertFalse(ok)
        self.assertIn("Payload hash mismatch", reason)

    def test_dropped_entry_detected(self):
        self.log.append(sample_events())
        exported = self.log.export()
        del exported[1]
        ok, _ = verify_event_chain(exported, self.signer.public_key_b64)
        self.assertFalse(ok)

    def test_wrong_key_detected(self):
        self.log.append(sample_events())
        ok, reason = verify_event_chain(self.log.export(), EventSigner().public_key_b64)
        self.assertFalse(ok)
        self.assertIn("Invalid signature", reason)

    def test_failed_append_leaves_log_untouched(self):
        log = EventLog(signer=self.signer, backend=FailingBackend())
        with self.assertRaises(RuntimeError):
            log.append(sample_events())
        self.assertEqual(len(log), 0)
        self.assertIsNone(log.head)

    def test_empty_append(self):
        self.assertEqual(self.log.append([]), [])


class TestPersistence(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def test_key_file_round_trip(self):
        path = os.path.join(self.tmp.name, "keys", "events.json")
        info = write_key_file(path, kid="test-kid")
        signer = EventSigner.from_file(path)
        self.assertEqual(signer.kid, "test-kid")
        self.assertEqual(signer.public_key_b64, info["public_key_b64"])

    def test_sqlite_backend_reloads_chain(self):
        db = os.path.join(self.tmp.name, "events.db")
        signer = EventSigner()

        backend = SqliteEventBackend(db)
        log = EventLog(signer=signer, backend=backend)
        log.append(sample_events())
        head = log.head
        backend.close()

        backend = SqliteEventBackend(db)
        self.addCleanup(backend.close)
        reloaded = EventLog(signer=signer, backend=backend)
        self.assertEqual(len(reloaded), 3)
        self.assertEqual(reloaded.head, head)

        reloaded.append(sample_events(ts=300))
        ok, reason = verify_event_chain(reloaded.export(), signer.public_key_b64)
        self.assertTrue(ok, reason)


if __name__ == '__main__':
    unittest.main()
