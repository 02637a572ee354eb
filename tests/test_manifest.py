"""
Tests for manifest models, the manifest store and remote machine state.
"""
import json
import tempfile
import threading
import unittest
from pathlib import Path

from brainsync.core import crypto
from brainsync.core.errors import DecryptionError, ManifestUnavailableError
from brainsync.core.manifest import (
    MANIFEST_PATH, FileHashInfo, LegacyArchive, Manifest, ManifestStore, PerFile,
    SyncedConversation, iso_utc, now_iso,
)
from brainsync.core.remote_store import LocalObjectStore
from brainsync.state.machine_state import MachineStateStore, machine_state_path


PASSWORD = "manifest-password"


def entry(conv_id, overall="h1", files=None):
    files = files if files is not None else {f"brain/{conv_id}/task.md": FileHashInfo("f1", 3, "")}
    return SyncedConversation(id=conv_id, title=conv_id, last_modified="", overall_hash=overall,
                              modified_by="m1", storage=PerFile(files))


class StoreCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.store = LocalObjectStore(Path(self.tmpdir.name))
        self.manifests = ManifestStore(self.store, PASSWORD)

    def tearDown(self):
        self.manifests.close()
        self.tmpdir.cleanup()


# ── Tests: models ─────────────────────────────────────────────────────────────

class TestManifestModels(unittest.TestCase):

    def test_entry_serialisation(self):
        """Per-file entries carry formatVersion 2 and their fileHashes."""
        data = entry("a").to_dict()
        self.assertEqual(data["formatVersion"], 2)
        self.assertEqual(data["fileHashes"]["brain/a/task.md"]["hash"], "f1")
        back = SyncedConversation.from_dict(data)
        self.assertIsInstance(back.storage, PerFile)
        self.assertEqual(back.file_hashes["brain/a/task.md"].size, 3)

    def test_legacy_entry(self):
        """Entries without formatVersion (or fileHashes) are legacy archives."""
        old = SyncedConversation.from_dict({"id": "a", "title": "A", "hash": "abc"})
        self.assertIsInstance(old.storage, LegacyArchive)
        self.assertEqual(old.overall_hash, "abc")
        self.assertEqual(old.file_hashes, {})
        self.assertNotIn("fileHashes", old.to_dict())
        self.assertEqual(old.to_dict()["formatVersion"], 1)

    def test_upsert_and_remove(self):
        """upsert replaces by id; remove reports whether anything was dropped."""
        m = Manifest.new(PASSWORD)
        m.upsert(entry("a", "h1"))
        m.upsert(entry("a", "h2"))
        self.assertEqual(len(m.conversations), 1)
        self.assertEqual(m.find("a").overall_hash, "h2")
        self.assertTrue(m.remove("a"))
        self.assertFalse(m.remove("a"))

    def test_password_check(self):
        """A new manifest verifies its own password only."""
        m = Manifest.new(PASSWORD)
        self.assertTrue(m.check_password(PASSWORD))
        self.assertFalse(m.check_password("other"))

    def test_timestamps(self):
        """Timestamps are UTC with milliseconds and a Z suffix."""
        self.assertEqual(iso_utc(0), "1970-01-01T00:00:00.000Z")
        self.assertEqual(iso_utc(1700000000.5), "2023-11-14T22:13:20.500Z")
        self.assertRegex(now_iso(), r"^\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z$")


# ── Tests: ManifestStore ──────────────────────────────────────────────────────

class TestManifestStore(StoreCase):

    def test_fetch_missing(self):
        """fetch returns None when no manifest exists."""
        self.assertIsNone(self.manifests.fetch())

    def test_ensure_recreates(self):
        """ensure creates the manifest when it is missing."""
        manifest = self.manifests.ensure()
        self.assertEqual(manifest.conversations, [])
        self.assertIsNotNone(self.store.get_object(MANIFEST_PATH))

    def test_stored_encrypted(self):
        """The stored manifest is ciphertext that decrypts to JSON."""
        self.manifests.create_initial()
        blob = self.store.get_object(MANIFEST_PATH)
        self.assertNotIn(b"conversations", blob)
        data = json.loads(crypto.decrypt(blob, PASSWORD))
        self.assertIn("passwordVerificationHash", data)

    def test_wrong_password(self):
        """A manifest under another password is unavailable, with DecryptionError as cause."""
        self.manifests.create_initial()
        other = ManifestStore(self.store, "another password")
        try:
            with self.assertRaises(ManifestUnavailableError) as cm:
                other.fetch()
            self.assertIsInstance(cm.exception.__cause__, DecryptionError)
        finally:
            other.close()

    def test_garbage_manifest(self):
        """Encrypted non-JSON content is reported as unavailable."""
        self.store.put_object(MANIFEST_PATH, crypto.encrypt(b"{nope", PASSWORD))
        with self.assertRaises(ManifestUnavailableError):
            self.manifests.fetch()

    def test_update_writes_only_on_change(self):
        """update applies mutate to the freshest copy and skips no-op writes."""
        self.manifests.create_initial()
        before = self.store.get_object(MANIFEST_PATH)
        self.manifests.update(lambda m: False)
        self.assertEqual(self.store.get_object(MANIFEST_PATH), before)

        def add(m):
            m.upsert(entry("a"))
            return True

        result = self.manifests.update(add)
        self.assertEqual([c.id for c in result.conversations], ["a"])
        self.assertEqual([c.id for c in self.manifests.fetch().conversations], ["a"])

    def test_concurrent_updates_do_not_lose_writes(self):
        """Updates from many threads are serialised; every entry survives."""
        self.manifests.create_initial()

        def add(conv_id):
            def mutate(m):
                m.upsert(entry(conv_id))
                return True
            self.manifests.update(mutate)

        threads = [threading.Thread(target=add, args=(f"c{i}",)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        ids = sorted(c.id for c in self.manifests.fetch().conversations)
        self.assertEqual(ids, [f"c{i}" for i in range(6)])


# ── Tests: MachineStateStore ──────────────────────────────────────────────────

class TestMachineState(StoreCase):

    def test_save_and_load(self):
        """Machine state is stored encrypted at machines/<id>.json.enc."""
        states = MachineStateStore(self.store, PASSWORD)
        state = states.load_or_new("m1", "laptop")
        state.record("a", "h1", {"brain/a/task.md": FileHashInfo("f1", 3, "")})
        states.save(state)
        self.assertIsNotNone(self.store.get_object(machine_state_path("m1")))

        loaded = states.load("m1")
        self.assertEqual(loaded.machine_name, "laptop")
        self.assertEqual(loaded.base_for("a").overall_hash, "h1")
        self.assertEqual(states.list_machine_ids(), ["m1"])

    def test_wrong_password_propagates(self):
        """Loading a state written under another password raises DecryptionError."""
        MachineStateStore(self.store, PASSWORD).save(
            MachineStateStore(self.store, PASSWORD).load_or_new("m1", "laptop"))
        with self.assertRaises(DecryptionError):
            MachineStateStore(self.store, "another").load("m1")
        self.assertEqual(MachineStateStore(self.store, "another").load_all(), [])

    def test_forget(self):
        """forget drops the base of one conversation."""
        state = MachineStateStore(self.store, PASSWORD).load_or_new("m1", "laptop")
        state.record("a", "h1", {})
        self.assertTrue(state.forget("a"))
        self.assertIsNone(state.base_for("a"))


if __name__ == "__main__":
    unittest.main()
