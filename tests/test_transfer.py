"""
Tests for the transfer pipeline and the legacy archive pull.
"""
import io
import tempfile
import threading
import unittest
import zipfile
from pathlib import Path

from brainsync.core import crypto
from brainsync.core.errors import CancellationError, DecryptionError, ObjectNotFoundError
from brainsync.core.layout import StorageLayout
from brainsync.core.remote_store import LocalObjectStore
from brainsync.operations.legacy import pull_legacy
from brainsync.operations.transfer import (
    HASH_META_KEY, TransferPipeline, legacy_archive_path, object_path,
)
from brainsync.utils.context import SyncContext
from brainsync.utils.file_utils import md5_bytes


PASSWORD = "transfer-password"


class TransferCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        base = Path(self.tmpdir.name)
        self.store = LocalObjectStore(base / "remote")
        self.layout = StorageLayout(base / "local")
        self.pipeline = TransferPipeline(self.store, PASSWORD, self.layout, concurrency=2)

    def tearDown(self):
        self.tmpdir.cleanup()

    def write_local(self, rel, data: bytes):
        conv_id = rel.split("/")[1].replace(".pb", "")
        path = self.layout.full_path(conv_id, rel)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path


# ── Tests: upload ─────────────────────────────────────────────────────────────

class TestUpload(TransferCase):

    def test_upload_encrypts_and_records_hash(self):
        """Uploaded objects are ciphertext with the plaintext md5 as metadata."""
        self.write_local("brain/a/task.md", b"# Task: A\n")
        stats = self.pipeline.upload_file("a", "brain/a/task.md")
        self.assertEqual(stats.uploaded, 1)
        path = object_path("a", "brain/a/task.md")
        self.assertEqual(path, "conversations/a/brain/a/task.md.enc")
        blob = self.store.get_object(path)
        self.assertEqual(crypto.decrypt(blob, PASSWORD), b"# Task: A\n")
        self.assertEqual(self.store.get_metadata(path)[HASH_META_KEY], md5_bytes(b"# Task: A\n"))

    def test_upload_skips_when_hash_matches(self):
        """A file already uploaded with the same content is not sent again."""
        self.write_local("brain/a/task.md", b"same")
        self.pipeline.upload_file("a", "brain/a/task.md")
        before = self.store.get_object(object_path("a", "brain/a/task.md"))
        stats = self.pipeline.upload_file("a", "brain/a/task.md")
        self.assertEqual((stats.uploaded, stats.skipped), (0, 1))
        self.assertEqual(self.store.get_object(object_path("a", "brain/a/task.md")), before)

    def test_upload_files_and_delete(self):
        """upload_files sends every path; delete_remote_files removes objects."""
        self.write_local("brain/a/one.md", b"1")
        self.write_local("brain/a/two.md", b"22")
        self.write_local("conversations/a.pb", b"333")
        rels = ["brain/a/one.md", "brain/a/two.md", "conversations/a.pb"]
        stats = self.pipeline.upload_files("a", rels)
        self.assertEqual(stats.uploaded, 3)
        self.assertEqual(len(self.store.list_objects("conversations/a/")), 3)

        stats = self.pipeline.delete_remote_files("a", ["brain/a/two.md"])
        self.assertEqual(stats.deleted, 1)
        self.assertEqual(len(self.store.list_objects("conversations/a/")), 2)


# ── Tests: download ───────────────────────────────────────────────────────────

class TestDownload(TransferCase):

    def _put(self, conv_id, rel, data: bytes, password=PASSWORD):
        self.store.put_object(object_path(conv_id, rel), crypto.encrypt(data, password))

    def test_download_writes_file(self):
        """download_file decrypts to the mapped local path."""
        self._put("a", "conversations/a.pb", b"\x00record")
        stats = self.pipeline.download_file("a", "conversations/a.pb")
        self.assertEqual(stats.downloaded, 1)
        self.assertEqual(self.layout.record_path("a").read_bytes(), b"\x00record")

    def test_missing_object(self):
        """A missing remote object raises ObjectNotFoundError naming the path."""
        with self.assertRaises(ObjectNotFoundError) as cm:
            self.pipeline.download_file("a", "brain/a/task.md")
        self.assertEqual(cm.exception.path, "conversations/a/brain/a/task.md.enc")
        self.assertEqual(cm.exception.conversation_id, "a")

    def test_failed_decrypt_keeps_local_file(self):
        """A blob under another password leaves the existing local file untouched."""
        local = self.write_local("brain/a/task.md", b"keep me")
        self._put("a", "brain/a/task.md", b"remote", password="other password")
        with self.assertRaises(DecryptionError):
            self.pipeline.download_file("a", "brain/a/task.md")
        self.assertEqual(local.read_bytes(), b"keep me")

    def test_download_into_other_id(self):
        """target_id rewrites both tree prefixes to the new conversation."""
        self._put("a", "brain/a/x/plan.md", b"plan")
        self._put("a", "conversations/a.pb", b"rec")
        self.pipeline.download_files("a", ["brain/a/x/plan.md", "conversations/a.pb"], target_id="a-copy")
        self.assertEqual((self.layout.brain_path("a-copy") / "x" / "plan.md").read_bytes(), b"plan")
        self.assertEqual(self.layout.record_path("a-copy").read_bytes(), b"rec")
        self.assertFalse(self.layout.brain_path("a").exists())

    def test_delete_local_prunes_dirs(self):
        """delete_local_files removes files and empty sub-directories."""
        self.write_local("brain/a/task.md", b"t")
        self.write_local("brain/a/deep/er/old.md", b"o")
        stats = self.pipeline.delete_local_files("a", ["brain/a/deep/er/old.md"])
        self.assertEqual(stats.deleted, 1)
        self.assertFalse((self.layout.brain_path("a") / "deep").exists())
        self.assertTrue((self.layout.brain_path("a") / "task.md").exists())


# ── Tests: bounded fan-out ────────────────────────────────────────────────────

class TestRun(TransferCase):

    def test_concurrency_bound(self):
        """No more than `concurrency` units run at once."""
        active = 0
        peak = 0
        guard = threading.Lock()
        release = threading.Event()

        def work(_item):
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            release.wait(0.05)
            with guard:
                active -= 1
            return 1

        results = self.pipeline.run(range(6), work)
        self.assertEqual(sum(results), 6)
        self.assertLessEqual(peak, 2)

    def test_cancelled_before_start(self):
        """A cancelled context starts no work and raises CancellationError."""
        ctx = SyncContext()
        ctx.token.cancel()
        calls = []
        with self.assertRaises(CancellationError):
            self.pipeline.run([1, 2, 3], calls.append, ctx)
        self.assertEqual(calls, [])

    def test_first_error_raised(self):
        """A failing unit surfaces its exception."""
        def work(item):
            if item == 2:
                raise ValueError("boom")
            return item

        with self.assertRaises(ValueError):
            self.pipeline.run([1, 2, 3], work)


# ── Tests: legacy archive ─────────────────────────────────────────────────────

class TestLegacyPull(TransferCase):

    def _put_archive(self, conv_id, members: dict):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            for name, data in members.items():
                zf.writestr(name, data)
        self.store.put_object(legacy_archive_path(conv_id), crypto.encrypt(buf.getvalue(), PASSWORD))

    def test_extracts_and_replaces(self):
        """The archive becomes the whole local conversation."""
        self._put_archive("old", {"brain/old/task.md": b"# Task: Old\n", "conversations/old.pb": b"pb"})
        self.write_local("brain/old/stale.md", b"gone")
        stats = pull_legacy(self.store, PASSWORD, self.layout, "old")
        self.assertEqual(stats.downloaded, 2)
        self.assertEqual(stats.deleted, 1)
        self.assertEqual((self.layout.brain_path("old") / "task.md").read_bytes(), b"# Task: Old\n")
        self.assertFalse((self.layout.brain_path("old") / "stale.md").exists())

    def test_skips_foreign_members(self):
        """Members outside the conversation's trees are never written."""
        self._put_archive("old", {"brain/old/task.md": b"t", "../../evil.sh": b"x", "brain/other/a": b"y"})
        stats = pull_legacy(self.store, PASSWORD, self.layout, "old")
        self.assertEqual(stats.downloaded, 1)
        self.assertFalse(self.layout.brain_path("other").exists())

    def test_missing_archive(self):
        """A manifest entry without its archive raises ObjectNotFoundError."""
        with self.assertRaises(ObjectNotFoundError):
            pull_legacy(self.store, PASSWORD, self.layout, "nothing")


if __name__ == "__main__":
    unittest.main()
