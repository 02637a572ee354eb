"""
Tests for the storage layout, content hasher and local scanner.
"""
import os
import tempfile
import unittest
from pathlib import Path

from brainsync.core.hasher import ContentHasher, HashCache, overall_hash
from brainsync.core.layout import StorageLayout
from brainsync.core.manifest import FileHashInfo
from brainsync.operations.scanner import extract_title, scan_conversation, scan_local
from brainsync.utils.file_utils import md5_bytes


def write(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class LayoutCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.layout = StorageLayout(self.root)

    def tearDown(self):
        self.tmpdir.cleanup()


# ── Tests: layout ─────────────────────────────────────────────────────────────

class TestStorageLayout(LayoutCase):

    def test_list_ids_merges_both_trees(self):
        """Ids come from brain/ directories and conversations/*.pb records."""
        write(self.root / "brain" / "a" / "task.md", b"x")
        write(self.root / "conversations" / "b.pb", b"y")
        write(self.root / "conversations" / "notes.txt", b"z")
        self.assertEqual(self.layout.list_ids(), ["a", "b"])

    def test_conversation_files(self):
        """Relative paths keep their brain/ and conversations/ prefixes; junk is skipped."""
        write(self.root / "brain" / "a" / "task.md", b"x")
        write(self.root / "brain" / "a" / "sub" / "plan.md", b"y")
        write(self.root / "brain" / "a" / ".DS_Store", b"junk")
        write(self.root / "conversations" / "a.pb", b"z")
        rels = sorted(rel for rel, _ in self.layout.conversation_files("a"))
        self.assertEqual(rels, ["brain/a/sub/plan.md", "brain/a/task.md", "conversations/a.pb"])

    def test_full_path_rejects_escapes(self):
        """full_path refuses '..' segments and paths of another conversation."""
        with self.assertRaises(ValueError):
            self.layout.full_path("a", "brain/a/../../etc/passwd")
        with self.assertRaises(ValueError):
            self.layout.full_path("a", "brain/b/task.md")
        self.assertEqual(self.layout.full_path("a", "conversations/a.pb"),
                         self.root / "conversations" / "a.pb")

    def test_rebase(self):
        """rebase moves both tree prefixes to the new id."""
        self.assertEqual(self.layout.rebase("brain/a/x/y.md", "a", "c"), "brain/c/x/y.md")
        self.assertEqual(self.layout.rebase("conversations/a.pb", "a", "c"), "conversations/c.pb")


# ── Tests: hashing ────────────────────────────────────────────────────────────

class TestContentHasher(LayoutCase):

    def test_overall_hash_is_order_independent(self):
        """overall_hash depends only on the set of (path, hash) pairs."""
        a = {"b.md": "2", "a.md": "1"}
        b = {"a.md": "1", "b.md": "2"}
        self.assertEqual(overall_hash(a), overall_hash(b))
        self.assertEqual(overall_hash({"a.md": FileHashInfo("1", 1, "")}), overall_hash({"a.md": "1"}))
        self.assertNotEqual(overall_hash(a), overall_hash({"a.md": "1", "b.md": "3"}))

    def test_empty_conversation_hash(self):
        """A conversation without files hashes to the empty string."""
        hasher = ContentHasher(self.layout)
        self.assertEqual(hasher.hash_conversation("ghost").overall_hash, "")
        self.assertEqual(overall_hash({}), "")

    def test_hash_conversation(self):
        """Per-file hashes are plain md5 digests of the content."""
        write(self.root / "brain" / "a" / "task.md", b"# Task: A\n")
        write(self.root / "conversations" / "a.pb", b"\x01\x02")
        result = ContentHasher(self.layout).hash_conversation("a")
        self.assertEqual(result.file_hashes["brain/a/task.md"].hash, md5_bytes(b"# Task: A\n"))
        self.assertEqual(result.file_hashes["conversations/a.pb"].size, 2)
        self.assertEqual(result.size, 12)
        self.assertEqual(result.overall_hash, overall_hash(result.file_hashes))

    def test_cache_reused_until_mtime_changes(self):
        """Unchanged files hit the cache; a modified file is re-hashed."""
        path = self.root / "brain" / "a" / "task.md"
        write(path, b"one")
        hasher = ContentHasher(self.layout, HashCache())
        first = hasher.hash_file(path)
        second = hasher.hash_file(path)
        self.assertEqual(first.hash, second.hash)
        self.assertEqual(hasher.cache.hits, 1)

        path.write_bytes(b"two, longer")
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))
        third = hasher.hash_file(path)
        self.assertEqual(third.hash, md5_bytes(b"two, longer"))

    def test_cache_is_bounded(self):
        """The cache evicts the least recently used entries beyond its limit."""
        cache = HashCache(max_entries=2)
        cache.put("a", 1, "ha")
        cache.put("b", 1, "hb")
        cache.get("a", 1)
        cache.put("c", 1, "hc")
        self.assertEqual(len(cache), 2)
        self.assertIsNone(cache.get("b", 1))
        self.assertEqual(cache.get("a", 1), "ha")


# ── Tests: scanner ────────────────────────────────────────────────────────────

class TestScanner(LayoutCase):

    def test_title_from_task_heading(self):
        """The title comes from the '# Task:' heading of task.md."""
        write(self.root / "brain" / "a" / "task.md", b"intro\n# Task: Fix the parser\nmore\n")
        self.assertEqual(extract_title(self.layout, "a"), "Fix the parser")

    def test_title_falls_back_to_id(self):
        """Without task.md (or a heading) the id is the title."""
        write(self.root / "brain" / "a" / "notes.md", b"nothing")
        self.assertEqual(extract_title(self.layout, "a"), "a")

    def test_scan_skips_empty_conversations(self):
        """An id with no files is treated as absent."""
        (self.root / "brain" / "empty").mkdir(parents=True)
        write(self.root / "brain" / "full" / "task.md", b"# Task: Full\n")
        hasher = ContentHasher(self.layout)
        self.assertIsNone(scan_conversation(self.layout, hasher, "empty"))
        found = scan_local(self.layout, hasher)
        self.assertEqual(list(found), ["full"])
        self.assertEqual(found["full"].title, "Full")
        self.assertTrue(found["full"].last_modified.endswith("Z"))


if __name__ == "__main__":
    unittest.main()
