"""
Tests for the conversation classifier and the file-level diff.
"""
import unittest

from brainsync.core.hasher import ConversationHash
from brainsync.core.manifest import FileHashInfo, PerFile, SyncedConversation
from brainsync.operations.classify import Action, classify, classify_conversation, diff_files
from brainsync.operations.scanner import LocalConversation
from brainsync.state.machine_state import ConversationState


class TestClassify(unittest.TestCase):
    """The three-way decision on (local, remote, base) overall hashes."""

    def test_local_only_pushes(self):
        """Only a local copy: push, whatever the base says."""
        self.assertIs(classify("L", None, None)[0], Action.PUSH)
        self.assertIs(classify("L", None, "B")[0], Action.PUSH)

    def test_remote_only_pulls(self):
        """Only a remote copy: pull."""
        self.assertIs(classify(None, "R", None)[0], Action.PULL)
        self.assertIs(classify(None, "R", "R")[0], Action.PULL)

    def test_equal_hashes_skip(self):
        """Equal hashes skip even without history."""
        self.assertEqual(classify("X", "X", None), (Action.SKIP, "in sync"))
        self.assertIs(classify("X", "X", "old")[0], Action.SKIP)

    def test_no_history_conflicts(self):
        """Different content and no base is a conflict."""
        self.assertIs(classify("L", "R", None)[0], Action.CONFLICT)

    def test_changed_locally(self):
        self.assertEqual(classify("L2", "B", "B"), (Action.PUSH, "changed locally"))

    def test_changed_remotely(self):
        self.assertEqual(classify("B", "R2", "B"), (Action.PULL, "changed remotely"))

    def test_changed_on_both_sides(self):
        """Both diverged from the base: conflict, never a silent overwrite."""
        self.assertIs(classify("L2", "R2", "B")[0], Action.CONFLICT)

    def test_absent_everywhere(self):
        self.assertIs(classify(None, None, "B")[0], Action.SKIP)


def _local(conv_id, overall, title):
    hashes = ConversationHash(overall_hash=overall, file_hashes={}, max_mtime=0.0)
    return LocalConversation(id=conv_id, title=title, last_modified="", hashes=hashes)


def _remote(conv_id, overall, title):
    return SyncedConversation(id=conv_id, title=title, last_modified="", overall_hash=overall,
                              modified_by="m", storage=PerFile({}))


class TestClassifyConversation(unittest.TestCase):

    def test_title_only_change(self):
        """Same hashes with a different title asks for a title update."""
        d = classify_conversation("a", _local("a", "X", "New"), _remote("a", "X", "Old"), None)
        self.assertIs(d.action, Action.SKIP)
        self.assertTrue(d.title_update)

    def test_uses_base_hash(self):
        """The base is taken from the machine's ConversationState."""
        base = ConversationState(id="a", overall_hash="B")
        d = classify_conversation("a", _local("a", "B", "t"), _remote("a", "R", "t"), base)
        self.assertIs(d.action, Action.PULL)
        self.assertFalse(d.title_update)


class TestDiffFiles(unittest.TestCase):

    def test_plan(self):
        """Changed and new files transfer; files the source lacks are deleted."""
        source = {"a": "1", "b": "2", "c": "3"}
        target = {"a": "1", "b": "X", "d": "4"}
        plan = diff_files(source, target)
        self.assertEqual(plan.transfer, ["b", "c"])
        self.assertEqual(plan.delete, ["d"])
        self.assertEqual(plan.unchanged, ["a"])
        self.assertFalse(plan.empty)

    def test_accepts_file_hash_info(self):
        """FileHashInfo values compare by hash only."""
        source = {"a": FileHashInfo("1", 10, "2024-01-01T00:00:00.000Z")}
        target = {"a": FileHashInfo("1", 10, "2025-01-01T00:00:00.000Z")}
        self.assertTrue(diff_files(source, target).empty)

    def test_empty_target(self):
        """Against an empty target everything transfers."""
        plan = diff_files({"a": "1", "b": "2"}, {})
        self.assertEqual(plan.transfer, ["a", "b"])
        self.assertEqual(plan.delete, [])


if __name__ == "__main__":
    unittest.main()
