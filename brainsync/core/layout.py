"""
Local storage layout

A conversation spans two trees under the storage root:
  brain/<id>/...          arbitrary file tree (task.md holds the title)
  conversations/<id>.pb   one binary record

Relative paths used in manifests keep those two prefixes, e.g.
"brain/<id>/task.md" and "conversations/<id>.pb".
"""
import os
from pathlib import Path

from ..utils.ignore_patterns import is_ignored

BRAIN_PREFIX = "brain/"
RECORD_PREFIX = "conversations/"
RECORD_SUFFIX = ".pb"


class StorageLayout:
    def __init__(self, root: Path):
        self.root = Path(root)
        self.brain_dir = self.root / "brain"
        self.conv_dir = self.root / "conversations"

    def brain_path(self, conv_id: str) -> Path:
        return self.brain_dir / conv_id

    def record_path(self, conv_id: str) -> Path:
        return self.conv_dir / f"{conv_id}{RECORD_SUFFIX}"

    def record_rel(self, conv_id: str) -> str:
        return f"{RECORD_PREFIX}{conv_id}{RECORD_SUFFIX}"

    def list_ids(self) -> list[str]:
        """Ids of every conversation with a brain directory or a record file."""
        ids = set()
        if self.brain_dir.is_dir():
            for entry in os.scandir(self.brain_dir):
                if entry.is_dir():
                    ids.add(entry.name)
        if self.conv_dir.is_dir():
            for entry in os.scandir(self.conv_dir):
                if entry.is_file() and entry.name.endswith(RECORD_SUFFIX):
                    ids.add(entry.name[:-len(RECORD_SUFFIX)])
        return sorted(ids)

    def conversation_files(self, conv_id: str) -> list[tuple[str, Path]]:
        """Every (relative path, absolute path) pair belonging to conv_id.

        Excluded names (OS metadata, temp/backup files) are skipped. The
        order is unspecified; callers sort.
        """
        files: list[tuple[str, Path]] = []
        record = self.record_path(conv_id)
        if record.is_file():
            files.append((self.record_rel(conv_id), record))

        brain = self.brain_path(conv_id)
        if brain.is_dir():
            for dirpath, _dirs, names in os.walk(brain):
                for name in names:
                    full = Path(dirpath) / name
                    rel = f"{BRAIN_PREFIX}{conv_id}/" + full.relative_to(brain).as_posix()
                    if is_ignored(rel):
                        continue
                    files.append((rel, full))
        return files

    def full_path(self, conv_id: str, rel: str) -> Path:
        """Map a manifest-relative path back to the local filesystem.

        Raises ValueError for a path outside the conversation's two trees,
        which also rejects "../" escapes in remote-supplied paths.
        """
        parts = rel.split("/")
        if any(p in ("", ".", "..") for p in parts) or "\\" in rel:
            raise ValueError(f"Unsafe relative path: {rel!r}")
        if rel == self.record_rel(conv_id):
            return self.record_path(conv_id)
        brain_prefix = f"{BRAIN_PREFIX}{conv_id}/"
        if rel.startswith(brain_prefix) and len(rel) > len(brain_prefix):
            return self.brain_path(conv_id).joinpath(*parts[2:])
        raise ValueError(f"Unknown path format for {conv_id}: {rel!r}")

    def rebase(self, rel: str, old_id: str, new_id: str) -> str:
        """Rewrite a relative path of old_id so it belongs to new_id."""
        if rel == self.record_rel(old_id):
            return self.record_rel(new_id)
        prefix = f"{BRAIN_PREFIX}{old_id}/"
        if rel.startswith(prefix):
            return f"{BRAIN_PREFIX}{new_id}/" + rel[len(prefix):]
        raise ValueError(f"Unknown path format for {old_id}: {rel!r}")
