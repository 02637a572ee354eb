"""
Content hasher with an mtime-keyed, size-bounded cache
"""
import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .layout import StorageLayout
from .manifest import FileHashInfo, FileHashes, iso_utc
from ..utils.file_utils import _md5_local, md5_bytes
from ..utils.logging import vlog

OVERALL_SEPARATOR = "|"


@dataclass
class FileHash:
    hash: str
    size: int
    mtime: float


@dataclass
class ConversationHash:
    overall_hash: str
    file_hashes: FileHashes
    max_mtime: float

    @property
    def size(self) -> int:
        return sum(info.size for info in self.file_hashes.values())


class HashCache:
    """LRU map of path -> (mtime_ns, size, hash), capped at max_entries.

    An entry is only reused while both the modification time and the size
    match the file on disk.
    """

    def __init__(self, max_entries: int = 50_000):
        self.max_entries = max(1, int(max_entries))
        self._entries: "OrderedDict[str, tuple[int, int, str]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, path: str, mtime_ns: int, size: int = -1) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(path)
            if entry is None or entry[0] != mtime_ns or entry[1] != size:
                self.misses += 1
                return None
            self._entries.move_to_end(path)
            self.hits += 1
            return entry[2]

    def put(self, path: str, mtime_ns: int, digest: str, size: int = -1):
        with self._lock:
            self._entries[path] = (mtime_ns, size, digest)
            self._entries.move_to_end(path)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, path: str):
        with self._lock:
            self._entries.pop(path, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)


def overall_hash(file_hashes: dict) -> str:
    """Digest over the sorted "path:hash" pairs; "" for an empty set.

    Accepts either FileHashInfo values or plain hash strings.
    """
    if not file_hashes:
        return ""
    parts = []
    for rel in sorted(file_hashes):
        info = file_hashes[rel]
        digest = info.hash if isinstance(info, FileHashInfo) else str(info)
        parts.append(f"{rel}:{digest}")
    return md5_bytes(OVERALL_SEPARATOR.join(parts).encode("utf-8"))


class ContentHasher:
    def __init__(self, layout: StorageLayout, cache: Optional[HashCache] = None):
        self.layout = layout
        self.cache = cache if cache is not None else HashCache()

    def hash_file(self, path: Path) -> FileHash:
        """Hash path, reusing the cached digest while its mtime is unchanged."""
        st = path.stat()
        key = str(path)
        digest = self.cache.get(key, st.st_mtime_ns, st.st_size)
        if digest is None:
            digest = _md5_local(path)
            self.cache.put(key, st.st_mtime_ns, digest, st.st_size)
        return FileHash(hash=digest, size=st.st_size, mtime=st.st_mtime)

    def hash_conversation(self, conv_id: str) -> ConversationHash:
        file_hashes: FileHashes = {}
        max_mtime = 0.0
        for rel, full in sorted(self.layout.conversation_files(conv_id)):
            try:
                fh = self.hash_file(full)
            except FileNotFoundError:
                # Removed between listing and hashing
                vlog(f"  [hash] vanished: {rel}")
                continue
            file_hashes[rel] = FileHashInfo(hash=fh.hash, size=fh.size, last_modified=iso_utc(fh.mtime))
            max_mtime = max(max_mtime, fh.mtime)
        return ConversationHash(
            overall_hash=overall_hash(file_hashes),
            file_hashes=file_hashes,
            max_mtime=max_mtime,
        )
