"""
Local conversation discovery
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from ..core.hasher import ContentHasher, ConversationHash
from ..core.layout import StorageLayout
from ..core.manifest import iso_utc, now_iso
from ..utils.logging import vlog

TITLE_FILE = "task.md"
_TITLE_RE = re.compile(r"^#\s*Task:?\s*(.*)$", re.IGNORECASE | re.MULTILINE)


@dataclass
class LocalConversation:
    id: str
    title: str
    last_modified: str
    hashes: ConversationHash

    @property
    def overall_hash(self) -> str:
        return self.hashes.overall_hash

    @property
    def file_hashes(self):
        return self.hashes.file_hashes

    @property
    def size(self) -> int:
        return self.hashes.size


def extract_title(layout: StorageLayout, conv_id: str) -> str:
    """First "# Task: ..." heading of brain/<id>/task.md, else the id."""
    task = layout.brain_path(conv_id) / TITLE_FILE
    try:
        text = task.read_text("utf-8", errors="replace")
    except OSError:
        return conv_id
    match = _TITLE_RE.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return conv_id


def scan_conversation(layout: StorageLayout, hasher: ContentHasher,
                      conv_id: str) -> Optional[LocalConversation]:
    """Hash one conversation; None when it has no files locally."""
    hashes = hasher.hash_conversation(conv_id)
    if not hashes.file_hashes:
        return None
    return LocalConversation(
        id=conv_id,
        title=extract_title(layout, conv_id),
        last_modified=iso_utc(hashes.max_mtime) if hashes.max_mtime > 0 else now_iso(),
        hashes=hashes,
    )


def scan_local(layout: StorageLayout, hasher: ContentHasher,
               ids: Optional[Iterable[str]] = None) -> dict[str, LocalConversation]:
    """Map id -> LocalConversation for every local conversation with files.

    ids restricts the scan; ids without local files are left out.
    """
    wanted = layout.list_ids() if ids is None else sorted(set(ids))
    found: dict[str, LocalConversation] = {}
    for conv_id in wanted:
        conv = scan_conversation(layout, hasher, conv_id)
        if conv is None:
            vlog(f"  [scan] {conv_id}: no local files")
            continue
        found[conv_id] = conv
    vlog(f"[scan] {len(found)} local conversation(s), cache hits={hasher.cache.hits}")
    return found
