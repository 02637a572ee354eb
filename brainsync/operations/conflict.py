"""
Conflict resolution and conflict-copy management

A conflict is never resolved by the sync pass itself. The caller picks:
  keepLocal   push the local copy over the remote one
  keepRemote  pull the remote copy over the local one
  keepBoth    download the remote copy as <id>-conflict-<epoch ms>, then
              push the local copy under the original id

Conflict copies stay ordinary local conversations until the user either
drops them (keep_original) or promotes them over the original
(keep_conflict).
"""
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..core.layout import StorageLayout
from ..utils.context import SyncContext, ensure_context
from ..utils.file_utils import atomic_write
from ..utils.logging import log, vlog
from .scanner import extract_title

KEEP_LOCAL = "keepLocal"
KEEP_REMOTE = "keepRemote"
KEEP_BOTH = "keepBoth"

_ALIASES = {
    "keeplocal": KEEP_LOCAL, "local": KEEP_LOCAL,
    "keepremote": KEEP_REMOTE, "remote": KEEP_REMOTE,
    "keepboth": KEEP_BOTH, "both": KEEP_BOTH,
}

CONFLICT_MARKER = "-conflict-"
_COPY_RE = re.compile(r"^(?P<original>.+)-conflict-(?P<stamp>\d+)$")


def normalize_resolution(resolution: str) -> str:
    key = resolution.replace("-", "").replace("_", "").lower()
    try:
        return _ALIASES[key]
    except KeyError:
        raise ValueError(
            f"Unknown resolution {resolution!r} (expected keepLocal, keepRemote or keepBoth)"
        ) from None


def conflict_copy_id(conv_id: str, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{conv_id}{CONFLICT_MARKER}{stamp}"


def resolve_conflict(manager, conv_id: str, resolution: str,
                     ctx: Optional[SyncContext] = None) -> Optional[str]:
    """Apply resolution to conv_id. Returns the new copy id for keepBoth."""
    ctx = ensure_context(ctx)
    resolution = normalize_resolution(resolution)
    log(f"[conflict] {conv_id}: {resolution}")

    if resolution == KEEP_LOCAL:
        manager.push_conversation(conv_id, ctx)
        return None
    if resolution == KEEP_REMOTE:
        manager.pull_conversation(conv_id, ctx)
        return None

    copy_id = conflict_copy_id(conv_id)
    manager.pull_as_copy(conv_id, copy_id, ctx)
    log(f"[conflict] remote version of {conv_id} saved locally as {copy_id}")
    manager.push_conversation(conv_id, ctx)
    return copy_id


# ══════════════════════════════════════════════════════════════════════════════
#  CONFLICT COPIES
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class ConflictCopy:
    copy_id: str
    original_id: str
    created_at: str
    title: str


def parse_copy_id(copy_id: str) -> Optional[tuple[str, int]]:
    """(original id, epoch ms) for a conflict-copy id, else None."""
    m = _COPY_RE.match(copy_id)
    if not m:
        return None
    return m.group("original"), int(m.group("stamp"))


def list_conflict_copies(layout: StorageLayout) -> list[ConflictCopy]:
    """Conflict copies whose original conversation still exists locally."""
    ids = layout.list_ids()
    present = set(ids)
    copies = []
    for conv_id in ids:
        parsed = parse_copy_id(conv_id)
        if parsed is None:
            continue
        original, stamp = parsed
        if original not in present:
            continue
        created = datetime.fromtimestamp(stamp / 1000, tz=timezone.utc)
        copies.append(ConflictCopy(
            copy_id=conv_id,
            original_id=original,
            created_at=created.isoformat(timespec="seconds").replace("+00:00", "Z"),
            title=extract_title(layout, conv_id),
        ))
    return copies


def _require_copy(copy_id: str) -> str:
    parsed = parse_copy_id(copy_id)
    if parsed is None:
        raise ValueError(f"{copy_id} is not a conflict copy")
    return parsed[0]


def remove_local(layout: StorageLayout, conv_id: str) -> int:
    """Delete every local file of conv_id. Returns the number of files removed."""
    files = layout.conversation_files(conv_id)
    for _rel, full in files:
        full.unlink(missing_ok=True)
    brain = layout.brain_path(conv_id)
    if brain.is_dir():
        shutil.rmtree(brain)
    return len(files)


def keep_original(manager, copy_id: str, ctx: Optional[SyncContext] = None):
    """Discard a conflict copy, locally and remotely."""
    ensure_context(ctx).check()
    original = _require_copy(copy_id)
    manager.delete_conversation(copy_id, local=True)
    log(f"[conflict] kept {original}, discarded {copy_id}")


def keep_conflict(manager, copy_id: str, ctx: Optional[SyncContext] = None):
    """Replace the original conversation with the conflict copy and push it."""
    ctx = ensure_context(ctx)
    ctx.check()
    original = _require_copy(copy_id)
    layout: StorageLayout = manager.layout

    files = layout.conversation_files(copy_id)
    if not files:
        raise ValueError(f"Conflict copy {copy_id} has no local files")
    contents = {layout.rebase(rel, copy_id, original): full.read_bytes() for rel, full in files}

    for rel, data in sorted(contents.items()):
        atomic_write(layout.full_path(original, rel), data)
        vlog(f"  [conflict] {copy_id} → {rel}")
    for rel, full in layout.conversation_files(original):
        if rel not in contents:
            full.unlink(missing_ok=True)

    manager.delete_conversation(copy_id, local=True)
    manager.push_conversation(original, ctx)
    log(f"[conflict] {original} replaced by {copy_id}")
