"""
Legacy whole-archive format (read/pull only)

Older clients stored a conversation as one encrypted zip at
conversations/<id>.zip.enc holding brain/<id>/... and conversations/<id>.pb.
"""
import io
import zipfile
from typing import Optional

from ..core import crypto
from ..core.errors import FormatError, ObjectNotFoundError
from ..core.layout import StorageLayout
from ..core.remote_store import ObjectStore
from ..utils.context import SyncContext, ensure_context
from ..utils.file_utils import atomic_write
from ..utils.logging import log, vlog, warn
from .transfer import TransferStats, legacy_archive_path


def read_archive(store: ObjectStore, password: str, conv_id: str) -> dict[str, bytes]:
    """Download, decrypt and unpack the archive into {relative path: bytes}."""
    path = legacy_archive_path(conv_id)
    blob = store.get_object(path)
    if blob is None:
        raise ObjectNotFoundError(path, conv_id)
    raw = crypto.decrypt(blob, password)
    try:
        with zipfile.ZipFile(io.BytesIO(raw)) as zf:
            return {
                info.filename: zf.read(info)
                for info in zf.infolist()
                if not info.is_dir()
            }
    except zipfile.BadZipFile as exc:
        raise FormatError(f"Legacy archive for {conv_id} is not a zip: {exc}") from exc


def pull_legacy(store: ObjectStore, password: str, layout: StorageLayout, conv_id: str,
                target_id: Optional[str] = None, ctx: Optional[SyncContext] = None) -> TransferStats:
    """Replace the local copy of conv_id (or target_id) with the archive content.

    Members outside the conversation's two trees are skipped, so a crafted
    archive cannot write elsewhere on disk.
    """
    ctx = ensure_context(ctx)
    ctx.check()
    target_id = target_id or conv_id
    ctx.report(f"Downloading {conv_id} (legacy archive) …")
    members = read_archive(store, password, conv_id)

    written: set[str] = set()
    stats = TransferStats()
    for name, data in sorted(members.items()):
        ctx.check()
        try:
            rel = layout.rebase(name, conv_id, target_id) if target_id != conv_id else name
            dest = layout.full_path(target_id, rel)
        except ValueError:
            warn(f"[pull] {conv_id}: skipping unexpected archive member {name!r}")
            continue
        atomic_write(dest, data)
        written.add(rel)
        stats.downloaded += 1
        stats.bytes += len(data)
        vlog(f"  [pull ✓] {rel}")

    # The archive is the whole conversation: drop local files it lacks
    for rel, full in layout.conversation_files(target_id):
        if rel not in written:
            full.unlink(missing_ok=True)
            stats.deleted += 1
            vlog(f"  [pull] deleted local {rel}")

    log(f"[pull] {target_id}: extracted {stats.downloaded} file(s) from legacy archive")
    return stats
