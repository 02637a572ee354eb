"""
Transfer pipeline: per-file encrypt/upload and download/decrypt

Remote objects live at conversations/<id>/<relative path>.enc. Every upload
records {"originalHash": <plaintext md5>} as object metadata so a later push
can tell that an interrupted transfer already landed without decrypting it.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, TypeVar

from ..core import crypto
from ..core.errors import CancellationError, ObjectNotFoundError
from ..core.layout import StorageLayout
from ..core.remote_store import ObjectStore
from ..utils.context import SyncContext, ensure_context
from ..utils.file_utils import atomic_write, md5_bytes
from ..utils.logging import vlog, warn

REMOTE_CONV_PREFIX = "conversations/"
OBJECT_SUFFIX = ".enc"
LEGACY_SUFFIX = ".zip.enc"
HASH_META_KEY = "originalHash"

T = TypeVar("T")
R = TypeVar("R")


def object_path(conv_id: str, rel: str) -> str:
    return f"{REMOTE_CONV_PREFIX}{conv_id}/{rel}{OBJECT_SUFFIX}"


def conversation_prefix(conv_id: str) -> str:
    return f"{REMOTE_CONV_PREFIX}{conv_id}/"


def legacy_archive_path(conv_id: str) -> str:
    return f"{REMOTE_CONV_PREFIX}{conv_id}{LEGACY_SUFFIX}"


@dataclass
class TransferStats:
    uploaded: int = 0
    skipped: int = 0
    downloaded: int = 0
    deleted: int = 0
    bytes: int = 0

    def add(self, other: "TransferStats"):
        self.uploaded += other.uploaded
        self.skipped += other.skipped
        self.downloaded += other.downloaded
        self.deleted += other.deleted
        self.bytes += other.bytes


class TransferPipeline:
    """Moves a conversation's files between the local layout and the store."""

    def __init__(self, store: ObjectStore, password: str, layout: StorageLayout,
                 concurrency: int = 3, compress: bool = True):
        self.store = store
        self.layout = layout
        self.concurrency = max(1, int(concurrency))
        self._password = password
        self._compress = compress

    # ── bounded fan-out ────────────────────────────────────────────────────

    def run(self, items: Iterable[T], work: Callable[[T], R],
            ctx: Optional[SyncContext] = None) -> list[R]:
        """Apply work to every item with at most `concurrency` in flight.

        Cancellation is checked right before each unit starts. The first
        failure is raised once every started unit has finished; units not yet
        started are abandoned.
        """
        ctx = ensure_context(ctx)
        items = list(items)
        if not items:
            return []

        def unit(item: T) -> R:
            ctx.check()
            return work(item)

        results: list[R] = []
        first_error: Optional[Exception] = None
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(items)),
                                thread_name_prefix="transfer") as pool:
            futures = {pool.submit(unit, item): item for item in items}
            for fut in as_completed(futures):
                if fut.cancelled():
                    continue
                try:
                    results.append(fut.result())
                except Exception as exc:
                    if first_error is None or isinstance(first_error, CancellationError):
                        first_error = exc
                    for pending in futures:
                        pending.cancel()
        if first_error is not None:
            raise first_error
        return results

    # ── upload ──────────────────────────────────────────────────────────────

    def upload_file(self, conv_id: str, rel: str, expected_hash: Optional[str] = None) -> TransferStats:
        """Encrypt and upload one file unless the store already holds it.

        expected_hash is the hash the caller planned with; when the file
        changed since, the fresh hash is recorded instead.
        """
        path = object_path(conv_id, rel)
        data = self.layout.full_path(conv_id, rel).read_bytes()
        digest = md5_bytes(data)
        if expected_hash is not None and digest != expected_hash:
            vlog(f"  [push] {rel} changed while syncing")

        meta = self.store.get_metadata(path)
        if meta and meta.get(HASH_META_KEY) == digest:
            vlog(f"  [push] {rel} already uploaded, skipping")
            return TransferStats(skipped=1)

        blob = crypto.encrypt(data, self._password, self._compress)
        self.store.put_object(path, blob, {HASH_META_KEY: digest})
        vlog(f"  [push ✓] {rel} ({len(data)} bytes)")
        return TransferStats(uploaded=1, bytes=len(blob))

    def upload_files(self, conv_id: str, rels: list[str], hashes: Optional[dict] = None,
                     ctx: Optional[SyncContext] = None) -> TransferStats:
        hashes = hashes or {}

        def send(rel: str) -> TransferStats:
            return self.upload_file(conv_id, rel, _hash_of(hashes.get(rel)))

        stats = TransferStats()
        for part in self.run(rels, send, ctx):
            stats.add(part)
        return stats

    def delete_remote_files(self, conv_id: str, rels: list[str],
                            ctx: Optional[SyncContext] = None) -> TransferStats:
        def remove(rel: str) -> TransferStats:
            self.store.delete_object(object_path(conv_id, rel))
            vlog(f"  [push] deleted remote {rel}")
            return TransferStats(deleted=1)

        stats = TransferStats()
        for part in self.run(rels, remove, ctx):
            stats.add(part)
        return stats

    # ── download ────────────────────────────────────────────────────────────

    def fetch_plaintext(self, conv_id: str, rel: str) -> bytes:
        """Download and decrypt one file into memory."""
        path = object_path(conv_id, rel)
        blob = self.store.get_object(path)
        if blob is None:
            raise ObjectNotFoundError(path, conv_id)
        return crypto.decrypt(blob, self._password)

    def download_file(self, conv_id: str, rel: str, target_id: Optional[str] = None,
                      expected_hash: Optional[str] = None) -> TransferStats:
        """Download one file and replace the local copy atomically.

        A failed download or decryption leaves the existing local file
        untouched. target_id writes the file under another conversation id.
        """
        data = self.fetch_plaintext(conv_id, rel)
        if expected_hash is not None and md5_bytes(data) != expected_hash:
            warn(f"[pull] {conv_id}/{rel}: content hash differs from the manifest")
        if target_id is not None and target_id != conv_id:
            dest = self.layout.full_path(target_id, self.layout.rebase(rel, conv_id, target_id))
        else:
            dest = self.layout.full_path(conv_id, rel)
        atomic_write(dest, data)
        vlog(f"  [pull ✓] {rel} ({len(data)} bytes)")
        return TransferStats(downloaded=1, bytes=len(data))

    def download_files(self, conv_id: str, rels: list[str], hashes: Optional[dict] = None,
                       ctx: Optional[SyncContext] = None,
                       target_id: Optional[str] = None) -> TransferStats:
        hashes = hashes or {}

        def fetch(rel: str) -> TransferStats:
            return self.download_file(conv_id, rel, target_id, _hash_of(hashes.get(rel)))

        stats = TransferStats()
        for part in self.run(rels, fetch, ctx):
            stats.add(part)
        return stats

    def delete_local_files(self, conv_id: str, rels: list[str]) -> TransferStats:
        """Remove local files the remote no longer has, pruning empty dirs."""
        stats = TransferStats()
        for rel in rels:
            path = self.layout.full_path(conv_id, rel)
            if path.exists():
                path.unlink()
                stats.deleted += 1
                vlog(f"  [pull] deleted local {rel}")
            _prune_empty_dirs(path.parent, self.layout.brain_path(conv_id))
        return stats


def _hash_of(info) -> Optional[str]:
    if info is None:
        return None
    return getattr(info, "hash", info)


def _prune_empty_dirs(start: Path, stop: Path):
    current = start
    while current != stop and stop in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
