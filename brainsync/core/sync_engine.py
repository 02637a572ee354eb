"""
Sync engine - orchestration of a full pass and single-conversation push/pull

One pass:
  Idle → AcquiringLock → LoadingManifest → Classifying → Transferring
       → UpdatingState → ReleasingLock → Idle

Lock and manifest failures abort the pass; anything that goes wrong with a
single conversation is collected in SyncResult.errors and the pass carries
on with the others. The distributed lock is released on every exit path.
"""
import threading
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from .. import config as _cfg
from .errors import (
    CancellationError, DecryptionError, LockBusyError, ManifestUnavailableError,
    NotConfiguredError, ObjectNotFoundError, SyncError, SyncInProgressError,
)
from .hasher import ContentHasher, HashCache
from .layout import StorageLayout
from .lock import DistributedLock
from .manifest import (
    LegacyArchive, Machine, Manifest, ManifestStore, PerFile, SyncedConversation,
    FileHashes, MANIFEST_PATH, decode_manifest, now_iso,
)
from .remote_store import ObjectStore, create_store
from ..operations import conflict as _conflict
from ..operations import delete as _delete
from ..operations.classify import Action, Decision, classify_conversation, diff_files
from ..operations.legacy import pull_legacy
from ..operations.scanner import LocalConversation, scan_conversation, scan_local
from ..operations.transfer import TransferPipeline, TransferStats, legacy_archive_path
from ..state.machine_state import MachineState, MachineStateStore
from ..state.state_manager import LocalState, default_state, load_state, save_state
from ..utils.context import SyncContext, ensure_context
from ..utils.logging import is_verbose, log, vlog, warn


class SyncPhase(str, Enum):
    IDLE = "idle"
    ACQUIRING_LOCK = "acquiring_lock"
    LOADING_MANIFEST = "loading_manifest"
    CLASSIFYING = "classifying"
    TRANSFERRING = "transferring"
    UPDATING_STATE = "updating_state"
    RELEASING_LOCK = "releasing_lock"
    FAILED = "failed"


@dataclass
class SyncConflict:
    conversation_id: str
    reason: str
    local_title: str = ""
    remote_title: str = ""
    local_modified: str = ""
    remote_modified: str = ""
    remote_modified_by: str = ""


@dataclass
class SyncResult:
    success: bool = True
    pushed: list[str] = field(default_factory=list)
    pulled: list[str] = field(default_factory=list)
    conflicts: list[SyncConflict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    # Conversations whose manifest entry points at missing remote objects
    missing: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    title_updates: list[str] = field(default_factory=list)
    stats: TransferStats = field(default_factory=TransferStats)
    # Error that aborted the whole pass, if any
    fatal: Optional[SyncError] = None


@dataclass
class ConversationStatus:
    id: str
    title: str
    status: str  # "local only" | "remote only" | "synced" | "modified"
    size: int = 0
    modified_by: str = ""
    modified_by_name: str = ""
    created_by_name: str = ""
    last_modified: str = ""


@dataclass
class SyncStatistics:
    machine_id: str
    machine_name: str
    last_sync: Optional[str]
    local_count: int
    remote_count: int
    machines: list[Machine]
    conversations: list[ConversationStatus]
    quota: Optional[tuple[int, int]] = None


@dataclass
class _Outcome:
    conv_id: str
    action: Action
    stats: TransferStats
    # (overall_hash, file_hashes) both sides agree on after the action
    base: Optional[tuple[str, FileHashes]] = None
    title_updated: bool = False


def _same_files(a: FileHashes, b: FileHashes) -> bool:
    return a.keys() == b.keys() and all(a[k].hash == b[k].hash for k in a)


def _chunks(items: list, size: int) -> Iterable[list]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class SyncManager:
    """Drives sync passes for one machine against one remote sync folder."""

    def __init__(self, password: str,
                 store: Optional[ObjectStore] = None,
                 layout: Optional[StorageLayout] = None,
                 local_state: Optional[LocalState] = None,
                 state_path: Optional[Path] = None):
        if not password:
            raise NotConfiguredError("Encryption password not set")
        self.store = store if store is not None else create_store()
        self.layout = layout if layout is not None else StorageLayout(_cfg.STORAGE_ROOT)
        self.state_path = state_path
        self.state = local_state if local_state is not None else load_state(state_path)
        if self.state is not None and _cfg.MACHINE_NAME:
            self.state.machine_name = _cfg.MACHINE_NAME

        self.cache = HashCache(_cfg.HASH_CACHE_SIZE)
        self.hasher = ContentHasher(self.layout, self.cache)
        self.lock = DistributedLock(self.store, _cfg.LOCK_TTL)
        self.manifests = ManifestStore(self.store, password, _cfg.COMPRESS)
        self.machine_states = MachineStateStore(self.store, password, _cfg.COMPRESS)
        self.pipeline = TransferPipeline(self.store, password, self.layout,
                                         _cfg.FILE_CONCURRENCY, _cfg.COMPRESS)
        self.phase = SyncPhase.IDLE
        self._password = password
        # Re-entrant for the owning thread so resolve → push nests
        self._busy = threading.RLock()

    # ── lifecycle ──────────────────────────────────────────────────────────

    def is_ready(self) -> bool:
        return self.state is not None

    @property
    def is_syncing(self) -> bool:
        return self.phase not in (SyncPhase.IDLE, SyncPhase.FAILED)

    @property
    def machine_id(self) -> str:
        return self._require_state().machine_id

    def _require_state(self) -> LocalState:
        if self.state is None:
            raise NotConfiguredError("Sync is not set up on this machine; run `brainsync setup` first")
        return self.state

    @contextmanager
    def exclusive(self):
        """Guard against a second operation in this process.

        Raises SyncInProgressError instead of waiting.
        """
        if not self._busy.acquire(blocking=False):
            raise SyncInProgressError()
        try:
            yield
        finally:
            self._busy.release()

    def close(self):
        self.manifests.close()
        self.store.close()

    # ── setup ──────────────────────────────────────────────────────────────

    def verify_password(self, password: Optional[str] = None) -> bool:
        """True when password opens the remote manifest (or none exists yet)."""
        password = password or self._password
        blob = self.store.get_object(MANIFEST_PATH)
        if blob is None:
            return True
        try:
            manifest = decode_manifest(blob, password)
        except ManifestUnavailableError as exc:
            if isinstance(exc.__cause__, DecryptionError):
                return False
            raise
        return manifest.check_password(password)

    def setup(self, machine_name: Optional[str] = None) -> bool:
        """Join the existing sync domain or create it.

        Returns True when an existing manifest was joined, False when a new
        one was created. Raises DecryptionError for a wrong password.
        """
        with self.exclusive():
            state = self.state or default_state()
            if machine_name:
                state.machine_name = machine_name

            if not self.verify_password():
                raise DecryptionError("Incorrect password for the existing sync data")
            manifest = self.manifests.fetch()
            joined = manifest is not None
            if joined:
                log(f"[setup] joined existing sync data as '{state.machine_name}'")
            else:
                self.manifests.create_initial()
                log(f"[setup] created new sync data as '{state.machine_name}'")

            self.state = state
            save_state(state, self.state_path)

            machine_state = self.machine_states.load_or_new(state.machine_id, state.machine_name)
            self.machine_states.save(machine_state)
            self._register_machine(machine_state)
            return joined

    def _register_machine(self, machine_state: MachineState):
        def mutate(manifest: Manifest) -> bool:
            existing = manifest.find_machine(machine_state.machine_id)
            entry = Machine(
                id=machine_state.machine_id,
                name=machine_state.machine_name,
                last_sync=machine_state.last_sync,
                created_at=(existing.created_at if existing else "") or machine_state.created_at or now_iso(),
                upload_count=machine_state.upload_count,
                download_count=machine_state.download_count,
            )
            if existing == entry:
                return False
            manifest.upsert_machine(entry)
            return True

        self.manifests.update(mutate)

    # ══════════════════════════════════════════════════════════════════════
    #  FULL PASS
    # ══════════════════════════════════════════════════════════════════════

    def sync_now(self, ctx: Optional[SyncContext] = None) -> SyncResult:
        """Run one full sync pass.

        Raises SyncInProgressError if a pass is already running here; every
        other failure is reported through the returned SyncResult.
        """
        ctx = ensure_context(ctx)
        with self.exclusive():
            result = SyncResult()
            try:
                self._pass(ctx, result)
            except SyncError as exc:
                self.phase = SyncPhase.FAILED
                result.fatal = exc
                result.errors.append(str(exc))
                warn(f"Sync failed: {exc}")
            except Exception as exc:
                self.phase = SyncPhase.FAILED
                result.fatal = SyncError(str(exc))
                result.errors.append(f"Sync failed: {exc}")
                warn(f"Sync failed: {exc}")
                if is_verbose():
                    traceback.print_exc()
            else:
                self.phase = SyncPhase.IDLE
            result.success = not result.errors
            return result

    def _pass(self, ctx: SyncContext, result: SyncResult):
        state = self._require_state()
        machine_id = state.machine_id

        self.phase = SyncPhase.ACQUIRING_LOCK
        ctx.check()
        ctx.report("Acquiring sync lock …")
        if not self.lock.acquire(machine_id, _cfg.LOCK_TTL, ctx):
            holder = self.lock.read()
            raise LockBusyError(holder.machine_id if holder else None,
                                holder.expires_at if holder else None)
        log("[lock] acquired")
        try:
            self._locked_pass(ctx, result, state)
        finally:
            self.phase = SyncPhase.RELEASING_LOCK
            try:
                self.lock.release(machine_id)
            except Exception as exc:
                # The TTL frees it eventually
                warn(f"[lock] release failed: {exc}")

    def _locked_pass(self, ctx: SyncContext, result: SyncResult, state: LocalState):
        # ── load manifest ─────────────────────────────────────────────────
        self.phase = SyncPhase.LOADING_MANIFEST
        ctx.check()
        ctx.report("Fetching remote data …")
        manifest = self.manifests.ensure()
        machine_state = self.machine_states.load_or_new(state.machine_id, state.machine_name)
        remote_by_id = {c.id: c for c in manifest.conversations}
        log(f"[manifest] {len(remote_by_id)} remote conversation(s)")

        # ── classify ──────────────────────────────────────────────────────
        self.phase = SyncPhase.CLASSIFYING
        local_ids = set(self.layout.list_ids())
        ids = sorted(
            conv_id for conv_id in local_ids | set(remote_by_id)
            # Unselected local conversations stay out; remote-only ones are always pulled
            if conv_id not in local_ids or state.is_selected(conv_id)
        )

        locals_by_id: dict[str, LocalConversation] = {}
        decisions: list[Decision] = []

        def classify_one(conv_id: str) -> tuple[Optional[LocalConversation], Decision]:
            local = scan_conversation(self.layout, self.hasher, conv_id)
            return local, classify_conversation(conv_id, local, remote_by_id.get(conv_id),
                                                machine_state.base_for(conv_id))

        for conv_id, (local, decision) in self._in_batches(ids, classify_one, ctx, result):
            if local is not None:
                locals_by_id[conv_id] = local
            decisions.append(decision)
            vlog(f"  [plan] {conv_id}: {decision.action.value} ({decision.reason})")

        by_action = {a: [d for d in decisions if d.action is a] for a in Action}
        log(f"[plan] push={len(by_action[Action.PUSH])}  pull={len(by_action[Action.PULL])}  "
            f"skip={len(by_action[Action.SKIP])}  conflicts={len(by_action[Action.CONFLICT])}")

        for d in by_action[Action.CONFLICT]:
            local, remote = locals_by_id.get(d.conv_id), remote_by_id.get(d.conv_id)
            result.conflicts.append(SyncConflict(
                conversation_id=d.conv_id,
                reason=d.reason,
                local_title=local.title if local else "",
                remote_title=remote.title if remote else "",
                local_modified=local.last_modified if local else "",
                remote_modified=remote.last_modified if remote else "",
                remote_modified_by=remote.modified_by if remote else "",
            ))
            warn(f"[conflict] {d.conv_id}: {d.reason}")

        # ── transfer ──────────────────────────────────────────────────────
        self.phase = SyncPhase.TRANSFERRING
        # Empty local folders with no manifest entry have nothing to transfer
        actionable = [d for d in decisions
                      if d.action is not Action.CONFLICT
                      and (d.conv_id in locals_by_id or d.conv_id in remote_by_id)]

        def execute(d: Decision) -> _Outcome:
            return self._execute(d, locals_by_id.get(d.conv_id), remote_by_id.get(d.conv_id), ctx)

        by_id = {d.conv_id: d for d in actionable}
        for conv_id, outcome in self._in_batches(list(by_id), lambda i: execute(by_id[i]), ctx, result):
            result.stats.add(outcome.stats)
            if outcome.action is Action.PUSH:
                result.pushed.append(conv_id)
            elif outcome.action is Action.PULL:
                result.pulled.append(conv_id)
            else:
                result.skipped.append(conv_id)
            if outcome.title_updated:
                result.title_updates.append(conv_id)
            if outcome.base is not None:
                machine_state.record(conv_id, *outcome.base)

        # ── update state ─────────────────────────────────────────────────
        self.phase = SyncPhase.UPDATING_STATE
        ctx.report("Saving sync state …")
        now = now_iso()
        machine_state.last_sync = now
        machine_state.upload_count += len(result.pushed)
        machine_state.download_count += len(result.pulled)
        self.machine_states.save(machine_state)
        self._register_machine(machine_state)
        state.last_sync = now
        save_state(state, self.state_path)

        log(f"[sync] pushed={len(result.pushed)}  pulled={len(result.pulled)}  "
            f"skipped={len(result.skipped)}  conflicts={len(result.conflicts)}  "
            f"errors={len(result.errors)}")

    def _in_batches(self, ids: list[str], work: Callable, ctx: SyncContext,
                    result: SyncResult) -> Iterable[tuple[str, object]]:
        """Run work over ids in concurrent batches of BATCH_SIZE.

        Yields (id, value) for each success. Per-conversation failures go to
        result; a cancellation aborts once the current batch has settled.
        """
        batch_size = max(1, _cfg.BATCH_SIZE)
        for batch in _chunks(ids, batch_size):
            ctx.check()
            cancelled: Optional[CancellationError] = None
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="sync") as pool:
                futures = {}
                for conv_id in batch:
                    futures[pool.submit(self._checked, work, conv_id, ctx)] = conv_id
                for fut in as_completed(futures):
                    conv_id = futures[fut]
                    try:
                        value = fut.result()
                    except CancellationError as exc:
                        cancelled = exc
                        continue
                    except ObjectNotFoundError as exc:
                        result.missing.append(conv_id)
                        result.errors.append(f"{conv_id}: {exc}")
                        warn(f"[sync] {conv_id}: {exc}")
                        continue
                    except Exception as exc:
                        result.errors.append(f"{conv_id}: {exc}")
                        warn(f"[sync] {conv_id}: {exc}")
                        if is_verbose():
                            traceback.print_exception(type(exc), exc, exc.__traceback__)
                        continue
                    yield conv_id, value
            if cancelled is not None:
                raise cancelled

    @staticmethod
    def _checked(work: Callable, conv_id: str, ctx: SyncContext):
        ctx.check()
        return work(conv_id)

    def _execute(self, decision: Decision, local: Optional[LocalConversation],
                 remote: Optional[SyncedConversation], ctx: SyncContext) -> _Outcome:
        conv_id = decision.conv_id
        if decision.action is Action.PUSH:
            stats = self._push(local, remote, ctx)
            return _Outcome(conv_id, Action.PUSH, stats, (local.overall_hash, local.file_hashes))
        if decision.action is Action.PULL:
            stats = self._pull(remote, ctx)
            return _Outcome(conv_id, Action.PULL, stats, self._pulled_base(remote))
        # In sync
        if local is None:
            return _Outcome(conv_id, Action.SKIP, TransferStats())
        title_updated = decision.title_update and self._update_title(local)
        return _Outcome(conv_id, Action.SKIP, TransferStats(),
                        (local.overall_hash, local.file_hashes), title_updated)

    def _pulled_base(self, remote: SyncedConversation) -> tuple[str, FileHashes]:
        if isinstance(remote.storage, PerFile):
            return remote.overall_hash, remote.file_hashes
        # Legacy hash is not comparable to ours: record what landed on disk
        local = self.hasher.hash_conversation(remote.id)
        return remote.overall_hash, local.file_hashes

    # ══════════════════════════════════════════════════════════════════════
    #  PUSH / PULL
    # ══════════════════════════════════════════════════════════════════════

    def _push(self, local: LocalConversation, remote: Optional[SyncedConversation],
              ctx: SyncContext) -> TransferStats:
        """Upload changed files, then commit the manifest entry, then drop stale objects."""
        ctx.check()
        conv_id = local.id
        state = self._require_state()
        remote_hashes = remote.file_hashes if remote is not None else {}
        plan = diff_files(local.file_hashes, remote_hashes)
        ctx.report(f"Uploading {conv_id} ({len(plan.transfer)} file(s)) …")
        log(f"[push] {conv_id}: upload={len(plan.transfer)} delete={len(plan.delete)}")

        stats = self.pipeline.upload_files(conv_id, plan.transfer, local.file_hashes, ctx)

        def mutate(manifest: Manifest) -> bool:
            existing = manifest.find(conv_id)
            if (existing is not None
                    and isinstance(existing.storage, PerFile)
                    and existing.overall_hash == local.overall_hash
                    and existing.title == local.title
                    and _same_files(existing.file_hashes, local.file_hashes)):
                return False
            now = now_iso()
            manifest.upsert(SyncedConversation(
                id=conv_id,
                title=local.title,
                last_modified=now,
                overall_hash=local.overall_hash,
                modified_by=state.machine_id,
                storage=PerFile(dict(local.file_hashes)),
                size=local.size,
                created_at=(existing.created_at if existing else "") or now,
                created_by=(existing.created_by if existing else "") or state.machine_id,
                created_by_name=(existing.created_by_name if existing else "") or state.machine_name,
            ))
            return True

        self.manifests.update(mutate)

        # Only now that the manifest no longer references them
        if plan.delete:
            stats.add(self.pipeline.delete_remote_files(conv_id, plan.delete, ctx))
        if remote is not None and isinstance(remote.storage, LegacyArchive):
            self.store.delete_object(legacy_archive_path(conv_id))
            vlog(f"  [push] {conv_id}: replaced legacy archive with per-file objects")
        return stats

    def _pull(self, remote: SyncedConversation, ctx: SyncContext,
              target_id: Optional[str] = None) -> TransferStats:
        """Bring the local copy of remote.id (or target_id) in line with the manifest."""
        ctx.check()
        conv_id = remote.id
        if isinstance(remote.storage, LegacyArchive):
            log(f"[pull] {conv_id}: legacy archive")
            return pull_legacy(self.store, self._password, self.layout, conv_id, target_id, ctx)

        if target_id is None or target_id == conv_id:
            local_hashes = self.hasher.hash_conversation(conv_id).file_hashes
        else:
            local_hashes = {}
        plan = diff_files(remote.file_hashes, local_hashes)
        ctx.report(f"Downloading {conv_id} ({len(plan.transfer)} file(s)) …")
        log(f"[pull] {conv_id}: download={len(plan.transfer)} delete={len(plan.delete)}")

        stats = self.pipeline.download_files(conv_id, plan.transfer, remote.file_hashes, ctx, target_id)
        if target_id is None or target_id == conv_id:
            stats.add(self.pipeline.delete_local_files(conv_id, plan.delete))
        return stats

    def _update_title(self, local: LocalConversation) -> bool:
        changed = []

        def mutate(manifest: Manifest) -> bool:
            entry = manifest.find(local.id)
            if entry is None or entry.title == local.title:
                return False
            entry.title = local.title
            changed.append(local.id)
            return True

        self.manifests.update(mutate)
        if changed:
            log(f"[push] {local.id}: title updated to '{local.title}'")
        return bool(changed)

    def record_base(self, conv_id: str, base: Optional[tuple[str, FileHashes]]):
        state = self._require_state()
        machine_state = self.machine_states.load_or_new(state.machine_id, state.machine_name)
        if base is None:
            machine_state.forget(conv_id)
        else:
            machine_state.record(conv_id, *base)
        self.machine_states.save(machine_state)

    def push_conversation(self, conv_id: str, ctx: Optional[SyncContext] = None) -> TransferStats:
        """Push one local conversation over whatever the remote holds."""
        ctx = ensure_context(ctx)
        with self.exclusive():
            local = scan_conversation(self.layout, self.hasher, conv_id)
            if local is None:
                raise SyncError(f"Conversation {conv_id} not found locally")
            remote = self.manifests.ensure().find(conv_id)
            stats = self._push(local, remote, ctx)
            self.record_base(conv_id, (local.overall_hash, local.file_hashes))
            return stats

    def pull_conversation(self, conv_id: str, ctx: Optional[SyncContext] = None) -> TransferStats:
        """Replace the local copy of one conversation with the remote one."""
        ctx = ensure_context(ctx)
        with self.exclusive():
            remote = self.manifests.ensure().find(conv_id)
            if remote is None:
                raise SyncError(f"Conversation {conv_id} not found in manifest")
            stats = self._pull(remote, ctx)
            self.record_base(conv_id, self._pulled_base(remote))
            return stats

    def pull_as_copy(self, conv_id: str, new_id: str, ctx: Optional[SyncContext] = None) -> TransferStats:
        """Download the remote content of conv_id into a new local conversation new_id."""
        ctx = ensure_context(ctx)
        with self.exclusive():
            remote = self.manifests.ensure().find(conv_id)
            if remote is None:
                raise SyncError(f"Conversation {conv_id} not found in manifest")
            return self._pull(remote, ctx, target_id=new_id)

    # ══════════════════════════════════════════════════════════════════════
    #  CONFLICTS, DELETION, STATISTICS
    # ══════════════════════════════════════════════════════════════════════

    def resolve_conflict(self, conv_id: str, resolution: str,
                         ctx: Optional[SyncContext] = None) -> Optional[str]:
        """Apply keepLocal / keepRemote / keepBoth; returns the copy id for keepBoth."""
        with self.exclusive():
            return _conflict.resolve_conflict(self, conv_id, resolution, ensure_context(ctx))

    def list_conflict_copies(self) -> list[_conflict.ConflictCopy]:
        return _conflict.list_conflict_copies(self.layout)

    def keep_original(self, copy_id: str, ctx: Optional[SyncContext] = None):
        with self.exclusive():
            _conflict.keep_original(self, copy_id, ensure_context(ctx))

    def keep_conflict(self, copy_id: str, ctx: Optional[SyncContext] = None):
        with self.exclusive():
            _conflict.keep_conflict(self, copy_id, ensure_context(ctx))

    def delete_conversation(self, conv_id: str, local: bool = False) -> bool:
        with self.exclusive():
            return _delete.delete_conversation(self, conv_id, local=local)

    def repair_manifest(self) -> list[str]:
        with self.exclusive():
            return _delete.repair_manifest(self)

    def get_statistics(self) -> SyncStatistics:
        state = self._require_state()
        local = scan_local(self.layout, self.hasher)
        manifest = self.manifests.fetch()
        remote = {c.id: c for c in manifest.conversations} if manifest else {}
        machines = list(manifest.machines) if manifest else []
        names = {m.id: m.name for m in machines}
        # The roster may lag behind machines that never finished a pass
        for ms in self.machine_states.load_all():
            if ms.machine_id not in names:
                machines.append(Machine(id=ms.machine_id, name=ms.machine_name,
                                        last_sync=ms.last_sync, created_at=ms.created_at,
                                        upload_count=ms.upload_count,
                                        download_count=ms.download_count))
                names[ms.machine_id] = ms.machine_name

        statuses = []
        for conv_id in sorted(set(local) | set(remote)):
            lc, rc = local.get(conv_id), remote.get(conv_id)
            if lc is not None and rc is None:
                status = "local only"
            elif lc is None:
                status = "remote only"
            elif lc.overall_hash == rc.overall_hash:
                status = "synced"
            else:
                status = "modified"
            statuses.append(ConversationStatus(
                id=conv_id,
                title=(lc.title if lc else rc.title),
                status=status,
                size=(lc.size if lc else rc.size),
                modified_by=rc.modified_by if rc else "",
                modified_by_name=names.get(rc.modified_by, "") if rc else "",
                created_by_name=rc.created_by_name if rc else "",
                last_modified=(rc.last_modified if rc else lc.last_modified),
            ))

        try:
            quota = self.store.storage_quota()
        except (OSError, SyncError) as exc:
            warn(f"Could not read storage quota: {exc}")
            quota = None

        return SyncStatistics(
            machine_id=state.machine_id,
            machine_name=state.machine_name,
            last_sync=state.last_sync,
            local_count=len(local),
            remote_count=len(remote),
            machines=machines,
            conversations=statuses,
            quota=quota,
        )
