"""
Explicit deletion and manifest repair

Deletion is the only way a manifest entry disappears: a conversation
missing locally is never taken as a request to delete it remotely.
"""
from ..core.manifest import LegacyArchive, Manifest, SyncedConversation
from ..utils.logging import log, vlog, warn
from .conflict import remove_local
from .transfer import REMOTE_CONV_PREFIX, conversation_prefix, legacy_archive_path, object_path


def delete_conversation(manager, conv_id: str, local: bool = False) -> bool:
    """Remove conv_id from the manifest and the remote store.

    local=True also deletes the local files. Returns True when a manifest
    entry was removed.
    """
    removed = []

    def mutate(manifest: Manifest) -> bool:
        if manifest.remove(conv_id):
            removed.append(conv_id)
            return True
        return False

    # Manifest first: nothing may reference the objects we are about to drop
    manager.manifests.update(mutate)

    store = manager.store
    objects = store.list_objects(conversation_prefix(conv_id))
    for path in objects:
        store.delete_object(path)
        vlog(f"  [delete] {path}")
    store.delete_object(legacy_archive_path(conv_id))

    if manager.state is not None:
        manager.record_base(conv_id, None)

    if local:
        n = remove_local(manager.layout, conv_id)
        log(f"[delete] {conv_id}: removed {n} local file(s)")
    log(f"[delete] {conv_id}: removed {len(objects)} remote object(s)"
        + ("" if removed else " (no manifest entry)"))
    return bool(removed)


def _is_dangling(entry: SyncedConversation, existing: set[str]) -> bool:
    if isinstance(entry.storage, LegacyArchive):
        return legacy_archive_path(entry.id) not in existing
    return any(object_path(entry.id, rel) not in existing for rel in entry.file_hashes)


def repair_manifest(manager) -> list[str]:
    """Strip manifest entries whose remote objects are missing.

    Returns the ids removed.
    """
    existing = set(manager.store.list_objects(REMOTE_CONV_PREFIX))
    stripped: list[str] = []

    def mutate(manifest: Manifest) -> bool:
        stripped.clear()
        for entry in list(manifest.conversations):
            if _is_dangling(entry, existing):
                manifest.remove(entry.id)
                stripped.append(entry.id)
        return bool(stripped)

    manager.manifests.update(mutate)
    for conv_id in stripped:
        warn(f"[repair] removed dangling manifest entry {conv_id}")
    if not stripped:
        log("[repair] manifest is consistent")
    return list(stripped)
