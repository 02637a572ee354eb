"""
Manifest models and the manifest store

The manifest is the single encrypted document of record at
<remote root>/manifest.json.enc. Every local mutation goes through
ManifestStore.update(), which runs on a single worker thread: each
queued closure re-fetches the freshest manifest, applies its change and
writes it back, so two mutations from this process never interleave.
"""
import base64
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from . import crypto
from .errors import (
    DecryptionError, FormatError, ManifestUnavailableError, SyncError,
)
from .remote_store import ObjectStore
from ..utils.logging import log, vlog, warn

MANIFEST_PATH = "manifest.json.enc"
MANIFEST_VERSION = 2

FORMAT_LEGACY_ARCHIVE = 1
FORMAT_PER_FILE = 2


def iso_utc(ts: float) -> str:
    """Epoch seconds as ISO-8601 UTC with milliseconds and a Z suffix."""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return iso_utc(datetime.now(timezone.utc).timestamp())


# ══════════════════════════════════════════════════════════════════════════════
#  MODELS
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class FileHashInfo:
    hash: str
    size: int
    last_modified: str

    def to_dict(self) -> dict:
        return {"hash": self.hash, "size": self.size, "lastModified": self.last_modified}

    @classmethod
    def from_dict(cls, data: dict) -> "FileHashInfo":
        return cls(
            hash=str(data.get("hash", "")),
            size=int(data.get("size", 0) or 0),
            last_modified=str(data.get("lastModified", "")),
        )


FileHashes = dict[str, FileHashInfo]


def file_hashes_to_dict(hashes: FileHashes) -> dict:
    return {rel: info.to_dict() for rel, info in sorted(hashes.items())}


def file_hashes_from_dict(data: Optional[dict]) -> FileHashes:
    return {rel: FileHashInfo.from_dict(info) for rel, info in (data or {}).items()}


@dataclass(frozen=True)
class LegacyArchive:
    """Stored as a single encrypted zip at conversations/<id>.zip.enc."""

    format_version = FORMAT_LEGACY_ARCHIVE


@dataclass(frozen=True)
class PerFile:
    """Stored as one encrypted object per file."""

    file_hashes: FileHashes = field(default_factory=dict)

    format_version = FORMAT_PER_FILE


StorageFormat = Union[LegacyArchive, PerFile]


@dataclass
class SyncedConversation:
    id: str
    title: str
    last_modified: str
    overall_hash: str
    modified_by: str
    storage: StorageFormat = field(default_factory=PerFile)
    size: int = 0
    created_at: str = ""
    created_by: str = ""
    created_by_name: str = ""

    @property
    def format_version(self) -> int:
        return self.storage.format_version

    @property
    def file_hashes(self) -> FileHashes:
        if isinstance(self.storage, PerFile):
            return self.storage.file_hashes
        return {}

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "lastModified": self.last_modified,
            "overallHash": self.overall_hash,
            "modifiedBy": self.modified_by,
            "size": self.size,
            "createdAt": self.created_at,
            "createdBy": self.created_by,
            "createdByName": self.created_by_name,
            "formatVersion": self.format_version,
        }
        if isinstance(self.storage, PerFile):
            data["fileHashes"] = file_hashes_to_dict(self.storage.file_hashes)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SyncedConversation":
        # Entries written by older clients use "hash" and "version"
        fmt = data.get("formatVersion", data.get("version", FORMAT_LEGACY_ARCHIVE))
        storage: StorageFormat
        if fmt == FORMAT_PER_FILE and data.get("fileHashes") is not None:
            storage = PerFile(file_hashes_from_dict(data.get("fileHashes")))
        else:
            storage = LegacyArchive()
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or data["id"]),
            last_modified=str(data.get("lastModified", "")),
            overall_hash=str(data.get("overallHash", data.get("hash", "")) or ""),
            modified_by=str(data.get("modifiedBy", "")),
            storage=storage,
            size=int(data.get("size", 0) or 0),
            created_at=str(data.get("createdAt", "")),
            created_by=str(data.get("createdBy", "")),
            created_by_name=str(data.get("createdByName", "")),
        )


@dataclass
class Machine:
    id: str
    name: str
    last_sync: Optional[str] = None
    created_at: str = ""
    upload_count: int = 0
    download_count: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "lastSync": self.last_sync,
            "createdAt": self.created_at,
            "uploadCount": self.upload_count,
            "downloadCount": self.download_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Machine":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            last_sync=data.get("lastSync"),
            created_at=str(data.get("createdAt", "")),
            upload_count=int(data.get("uploadCount", 0) or 0),
            download_count=int(data.get("downloadCount", 0) or 0),
        )


@dataclass
class Manifest:
    version: int
    created_at: str
    last_modified: str
    password_salt: str
    password_verification_hash: str
    conversations: list[SyncedConversation] = field(default_factory=list)
    machines: list[Machine] = field(default_factory=list)

    def find(self, conv_id: str) -> Optional[SyncedConversation]:
        return next((c for c in self.conversations if c.id == conv_id), None)

    def upsert(self, entry: SyncedConversation):
        for i, c in enumerate(self.conversations):
            if c.id == entry.id:
                self.conversations[i] = entry
                return
        self.conversations.append(entry)

    def remove(self, conv_id: str) -> bool:
        before = len(self.conversations)
        self.conversations = [c for c in self.conversations if c.id != conv_id]
        return len(self.conversations) != before

    def find_machine(self, machine_id: str) -> Optional[Machine]:
        return next((m for m in self.machines if m.id == machine_id), None)

    def upsert_machine(self, machine: Machine):
        for i, m in enumerate(self.machines):
            if m.id == machine.id:
                self.machines[i] = machine
                return
        self.machines.append(machine)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "passwordSalt": self.password_salt,
            "passwordVerificationHash": self.password_verification_hash,
            "conversations": [c.to_dict() for c in self.conversations],
            "machines": [m.to_dict() for m in self.machines],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        return cls(
            version=int(data.get("version", 1)),
            created_at=str(data.get("createdAt", "")),
            last_modified=str(data.get("lastModified", "")),
            # Older manifests call the salt "passwordVerificationSalt"
            password_salt=str(data.get("passwordSalt", data.get("passwordVerificationSalt", ""))),
            password_verification_hash=str(data.get("passwordVerificationHash", "")),
            conversations=[SyncedConversation.from_dict(c) for c in data.get("conversations", [])],
            machines=[Machine.from_dict(m) for m in data.get("machines", []) or []],
        )

    @classmethod
    def new(cls, password: str) -> "Manifest":
        salt = crypto.generate_salt()
        now = now_iso()
        return cls(
            version=MANIFEST_VERSION,
            created_at=now,
            last_modified=now,
            password_salt=base64.b64encode(salt).decode("ascii"),
            password_verification_hash=crypto.hash_password(password, salt),
        )

    def check_password(self, password: str) -> bool:
        """True when password matches the verification hash (or none is recorded)."""
        if not self.password_salt or not self.password_verification_hash:
            return True
        salt = base64.b64decode(self.password_salt)
        return crypto.verify_password_hash(password, salt, self.password_verification_hash)


# ══════════════════════════════════════════════════════════════════════════════
#  STORE
# ══════════════════════════════════════════════════════════════════════════════

def decode_manifest(blob: bytes, password: str) -> Manifest:
    """Decrypt and parse a manifest blob.

    Every failure surfaces as ManifestUnavailableError; the underlying
    DecryptionError / FormatError is kept as __cause__.
    """
    try:
        raw = crypto.decrypt(blob, password)
    except DecryptionError as exc:
        raise ManifestUnavailableError(
            "Could not decrypt the remote manifest: incorrect password or corrupted data"
        ) from exc
    except FormatError as exc:
        raise ManifestUnavailableError(f"Remote manifest has an unknown format: {exc}") from exc
    try:
        return Manifest.from_dict(json.loads(raw.decode("utf-8")))
    except (ValueError, KeyError, TypeError) as exc:
        raise ManifestUnavailableError(f"Remote manifest is not valid JSON: {exc}") from exc


class ManifestStore:
    """Reads, creates and mutates the encrypted manifest."""

    def __init__(self, store: ObjectStore, password: str, compress: bool = True):
        self.store = store
        self._password = password
        self._compress = compress
        self._queue = ThreadPoolExecutor(max_workers=1, thread_name_prefix="manifest")

    def decode(self, blob: bytes) -> Manifest:
        return decode_manifest(blob, self._password)

    def encode(self, manifest: Manifest) -> bytes:
        text = json.dumps(manifest.to_dict(), indent=2)
        return crypto.encrypt(text.encode("utf-8"), self._password, self._compress)

    def fetch(self) -> Optional[Manifest]:
        """Return the remote manifest, or None when none exists yet."""
        try:
            blob = self.store.get_object(MANIFEST_PATH)
        except SyncError:
            raise
        except Exception as exc:
            raise ManifestUnavailableError(f"Could not retrieve remote manifest: {exc}") from exc
        if blob is None:
            return None
        return self.decode(blob)

    def write(self, manifest: Manifest):
        self.store.put_object(MANIFEST_PATH, self.encode(manifest))
        vlog(f"[manifest] written ({len(manifest.conversations)} conversation(s))")

    def create_initial(self) -> Manifest:
        manifest = Manifest.new(self._password)
        self.write(manifest)
        log("[manifest] created initial manifest")
        return manifest

    def ensure(self) -> Manifest:
        """Fetch the manifest, recreating it once if it is missing."""
        manifest = self.fetch()
        if manifest is not None:
            return manifest
        warn("Remote manifest not found, attempting to recreate …")
        try:
            self.create_initial()
        except Exception as exc:
            raise ManifestUnavailableError(f"Failed to get or create remote manifest: {exc}") from exc
        manifest = self.fetch()
        if manifest is None:
            raise ManifestUnavailableError("Failed to get remote manifest after recreation attempt")
        return manifest

    def update(self, mutate: Callable[[Manifest], bool]) -> Manifest:
        """Queue a read-modify-write and wait for it.

        mutate receives the freshest manifest and returns True when it changed
        something; nothing is written otherwise. mutate must not call update()
        itself: the queue has a single worker.
        """
        return self._queue.submit(self._apply, mutate).result()

    def _apply(self, mutate: Callable[[Manifest], bool]) -> Manifest:
        manifest = self.fetch()
        if manifest is None:
            raise ManifestUnavailableError("Remote manifest disappeared during update")
        if mutate(manifest):
            manifest.last_modified = now_iso()
            self.write(manifest)
        return manifest

    def close(self):
        self._queue.shutdown(wait=True)
