"""
Remote object store adapters

Everything above this module talks to an ObjectStore: put / get / list /
delete over a folder hierarchy of POSIX-style relative paths, plus an
advisory quota query. Object metadata (e.g. the plaintext hash recorded at
upload) lives in a "<path>.meta" JSON sidecar that list_objects never
reports.
"""
import io
import json
import os
import shlex
import shutil
import stat
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional

import paramiko

from .. import config as _cfg
from ..utils.file_utils import atomic_write
from ..utils.logging import log, vlog
from ..utils.retry import retried

META_SUFFIX = ".meta"
PART_SUFFIX = ".part"


def _check_path(path: str) -> str:
    parts = PurePosixPath(path).parts
    if not parts or path.startswith("/") or any(p in ("..", ".") for p in parts):
        raise ValueError(f"Invalid object path: {path!r}")
    return str(PurePosixPath(*parts))


def _prefix_dir(prefix: str) -> str:
    """Deepest directory that can contain every object matching prefix."""
    return prefix.rsplit("/", 1)[0] if "/" in prefix else ""


def _visible(path: str) -> bool:
    name = PurePosixPath(path).name
    return not (name.endswith(META_SUFFIX) or name.endswith(PART_SUFFIX))


class ObjectStore(ABC):
    """Abstract put/get/list/delete over a folder hierarchy."""

    @abstractmethod
    def put_object(self, path: str, data: bytes, metadata: Optional[dict] = None):
        """Create or replace the object at path."""

    @abstractmethod
    def get_object(self, path: str) -> Optional[bytes]:
        """Return the object's bytes, or None when it does not exist."""

    @abstractmethod
    def get_metadata(self, path: str) -> Optional[dict]:
        """Return the metadata recorded with the object, or None."""

    @abstractmethod
    def list_objects(self, prefix: str = "") -> list[str]:
        """Relative paths of every object under prefix, sorted."""

    @abstractmethod
    def delete_object(self, path: str):
        """Delete the object and its metadata; a missing object is not an error."""

    def create_object(self, path: str, data: bytes) -> bool:
        """Create path only if it does not exist yet.

        Returns False when the object already exists. Stores that cannot
        create conditionally fall back to check-then-put, which leaves a
        small window for two writers to both succeed.
        """
        if self.get_object(path) is not None:
            return False
        self.put_object(path, data)
        return True

    def storage_quota(self) -> Optional[tuple[int, int]]:
        """(used_bytes, limit_bytes), or None when the backend cannot tell."""
        return None

    def close(self):
        pass


# ══════════════════════════════════════════════════════════════════════════════
#  LOCAL FOLDER (mounted cloud drive, NAS, USB stick)
# ══════════════════════════════════════════════════════════════════════════════

class LocalObjectStore(ObjectStore):
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _full(self, path: str) -> Path:
        return self.root.joinpath(*PurePosixPath(_check_path(path)).parts)

    def put_object(self, path: str, data: bytes, metadata: Optional[dict] = None):
        full = self._full(path)
        meta = full.with_name(full.name + META_SUFFIX)
        # Stale metadata must never describe new content
        meta.unlink(missing_ok=True)
        atomic_write(full, data)
        if metadata is not None:
            atomic_write(meta, json.dumps(metadata).encode("utf-8"))

    def get_object(self, path: str) -> Optional[bytes]:
        try:
            return self._full(path).read_bytes()
        except FileNotFoundError:
            return None

    def get_metadata(self, path: str) -> Optional[dict]:
        full = self._full(path)
        meta = full.with_name(full.name + META_SUFFIX)
        if not full.is_file():
            return None
        try:
            return json.loads(meta.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError:
            vlog(f"  [store] unreadable metadata for {path}")
            return None

    def list_objects(self, prefix: str = "") -> list[str]:
        base = self.root.joinpath(*PurePosixPath(_prefix_dir(prefix)).parts)
        if not base.is_dir():
            return []
        found = []
        for dirpath, _dirs, names in os.walk(base):
            for name in names:
                rel = (Path(dirpath) / name).relative_to(self.root).as_posix()
                if rel.startswith(prefix) and _visible(rel):
                    found.append(rel)
        return sorted(found)

    def delete_object(self, path: str):
        full = self._full(path)
        full.unlink(missing_ok=True)
        full.with_name(full.name + META_SUFFIX).unlink(missing_ok=True)

    def create_object(self, path: str, data: bytes) -> bool:
        full = self._full(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(full), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return True

    def storage_quota(self) -> Optional[tuple[int, int]]:
        usage = shutil.disk_usage(self.root)
        return usage.used, usage.total


# ══════════════════════════════════════════════════════════════════════════════
#  SFTP
# ══════════════════════════════════════════════════════════════════════════════

class SFTPObjectStore(ObjectStore):
    """
    Object store on an SFTP server.
    Wraps paramiko SSHClient + SFTPClient, reconnects on channel errors and
    sends keep-alives to reduce mid-transfer drops.
    """

    def __init__(self, root: Optional[PurePosixPath] = None):
        self.root = PurePosixPath(str(root if root is not None else _cfg.REMOTE_ROOT))
        self._ssh: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._connect_lock = threading.Lock()

    # ── connection ─────────────────────────────────────────────────────────

    def connect(self):
        if self._ssh:
            try:
                self._ssh.get_transport().send_ignore()  # test if alive
                return
            except Exception:
                self._close_quietly()

        log(f"[SFTP] connecting to {_cfg.SSH_USER}@{_cfg.SSH_HOST}:{_cfg.SSH_PORT} …")
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=_cfg.SSH_HOST, port=_cfg.SSH_PORT, username=_cfg.SSH_USER,
                        timeout=20, banner_timeout=30, auth_timeout=30)
        if _cfg.SSH_KEY_PATH:
            kw["key_filename"] = _cfg.SSH_KEY_PATH
        if _cfg.SSH_PASSWORD:
            kw["password"] = _cfg.SSH_PASSWORD

        client.connect(**kw)
        client.get_transport().set_keepalive(30)

        self._ssh = client
        self._sftp = client.open_sftp()
        log("[SFTP] connected ✓")

    def _close_quietly(self):
        for closeable in (self._sftp, self._ssh):
            try:
                if closeable:
                    closeable.close()
            except Exception:
                vlog("  [SFTP] error while closing connection (ignored)")
        self._ssh = None
        self._sftp = None

    def close(self):
        if self._ssh:
            self._close_quietly()
            log("[SFTP] disconnected.")

    def ensure_connected(self):
        """Call before any remote operation."""
        with self._connect_lock:
            try:
                if self._ssh and self._ssh.get_transport().is_active():
                    return
            except Exception:
                vlog("  [SFTP] transport check failed, reconnecting")
            self.connect()

    # ── helpers ─────────────────────────────────────────────────────────────

    def _full(self, path: str) -> str:
        return str(self.root / _check_path(path))

    def _makedirs(self, remote_dir: str):
        current = None
        for part in PurePosixPath(remote_dir).parts:
            current = PurePosixPath(part) if current is None else current / part
            try:
                self._sftp.stat(str(current))
            except FileNotFoundError:
                self._sftp.mkdir(str(current))

    def _write(self, full: str, data: bytes):
        tmp = f"{full}{PART_SUFFIX}"
        self._sftp.putfo(io.BytesIO(data), tmp)
        try:
            self._sftp.posix_rename(tmp, full)
        except IOError:
            # Server without the posix-rename extension
            try:
                self._sftp.remove(full)
            except FileNotFoundError:
                pass
            self._sftp.rename(tmp, full)

    def _read(self, full: str) -> Optional[bytes]:
        try:
            with self._sftp.open(full, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    # ── ObjectStore ────────────────────────────────────────────────────────

    @retried
    def put_object(self, path: str, data: bytes, metadata: Optional[dict] = None):
        self.ensure_connected()
        full = self._full(path)
        self._makedirs(str(PurePosixPath(full).parent))
        try:
            self._sftp.remove(full + META_SUFFIX)
        except FileNotFoundError:
            pass
        self._write(full, data)
        if metadata is not None:
            self._write(full + META_SUFFIX, json.dumps(metadata).encode("utf-8"))

    @retried
    def get_object(self, path: str) -> Optional[bytes]:
        self.ensure_connected()
        return self._read(self._full(path))

    @retried
    def get_metadata(self, path: str) -> Optional[dict]:
        self.ensure_connected()
        full = self._full(path)
        try:
            self._sftp.stat(full)
        except FileNotFoundError:
            return None
        raw = self._read(full + META_SUFFIX)
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError:
            return None

    @retried
    def list_objects(self, prefix: str = "") -> list[str]:
        self.ensure_connected()
        found: list[str] = []
        pending = [PurePosixPath(_prefix_dir(prefix))]
        while pending:
            rel_dir = pending.pop()
            try:
                entries = self._sftp.listdir_attr(str(self.root / rel_dir))
            except FileNotFoundError:
                continue
            for attr in entries:
                rel = (rel_dir / attr.filename).as_posix()
                if stat.S_ISDIR(attr.st_mode or 0):
                    if prefix.startswith(rel + "/") or rel.startswith(prefix.rstrip("/")):
                        pending.append(rel_dir / attr.filename)
                elif rel.startswith(prefix) and _visible(rel):
                    found.append(rel)
        return sorted(found)

    @retried
    def delete_object(self, path: str):
        self.ensure_connected()
        full = self._full(path)
        for target in (full, full + META_SUFFIX):
            try:
                self._sftp.remove(target)
            except FileNotFoundError:
                pass

    @retried
    def create_object(self, path: str, data: bytes) -> bool:
        self.ensure_connected()
        full = self._full(path)
        self._makedirs(str(PurePosixPath(full).parent))
        try:
            self._sftp.stat(full)
            return False
        except FileNotFoundError:
            pass
        try:
            with self._sftp.open(full, "wbx") as f:
                f.write(data)
        except IOError:
            # Lost the race against another writer
            return False
        return True

    def storage_quota(self) -> Optional[tuple[int, int]]:
        self.ensure_connected()
        cmd = f"df -P -k {shlex.quote(str(self.root))} | tail -n 1"
        _, stdout, _ = self._ssh.exec_command(cmd, timeout=30)
        fields = stdout.read().decode("utf-8", errors="replace").split()
        if len(fields) < 3:
            return None
        try:
            return int(fields[2]) * 1024, int(fields[1]) * 1024
        except ValueError:
            return None


def create_store() -> ObjectStore:
    """Build the adapter selected by config.BACKEND."""
    if _cfg.BACKEND == "sftp":
        return SFTPObjectStore(_cfg.REMOTE_ROOT)
    if _cfg.BACKEND == "local":
        return LocalObjectStore(_cfg.get_remote_dir())
    raise ValueError(f"Unsupported backend: {_cfg.BACKEND}")
