"""
Configuration constants for brainsync
"""
import os
from pathlib import Path, PurePosixPath
from typing import Optional, Union

# ══════════════════════════════════════════════════════════════════════════════
#  DEFAULTS  ── overridden by YAML config or apply_profile()
# ══════════════════════════════════════════════════════════════════════════════

# Local store: brain/<id>/... plus conversations/<id>.pb
STORAGE_ROOT = Path("~/.gemini/antigravity").expanduser()

# Remote backend: "local" (a mounted cloud-drive folder) or "sftp"
BACKEND = "local"
REMOTE_ROOT = PurePosixPath("AntigravitySync")
# Base directory a "local" backend resolves a relative REMOTE_ROOT against
LOCAL_DRIVE_ROOT = Path("~").expanduser()

SSH_HOST = "example.com"
SSH_PORT = 22
SSH_USER = "root"
SSH_KEY_PATH: Optional[str] = None
SSH_PASSWORD: Optional[str] = None

# Machine identity; MACHINE_NAME falls back to the hostname
MACHINE_NAME: Optional[str] = None

# "all" or an explicit list of conversation ids to push
SELECTED_CONVERSATIONS: Union[str, list] = "all"

AUTO_SYNC = False
SYNC_INTERVAL = 300  # seconds between auto-sync passes

# Conversations classified concurrently per batch
BATCH_SIZE = 5
# File transfers in flight per conversation
FILE_CONCURRENCY = 3

# Lifetime of the remote sync.lock (seconds)
LOCK_TTL = 300

# Max entries kept in the mtime-keyed hash cache
HASH_CACHE_SIZE = 50_000

# gzip payloads before encryption
COMPRESS = True

# Retry settings
RETRY_MAX = 5
RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt

# Environment variable consulted for the master password
PASSWORD_ENV = "BRAINSYNC_PASSWORD"


# ══════════════════════════════════════════════════════════════════════════════
#  DYNAMIC PATHS  ── computed from STORAGE_ROOT at call time
# ══════════════════════════════════════════════════════════════════════════════

def get_brain_dir() -> Path:
    """Directory holding one sub-directory per conversation."""
    return STORAGE_ROOT / "brain"


def get_conversations_dir() -> Path:
    """Directory holding one <id>.pb record per conversation."""
    return STORAGE_ROOT / "conversations"


def get_state_file() -> Path:
    """Local machine state (id, name, last sync, selection)."""
    return get_global_config_dir() / "state.json"


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/brainsync/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for brainsync."""
    override = os.environ.get("BRAINSYNC_CONFIG_DIR", "")
    if override:
        return Path(override)
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "brainsync"
    if os.name == "nt":
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / "brainsync"
    return Path.home() / ".config" / "brainsync"


def get_config_file() -> Path:
    return get_global_config_dir() / "config.yaml"


def load_config_file(path: Optional[Path] = None) -> dict:
    """Parse the YAML config file and return its contents as a dict.

    A missing file yields an empty dict; a malformed one raises
    ``yaml.YAMLError`` so the user sees what is wrong.
    """
    import yaml

    cfg_path = path or get_config_file()
    if not cfg_path.is_file():
        return {}
    with cfg_path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_profile(data: dict, profile_name: str = "default") -> dict:
    """
    Extract a named profile from a config.yaml data dict.
    Falls back to the first profile if the named one is not found.
    Returns a flat profile dict merged with top-level defaults.
    """
    defaults = data.get("defaults", {}) or {}
    profiles = data.get("profiles", []) or []
    if not profiles:
        return defaults.copy()
    profile = next((p for p in profiles if p.get("name") == profile_name), None)
    if profile is None:
        profile = profiles[0]
    merged = defaults.copy()
    merged.update(profile)
    return merged


# ══════════════════════════════════════════════════════════════════════════════
#  APPLY PROFILE  ── mutates module-level variables
# ══════════════════════════════════════════════════════════════════════════════

def apply_profile(profile: dict):
    """
    Apply a profile dict to the module-level config variables.
    Supports keys: storage_root, backend, remote_root, drive_root, server,
                   port, user, ssh_key, ssh_password, machine_name,
                   conversations, auto_sync, sync_interval, batch_size,
                   file_concurrency, lock_ttl, hash_cache_size, compress.
    """
    global STORAGE_ROOT, BACKEND, REMOTE_ROOT, LOCAL_DRIVE_ROOT
    global SSH_HOST, SSH_PORT, SSH_USER, SSH_KEY_PATH, SSH_PASSWORD
    global MACHINE_NAME, SELECTED_CONVERSATIONS, AUTO_SYNC, SYNC_INTERVAL
    global BATCH_SIZE, FILE_CONCURRENCY, LOCK_TTL, HASH_CACHE_SIZE, COMPRESS

    if "storage_root" in profile:
        STORAGE_ROOT = Path(profile["storage_root"]).expanduser().resolve()
    if "backend" in profile:
        backend = str(profile["backend"]).lower()
        if backend not in ("local", "sftp"):
            raise ValueError(f"unknown backend {backend!r} (expected 'local' or 'sftp')")
        BACKEND = backend
    if "remote_root" in profile:
        REMOTE_ROOT = PurePosixPath(str(profile["remote_root"]))
    if "drive_root" in profile:
        LOCAL_DRIVE_ROOT = Path(profile["drive_root"]).expanduser().resolve()
    if "server" in profile:
        SSH_HOST = str(profile["server"])
    if "port" in profile:
        SSH_PORT = int(profile["port"])
    if "user" in profile:
        SSH_USER = str(profile["user"])
    if "ssh_key" in profile:
        SSH_KEY_PATH = str(profile["ssh_key"]) if profile["ssh_key"] else None
    if "ssh_password" in profile:
        SSH_PASSWORD = str(profile["ssh_password"]) if profile["ssh_password"] else None
    if "machine_name" in profile:
        MACHINE_NAME = str(profile["machine_name"]) if profile["machine_name"] else None
    if "conversations" in profile:
        sel = profile["conversations"]
        SELECTED_CONVERSATIONS = "all" if sel in (None, "all") else [str(s) for s in sel]
    if "auto_sync" in profile:
        AUTO_SYNC = bool(profile["auto_sync"])
    if "sync_interval" in profile:
        SYNC_INTERVAL = int(profile["sync_interval"])
    if "batch_size" in profile:
        BATCH_SIZE = max(1, int(profile["batch_size"]))
    if "file_concurrency" in profile:
        FILE_CONCURRENCY = max(1, int(profile["file_concurrency"]))
    if "lock_ttl" in profile:
        LOCK_TTL = int(profile["lock_ttl"])
    if "hash_cache_size" in profile:
        HASH_CACHE_SIZE = max(1, int(profile["hash_cache_size"]))
    if "compress" in profile:
        COMPRESS = bool(profile["compress"])


def get_remote_dir() -> Path:
    """Filesystem location of the sync folder for the "local" backend."""
    remote = Path(str(REMOTE_ROOT)).expanduser()
    if remote.is_absolute():
        return remote
    return LOCAL_DRIVE_ROOT / remote
