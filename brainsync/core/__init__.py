"""Core functionality (codec, hashing, remote store, manifest, lock, engine)"""
from .errors import (
    SyncError, DecryptionError, FormatError, LockBusyError,
    ManifestUnavailableError, ObjectNotFoundError, CancellationError,
    NotConfiguredError, SyncInProgressError,
)
from .crypto import encrypt, decrypt

__all__ = [
    "SyncError", "DecryptionError", "FormatError", "LockBusyError",
    "ManifestUnavailableError", "ObjectNotFoundError", "CancellationError",
    "NotConfiguredError", "SyncInProgressError",
    "encrypt", "decrypt",
]
