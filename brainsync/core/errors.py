"""
Error taxonomy for the sync engine
"""
from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by brainsync."""


class DecryptionError(SyncError):
    """Wrong password, or the ciphertext / authentication tag was tampered with."""


class FormatError(SyncError):
    """An encrypted blob carries an unknown version header or is truncated."""


class LockBusyError(SyncError):
    """Another machine currently holds the sync lock."""

    def __init__(self, holder: Optional[str] = None, expires_at: Optional[int] = None):
        self.holder = holder
        self.expires_at = expires_at
        msg = "Sync is currently locked by another machine. Please try again later."
        if holder:
            msg = f"Sync is currently locked by machine {holder}. Please try again later."
        super().__init__(msg)


class ManifestUnavailableError(SyncError):
    """The remote manifest is unreachable, unparseable or cannot be decrypted."""


class ObjectNotFoundError(SyncError):
    """A manifest entry references a remote object that does not exist."""

    def __init__(self, path: str, conversation_id: Optional[str] = None):
        self.path = path
        self.conversation_id = conversation_id
        super().__init__(f"Remote object not found: {path}")


class CancellationError(SyncError):
    """Raised at a cancellation checkpoint once cancel() was requested."""

    def __init__(self, msg: str = "Sync cancelled"):
        super().__init__(msg)


class NotConfiguredError(SyncError):
    """Sync has no password or machine identity yet."""


class SyncInProgressError(SyncError):
    """A sync pass is already running in this process."""

    def __init__(self, msg: str = "Sync already in progress"):
        super().__init__(msg)


# Errors that a retry cannot fix.
PERMANENT_ERRORS = (
    ObjectNotFoundError,
    DecryptionError,
    FormatError,
    CancellationError,
    LockBusyError,
)
