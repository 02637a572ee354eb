"""
Distributed sync lock

A TTL-bounded token stored as the plaintext JSON object
<remote root>/sync.lock = {"machineId": ..., "expiresAt": <epoch ms>}.
At most one machine runs a full sync pass while it holds the token; a
crashed holder is tolerated because the token simply expires.
"""
import json
import time
from dataclasses import dataclass
from typing import Optional

from .remote_store import ObjectStore
from ..utils.context import SyncContext, ensure_context
from ..utils.logging import log, vlog, warn

LOCK_PATH = "sync.lock"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class LockInfo:
    machine_id: str
    expires_at: int

    def expired(self, now_ms: Optional[int] = None) -> bool:
        return (now_ms if now_ms is not None else _now_ms()) >= self.expires_at

    def to_bytes(self) -> bytes:
        return json.dumps({"machineId": self.machine_id, "expiresAt": self.expires_at}).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> Optional["LockInfo"]:
        try:
            data = json.loads(raw.decode("utf-8"))
            return cls(machine_id=str(data["machineId"]), expires_at=int(data["expiresAt"]))
        except (ValueError, KeyError, TypeError):
            return None


class DistributedLock:
    def __init__(self, store: ObjectStore, ttl: int = 300):
        self.store = store
        self.ttl = ttl

    def read(self) -> Optional[LockInfo]:
        """Current lock holder, or None when no lock object exists."""
        return self._parse(self.store.get_object(LOCK_PATH))

    @staticmethod
    def _parse(raw: Optional[bytes]) -> Optional[LockInfo]:
        if raw is None:
            return None
        info = LockInfo.from_bytes(raw)
        if info is None:
            # Unparseable lock: treat as expired so it gets replaced
            warn("[lock] sync.lock is unreadable, treating it as expired")
            return LockInfo(machine_id="", expires_at=0)
        return info

    def acquire(self, machine_id: str, ttl: Optional[int] = None,
                ctx: Optional[SyncContext] = None) -> bool:
        """Try to take the lock for ttl seconds. Never waits or retries.

        Returns False when another machine holds an unexpired lock. An
        expired lock, or one already held by machine_id, is replaced, but
        only while it is still the exact token that was judged replaceable.
        The lock is confirmed by reading it back after the create.
        """
        ctx = ensure_context(ctx)
        ctx.check()
        ttl = self.ttl if ttl is None else ttl
        token = LockInfo(machine_id=machine_id, expires_at=_now_ms() + int(ttl * 1000))

        raw = self.store.get_object(LOCK_PATH)
        current = self._parse(raw)
        if current is not None:
            if current.machine_id != machine_id and not current.expired():
                vlog(f"[lock] held by {current.machine_id} until {current.expires_at}")
                return False
            if self.store.get_object(LOCK_PATH) != raw:
                vlog("[lock] sync.lock changed while replacing it")
                return False
            if current.machine_id != machine_id:
                log(f"[lock] replacing expired lock of {current.machine_id or 'unknown machine'}")
            self.store.delete_object(LOCK_PATH)

        if not self.store.create_object(LOCK_PATH, token.to_bytes()):
            # Someone created it between our read and our create
            vlog("[lock] lost the race for sync.lock")
            return False
        if self.store.get_object(LOCK_PATH) != token.to_bytes():
            vlog("[lock] sync.lock was replaced right after our create")
            return False
        vlog(f"[lock] acquired by {machine_id} (ttl {ttl}s)")
        return True

    def release(self, machine_id: str):
        """Delete the lock only if machine_id still owns it."""
        current = self.read()
        if current is None:
            return
        if current.machine_id != machine_id:
            warn(f"[lock] not releasing: lock now belongs to {current.machine_id or 'unknown machine'}")
            return
        self.store.delete_object(LOCK_PATH)
        vlog(f"[lock] released by {machine_id}")
