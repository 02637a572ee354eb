"""
Cancellation and progress reporting threaded through sync calls
"""
import threading
from typing import Callable, Optional

from ..core.errors import CancellationError


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a sync pass.

    Work never gets interrupted mid-call; checkpoints call
    raise_if_cancelled() before starting the next unit of work.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CancellationError()


class SyncContext:
    """Carries a cancellation token and an optional progress sink.

    The progress sink is any callable taking a single message string.
    """

    def __init__(self, token: Optional[CancellationToken] = None,
                 progress: Optional[Callable[[str], None]] = None):
        self.token = token or CancellationToken()
        self._progress = progress

    def report(self, message: str):
        if self._progress is not None:
            self._progress(message)

    def check(self):
        self.token.raise_if_cancelled()

    @property
    def cancelled(self) -> bool:
        return self.token.is_cancelled


def ensure_context(ctx: Optional[SyncContext]) -> SyncContext:
    return ctx if ctx is not None else SyncContext()
