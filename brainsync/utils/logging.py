"""
Console logging for brainsync
"""
import threading
from datetime import datetime

_verbose = False
_print_lock = threading.Lock()


def set_verbose(verbose: bool):
    """Enable or disable verbose (per-file) output"""
    global _verbose
    _verbose = verbose


def is_verbose() -> bool:
    return _verbose


def log(msg: str):
    """Print a message prefixed with a timestamp.

    Worker threads of the transfer pipeline log concurrently, so lines are
    emitted under a lock to keep them whole.
    """
    ts = datetime.now().strftime("%H:%M:%S")
    with _print_lock:
        print(f"[{ts}] {msg}", flush=True)


def vlog(msg: str):
    """Log only when verbose mode is on"""
    if _verbose:
        log(msg)


def warn(msg: str):
    """Log a warning message"""
    log(f"⚠  {msg}")
