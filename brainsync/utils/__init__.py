"""Utilities (logging, retry, patterns, file utilities, sync context)"""
from .logging import log, vlog, warn, set_verbose
from .retry import retried
from .ignore_patterns import load_ignore_patterns, is_ignored
from .file_utils import atomic_write, md5_bytes

__all__ = [
    "log", "vlog", "warn", "set_verbose",
    "retried",
    "load_ignore_patterns", "is_ignored",
    "atomic_write", "md5_bytes",
]
