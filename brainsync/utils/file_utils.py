"""
File utilities (MD5, atomic writes)
"""
import hashlib
import os
import tempfile
from pathlib import Path


def _md5_local(path: Path) -> str:
    """Compute MD5 hash of a local file"""
    h = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def md5_bytes(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def atomic_write(path: Path, data: bytes):
    """Write data to path via a sibling temp file and rename.

    The destination is either left untouched or fully replaced; a reader never
    observes a half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".part", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
