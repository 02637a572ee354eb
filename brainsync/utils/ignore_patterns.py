"""
Exclusion list for files that never take part in a sync
"""
import re
from pathlib import PurePosixPath

# OS metadata, editor backups and temp/partial files
DEFAULT_IGNORE = [
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    "._*",
    "*~",
    "*.bak",
    "*.tmp",
    "*.temp",
    "*.swp",
    "*.part",
]


def _compile_pattern(raw: str):
    """Compile a glob-like file-name pattern into a regex"""
    p = raw.strip()
    if not p or p.startswith("#"):
        return None
    escaped = re.escape(p)
    escaped = escaped.replace(r"\*", "[^/]*")
    escaped = escaped.replace(r"\?", "[^/]")
    try:
        return re.compile(f"^{escaped}$")
    except re.error:
        return None


def load_ignore_patterns(extra: list = None) -> list:
    """Compile the default exclusion list plus any extra patterns"""
    patterns = []
    for raw in DEFAULT_IGNORE + list(extra or []):
        c = _compile_pattern(raw)
        if c:
            patterns.append(c)
    return patterns


_DEFAULT_PATTERNS = load_ignore_patterns()


def is_ignored(rel_path: str, patterns: list = None) -> bool:
    """True if the file name of rel_path matches an exclusion pattern"""
    name = PurePosixPath(rel_path.replace("\\", "/")).name
    pats = _DEFAULT_PATTERNS if patterns is None else patterns
    return any(p.match(name) for p in pats)
