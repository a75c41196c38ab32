"""
Runtime utility helpers.

- Clock helpers used for request timestamps
- String helpers for log output and file names
"""

from __future__ import annotations

import time
from pathlib import Path


# ===========================
# Clock Utilities
# ===========================

def now_ms() -> int:
    """Return current unix time in milliseconds."""
    return int(time.time() * 1000)


# ===========================
# String Utilities
# ===========================

_UNSAFE_CHARS = '<>:"/\\|?*'


def truncate(s: str, max_len: int = 120, suffix: str = "...") -> str:
    """Truncate a string with suffix."""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def safe_filename(name: str) -> str:
    """Convert arbitrary string to filesystem-safe filename."""
    for ch in _UNSAFE_CHARS:
        name = name.replace(ch, "_")
    return name.strip()


# ===========================
# Directory Helpers
# ===========================

def ensure_dir(path: Path) -> Path:
    """Ensure directory exists."""
    path.mkdir(parents=True, exist_ok=True)
    return path
