"""Database path resolution.

Turns a user-supplied filename into the canonical key used by the
connection pool. ``:memory:`` is reserved and never joined with the data
directory.
"""

import os
import re
from pathlib import Path

MEMORY_PATH = ":memory:"

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:[\\/]")


def is_memory_path(path: str | None) -> bool:
    """Return True for the in-memory sentinel."""
    return path == MEMORY_PATH


def is_absolute_path(value: str) -> bool:
    """Check for a POSIX root, a UNC/backslash root or a Windows drive marker."""
    return value.startswith(("/", "\\")) or bool(_DRIVE_PREFIX.match(value))


def resolve_db_path(
    value: str | None,
    active_path: str | None,
    data_dir: str | Path,
) -> str:
    """
    Resolve a database reference to its canonical path.

    - None or empty: the active database, else the in-memory sentinel
    - ``:memory:``: returned unchanged
    - absolute path: returned unchanged
    - anything else: joined beneath ``data_dir``
    """
    if not value:
        return active_path or MEMORY_PATH

    if is_memory_path(value) or is_absolute_path(value):
        return value

    return os.path.normpath(os.path.join(str(data_dir), value))
