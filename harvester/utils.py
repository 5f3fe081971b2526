"""Utility helpers shared across modules."""

from __future__ import annotations

import os
import re
import stat
from datetime import datetime
from hashlib import sha256
from pathlib import Path

_UNSAFE_SUBJECT = re.compile(r"[^A-Za-z0-9_-]")
_WHITESPACE = re.compile(r"\s+")


def received_stamp(dt: datetime | None) -> str:
    """Render the timestamp prefix used for extracted files."""
    if dt is None:
        return "0000-00-00_0000"
    return dt.strftime("%Y-%m-%d_%H%M")


def sanitize_token(value: str | None) -> str:
    """Keep letters, digits, '-' and '_'; whitespace becomes '_'."""
    collapsed = _WHITESPACE.sub("_", (value or "").strip())
    return _UNSAFE_SUBJECT.sub("", collapsed)


def grant_full_access(path: Path) -> None:
    """Open up permissions on a directory tree so a later stage can use it."""
    mode = stat.S_IRWXU | stat.S_IRWXG | stat.S_IRWXO
    os.chmod(path, mode)
    for root, dirs, files in os.walk(path):
        for name in dirs + files:
            os.chmod(os.path.join(root, name), mode)


def human_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def sha256_file(path: Path) -> str:
    """Hex digest of a file on disk."""
    digest = sha256()
    with path.open("rb") as handle:
        for block in iter(lambda: handle.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()
