"""Shared utilities for ngdp_fetch."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def normalize_identifier(identifier: str) -> str:
    """Normalize a caller identifier to backslash path separators."""
    return identifier.strip().replace("/", "\\")


def format_size(size: int) -> str:
    """Format a byte count for display.

    Example:
        >>> format_size(1536)
        '1.5 KB'
    """
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def atomic_write(path: Path, data: bytes) -> None:
    """Write data to a unique temp file beside path, then rename over it.

    Concurrent writers never leave a torn file; a failed write leaves
    no temp file behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
