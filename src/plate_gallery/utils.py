"""
Filesystem and naming helpers shared by the storage and database layers.
"""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Object names keep letters, digits, dots and hyphens; everything else becomes "_"
UNSAFE_FILENAME_PATTERN = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str, fallback: str = "image") -> str:
    """
    Make an uploaded file name safe to use inside an object key.

    Example:
        >>> sanitize_filename("my car (1).jpg")
        'my_car__1_.jpg'
    """
    cleaned = UNSAFE_FILENAME_PATTERN.sub("_", Path(filename or "").name)
    return cleaned or fallback


def build_object_key(filename: str, prefix: str = "palindromes", now_ms: Optional[int] = None) -> tuple[str, str]:
    """
    Build a unique object key for an uploaded image.

    Args:
        filename: Original file name from the upload form
        prefix: Folder inside the bucket
        now_ms: Epoch milliseconds to use instead of the current time

    Returns:
        A tuple of (file_name, object_key), e.g.
        ("1718000000000-car.jpg", "palindromes/1718000000000-car.jpg")
    """
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    file_name = f"{timestamp}-{sanitize_filename(filename)}"
    key = f"{prefix.strip('/')}/{file_name}" if prefix else file_name
    return file_name, key


def ensure_directory(path: Path) -> Path:
    """Create a directory (and parents) if missing; returns the path for chaining."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
