# ABOUTME: Atomic JSON persistence helpers shared by all state files
# ABOUTME: Writes go to a temp file in the same directory and are renamed into place

"""Atomic JSON read/write helpers."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .errors import ParseError, StorageError


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document.

    Args:
        path: File to read
        default: Value returned when the file does not exist

    Raises:
        ParseError: The file exists but is not valid JSON
        StorageError: The file exists but cannot be read
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Cannot read {path}: {e}") from e
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(path, f"invalid JSON ({e.msg} at line {e.lineno})") from e


def atomic_write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` so readers never see a partial file."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise StorageError(f"Cannot write {path}: {e}") from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        raise StorageError(f"Cannot write {path}: {e}") from e
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


def atomic_write_json(path: Path, data: Any) -> None:
    """Serialize ``data`` as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2) + "\n")
