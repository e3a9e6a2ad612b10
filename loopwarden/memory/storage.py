"""
Store File Helpers
==================

Checksums and atomic JSON writes shared by the semantic memory store, the
staging area, and the overseer's audit log.

Writes go to a temp file in the target directory and are renamed into
place, so a crash mid-write never leaves a truncated store. There is no
cross-process locking: two processes saving the same file can lose each
other's updates.
"""

import hashlib
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class CorruptionError(Exception):
    """A store failed checksum verification and no valid backup exists."""

    def __init__(self, message: str, path: Path):
        super().__init__(message)
        self.path = path


def compute_checksum(items: Any) -> str:
    """SHA-256 of the compact JSON serialization of items."""
    payload = json.dumps(items, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON to path via temp file and rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=indent, ensure_ascii=False)

    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.stem + "_", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def backup_file(path: Path, backup_path: Path) -> bool:
    """Copy path to backup_path; failures are logged, not raised."""
    if not path.exists():
        return False
    try:
        shutil.copy2(path, backup_path)
        return True
    except OSError as e:
        logger.warning("Could not back up %s: %s", path, e)
        return False
