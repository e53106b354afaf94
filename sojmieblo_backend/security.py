from __future__ import annotations

import re
import uuid
from datetime import datetime
from pathlib import Path


_WORK_ID_RE = re.compile(r"^\d{8}-\d{6}-[0-9a-f]{10}$")


def generate_work_id(now: datetime) -> str:
    """Build a fresh work id: ``YYYYMMDD-HHMMSS-<10 hex chars>``.

    The timestamp prefix keeps filenames in chronological order; the random
    suffix makes collisions within the same second negligible.
    """
    return f"{now:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:10]}"


def normalize_work_id(work_id: str) -> str:
    """Validate and normalize a work id.

    Ids end up in filesystem paths, so anything that is not exactly our own
    format is rejected.
    """
    if not isinstance(work_id, str):
        raise ValueError("Invalid work id")
    work_id = work_id.strip().lower()
    if not _WORK_ID_RE.match(work_id):
        raise ValueError("Invalid work id")
    return work_id


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal when deriving file paths from ids.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
