from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from .config import IMAGE_EXT, THUMBS_SUBDIR
from .errors import StorageFailureError
from .security import is_safe_basename, normalize_work_id, safe_join


logger = logging.getLogger(__name__)


class BlobKind(str, Enum):
    FULL = "full"
    THUMBNAIL = "thumbnail"


class BlobStore:
    """Raw image bytes on disk, addressed by work id and kind.

    Full images live directly under ``root``; thumbnails under ``root/thumbs``.
    The store never interprets the bytes.
    """

    def __init__(self, root: Path, *, thumbs_subdir: str = THUMBS_SUBDIR, extension: str = IMAGE_EXT) -> None:
        self.root = Path(root)
        self.thumbs_dir = self.root / thumbs_subdir
        self.extension = extension

    def ensure_dirs(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.thumbs_dir.mkdir(parents=True, exist_ok=True)

    def file_name(self, work_id: str) -> str:
        return f"{work_id}{self.extension}"

    def path_for(self, work_id: str, kind: BlobKind) -> Path:
        name = self.file_name(work_id)
        if not is_safe_basename(name):
            raise ValueError("Invalid work id")
        base = self.thumbs_dir if kind is BlobKind.THUMBNAIL else self.root
        return safe_join(base, name)

    def _scan_sync(self, kind: BlobKind) -> list[tuple[str, datetime]]:
        base = self.thumbs_dir if kind is BlobKind.THUMBNAIL else self.root
        found: list[tuple[str, datetime]] = []
        try:
            candidates = sorted(base.glob(f"*{self.extension}"))
        except OSError as exc:
            logger.error("Failed to scan %s: %s", base, exc)
            return []
        for path in candidates:
            stem = path.name[: -len(self.extension)]
            try:
                work_id = normalize_work_id(stem)
            except ValueError:
                continue
            if work_id != stem:
                continue
            try:
                stat = path.stat()
            except OSError:
                # Gone since the glob.
                continue
            found.append((work_id, datetime.fromtimestamp(stat.st_mtime, timezone.utc)))
        return found

    async def scan(self, kind: BlobKind) -> list[tuple[str, datetime]]:
        """Ids and modification times of every stored file of ``kind``."""
        return await asyncio.to_thread(self._scan_sync, kind)

    async def write(self, work_id: str, data: bytes, kind: BlobKind) -> Path:
        path = self.path_for(work_id, kind)
        try:
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as exc:
            logger.error("Failed to write %s blob for work %s: %s", kind.value, work_id, exc)
            raise StorageFailureError(f"Failed to save {kind.value} image for work {work_id}") from exc
        return path

    async def read(self, work_id: str, kind: BlobKind) -> bytes:
        path = self.path_for(work_id, kind)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageFailureError(f"Failed to read {kind.value} image for work {work_id}") from exc

    async def delete(self, work_id: str, kind: BlobKind) -> bool:
        """Remove one blob. Returns False when there was nothing to remove."""
        path = self.path_for(work_id, kind)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageFailureError(f"Failed to delete {kind.value} image for work {work_id}") from exc
        return True
