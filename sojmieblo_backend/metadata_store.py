from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import METADATA_EXT
from .errors import CorruptMetadataError, InvalidInputError, StorageFailureError, WorkNotFoundError
from .models import Work
from .security import is_safe_basename, safe_join


logger = logging.getLogger(__name__)

METADATA_VERSION = 1


def work_to_payload(work: Work) -> dict[str, Any]:
    return {
        "version": METADATA_VERSION,
        "id": work.id,
        "file_name": work.file_name,
        "created_at": work.created_at.isoformat(),
        "size": work.size,
        "thumbnail_size": work.thumbnail_size,
        "attributes": work.attributes_dict(),
    }


def _parse_created_at(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        # Records are always written in UTC.
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_size(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def work_from_payload(payload: object, *, work_id: str) -> Work:
    """Build a Work from a decoded metadata record, or raise CorruptMetadataError."""
    if not isinstance(payload, dict):
        raise CorruptMetadataError(work_id, "record is not an object")

    if payload.get("id") != work_id:
        raise CorruptMetadataError(work_id, "id does not match filename")
    file_name = payload.get("file_name")
    if not isinstance(file_name, str) or not file_name:
        raise CorruptMetadataError(work_id, "missing file_name")
    created_at = _parse_created_at(payload.get("created_at"))
    if created_at is None:
        raise CorruptMetadataError(work_id, "invalid created_at")
    size = payload.get("size")
    thumbnail_size = payload.get("thumbnail_size")
    if not _is_size(size) or not _is_size(thumbnail_size):
        raise CorruptMetadataError(work_id, "invalid size fields")
    attributes = payload.get("attributes", {})
    if not isinstance(attributes, dict):
        raise CorruptMetadataError(work_id, "attributes is not an object")

    return Work(
        id=work_id,
        file_name=file_name,
        created_at=created_at,
        size=size,
        thumbnail_size=thumbnail_size,
        attributes=attributes,
    )


class MetadataStore:
    """One JSON record per work, stored as ``<root>/<id>.json``.

    The directory listing is the index: ``list()`` simply reads every record
    it finds.
    """

    def __init__(self, root: Path, *, extension: str = METADATA_EXT) -> None:
        self.root = Path(root)
        self.extension = extension

    def ensure_dirs(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, work_id: str) -> Path:
        name = f"{work_id}{self.extension}"
        if not is_safe_basename(name):
            raise ValueError("Invalid work id")
        return safe_join(self.root, name)

    async def exists(self, work_id: str) -> bool:
        return await asyncio.to_thread(self.path_for(work_id).is_file)

    async def write(self, work: Work) -> Path:
        path = self.path_for(work.id)
        try:
            # Records are strict JSON: no NaN or Infinity.
            text = json.dumps(work_to_payload(work), indent=2, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Metadata for work {work.id} is not valid JSON: {exc}") from exc
        try:
            await asyncio.to_thread(path.write_text, text, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to write metadata for work %s: %s", work.id, exc)
            raise StorageFailureError(f"Failed to save metadata for work {work.id}") from exc
        return path

    def _read_sync(self, work_id: str) -> Work:
        path = self.path_for(work_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise WorkNotFoundError(work_id) from exc
        except UnicodeDecodeError as exc:
            raise CorruptMetadataError(work_id, "not UTF-8") from exc
        except OSError as exc:
            raise StorageFailureError(f"Failed to read metadata for work {work_id}") from exc
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise CorruptMetadataError(work_id, "invalid JSON") from exc
        return work_from_payload(payload, work_id=work_id)

    async def read(self, work_id: str) -> Work:
        return await asyncio.to_thread(self._read_sync, work_id)

    async def delete(self, work_id: str) -> None:
        path = self.path_for(work_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as exc:
            raise WorkNotFoundError(work_id) from exc
        except OSError as exc:
            raise StorageFailureError(f"Failed to delete metadata for work {work_id}") from exc

    def _list_sync(self) -> list[Work]:
        try:
            candidates = sorted(self.root.glob(f"*{self.extension}"))
        except OSError as exc:
            logger.error("Failed to list works in %s: %s", self.root, exc)
            return []

        works: list[Work] = []
        for path in candidates:
            if not path.is_file():
                continue
            work_id = path.name[: -len(self.extension)]
            try:
                works.append(self._read_sync(work_id))
            except (WorkNotFoundError, CorruptMetadataError, StorageFailureError, ValueError) as exc:
                # Deleted mid-scan, unreadable or unparsable: skip, keep the rest.
                logger.warning("Skipping metadata record %s: %s", path.name, exc)
                continue

        works.sort(key=lambda work: work.created_at, reverse=True)
        return works

    async def list(self) -> list[Work]:
        """All readable records, newest first."""
        return await asyncio.to_thread(self._list_sync)
