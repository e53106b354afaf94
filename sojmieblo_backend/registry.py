"""Work registry: save, list, fetch and delete works.

A work is three files (full image, thumbnail, metadata record) that share one
id. The registry writes them together, keeps a read-through cache of the
listing and clears it on every mutation.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from .blob_store import BlobKind, BlobStore
from .config import WORKS_URL_PREFIX
from .errors import InvalidInputError, StorageFailureError, WorkNotFoundError
from .metadata_store import MetadataStore
from .models import SavedWork, Work, WorkStats
from .security import generate_work_id, normalize_work_id


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ListingCache:
    """Snapshot of the full listing plus the time it was populated.

    ``get_or_load`` holds a single lock across check-load-store so concurrent
    misses share one scan. ``invalidate`` bumps a generation counter; a scan
    that started before an invalidation does not publish its result.
    """

    def __init__(self, clock: Clock = _utc_now) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._generation = 0
        self.snapshot: tuple[Work, ...] | None = None
        self.populated_at: datetime | None = None

    async def get_or_load(self, loader: Callable[[], Awaitable[list[Work]]]) -> tuple[Work, ...]:
        async with self._lock:
            if self.snapshot is not None:
                return self.snapshot
            generation = self._generation
            works = tuple(await loader())
            if generation == self._generation:
                self.snapshot = works
                self.populated_at = self._clock()
            return works

    def invalidate(self) -> None:
        self._generation += 1
        self.snapshot = None
        self.populated_at = None


class WorkRegistry:
    def __init__(
        self,
        root: Path,
        *,
        url_prefix: str = WORKS_URL_PREFIX,
        blob_store: BlobStore | None = None,
        metadata_store: MetadataStore | None = None,
        clock: Clock = _utc_now,
    ) -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.blobs = blob_store or BlobStore(self.root)
        self.metadata = metadata_store or MetadataStore(self.root)
        self.cache = ListingCache(clock)
        self._clock = clock
        self._last_created_at: datetime | None = None

    def initialize(self) -> None:
        self.metadata.ensure_dirs()
        self.blobs.ensure_dirs()
        logger.info("Works storage ready at %s", self.root)

    def _next_created_at(self) -> datetime:
        # Strictly increasing within the process so back-to-back saves keep insertion order.
        now = self._clock()
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now

    def _resolve_id(self, work_id: str) -> str:
        try:
            return normalize_work_id(work_id)
        except ValueError:
            raise WorkNotFoundError(str(work_id)) from None

    def image_url(self, work_id: str) -> str:
        return f"{self.url_prefix}/{work_id}/download"

    def thumbnail_url(self, work_id: str) -> str:
        return f"{self.url_prefix}/{work_id}/thumbnail"

    @staticmethod
    def _validate_save_input(image_bytes: object, thumbnail_bytes: object, attributes: object) -> dict[str, Any]:
        if not isinstance(image_bytes, (bytes, bytearray, memoryview)) or len(image_bytes) == 0:
            raise InvalidInputError("Image data is empty")
        if not isinstance(thumbnail_bytes, (bytes, bytearray, memoryview)) or len(thumbnail_bytes) == 0:
            raise InvalidInputError("Thumbnail data is empty")
        if attributes is None:
            return {}
        if not isinstance(attributes, Mapping):
            raise InvalidInputError("Attributes must be a mapping")
        attrs = {str(key): value for key, value in attributes.items()}
        try:
            # Strict JSON (no NaN/Infinity); keep the stored form, e.g. tuples become lists.
            return json.loads(json.dumps(attrs, allow_nan=False))
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Attributes are not JSON serializable: {exc}") from exc

    async def save(
        self,
        image_bytes: bytes,
        thumbnail_bytes: bytes,
        attributes: Mapping[str, Any] | None = None,
    ) -> SavedWork:
        """Persist one work: full image, thumbnail and metadata record.

        The three writes run concurrently and are all awaited. If any of them
        fails the call raises StorageFailureError and whatever was written stays
        on disk; a record-less orphan is never listed, and a listed one ages out
        through the eviction sweep.
        """
        attrs = self._validate_save_input(image_bytes, thumbnail_bytes, attributes)
        image_bytes = bytes(image_bytes)
        thumbnail_bytes = bytes(thumbnail_bytes)

        created_at = self._next_created_at()
        work_id = generate_work_id(created_at)
        work = Work(
            id=work_id,
            file_name=self.blobs.file_name(work_id),
            created_at=created_at,
            size=len(image_bytes),
            thumbnail_size=len(thumbnail_bytes),
            attributes=attrs,
        )

        try:
            results = await asyncio.gather(
                self.blobs.write(work_id, image_bytes, BlobKind.FULL),
                self.blobs.write(work_id, thumbnail_bytes, BlobKind.THUMBNAIL),
                self.metadata.write(work),
                return_exceptions=True,
            )
        finally:
            self.cache.invalidate()

        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            logger.error("Saving work %s failed (%d of 3 writes)", work_id, len(failures))
            first = failures[0]
            if isinstance(first, StorageFailureError):
                raise first
            raise StorageFailureError(f"Failed to save work {work_id}") from first

        logger.info("Saved work %s (%d bytes, thumbnail %d bytes)", work_id, work.size, work.thumbnail_size)
        return SavedWork(
            id=work_id,
            file_name=work.file_name,
            image_url=self.image_url(work_id),
            thumbnail_url=self.thumbnail_url(work_id),
        )

    async def list_works(self) -> list[Work]:
        """All works, newest first. Unreadable records are skipped, never raised."""
        works = await self.cache.get_or_load(self.metadata.list)
        # replace() rebuilds each Work with its own attribute copy; the snapshot stays untouched.
        return [replace(work) for work in works]

    async def get(self, work_id: str) -> Work:
        return await self.metadata.read(self._resolve_id(work_id))

    async def get_image_path(self, work_id: str) -> Path:
        work = await self.get(work_id)
        return self.blobs.path_for(work.id, BlobKind.FULL)

    async def get_thumbnail_path(self, work_id: str) -> Path:
        work = await self.get(work_id)
        return self.blobs.path_for(work.id, BlobKind.THUMBNAIL)

    async def delete(self, work_id: str) -> None:
        """Remove a work. Only a missing metadata record counts as failure."""
        work_id = self._resolve_id(work_id)

        for kind in (BlobKind.FULL, BlobKind.THUMBNAIL):
            try:
                await self.blobs.delete(work_id, kind)
            except StorageFailureError as exc:
                logger.warning("Could not delete %s image of work %s: %s", kind.value, work_id, exc)

        await self.metadata.delete(work_id)
        self.cache.invalidate()
        logger.info("Deleted work %s", work_id)

    async def remove_orphan_blobs(self, older_than: datetime) -> int:
        """Delete image files that have no metadata record and were last written before ``older_than``.

        These are left behind by a save whose metadata write failed. Fresh files are
        kept so a save that is still in flight is never touched.
        """
        removed = 0
        for kind in (BlobKind.FULL, BlobKind.THUMBNAIL):
            for work_id, modified_at in await self.blobs.scan(kind):
                if modified_at >= older_than or await self.metadata.exists(work_id):
                    continue
                try:
                    if await self.blobs.delete(work_id, kind):
                        removed += 1
                except StorageFailureError as exc:
                    logger.warning("Could not delete orphan %s image %s: %s", kind.value, work_id, exc)
        if removed:
            logger.info("Removed %d orphan image file(s)", removed)
        return removed

    async def stats(self) -> WorkStats:
        works = await self.list_works()
        if not works:
            return WorkStats(total_works=0, total_size_bytes=0, oldest_created_at=None, newest_created_at=None)
        return WorkStats(
            total_works=len(works),
            total_size_bytes=sum(work.size for work in works),
            oldest_created_at=min(work.created_at for work in works),
            newest_created_at=max(work.created_at for work in works),
        )
