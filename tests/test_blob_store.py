"""Tests for BlobStore."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from sojmieblo_backend.blob_store import BlobKind, BlobStore
from sojmieblo_backend.errors import StorageFailureError

WORK_ID = "20240501-120000-0123456789"


@pytest.fixture
def store(tmp_path: Path) -> BlobStore:
    blobs = BlobStore(tmp_path / "works")
    blobs.ensure_dirs()
    return blobs


def test_paths_derive_from_id_and_kind(store: BlobStore, tmp_path: Path) -> None:
    root = (tmp_path / "works").resolve()
    assert store.path_for(WORK_ID, BlobKind.FULL) == root / f"{WORK_ID}.jpg"
    assert store.path_for(WORK_ID, BlobKind.THUMBNAIL) == root / "thumbs" / f"{WORK_ID}.jpg"


def test_ensure_dirs_creates_thumbs(tmp_path: Path) -> None:
    store = BlobStore(tmp_path / "nested" / "works")
    store.ensure_dirs()
    assert store.thumbs_dir.is_dir()


@pytest.mark.asyncio
async def test_write_then_read(store: BlobStore) -> None:
    await store.write(WORK_ID, b"full", BlobKind.FULL)
    await store.write(WORK_ID, b"thumb", BlobKind.THUMBNAIL)
    assert await store.read(WORK_ID, BlobKind.FULL) == b"full"
    assert await store.read(WORK_ID, BlobKind.THUMBNAIL) == b"thumb"


@pytest.mark.asyncio
async def test_read_missing_is_storage_failure(store: BlobStore) -> None:
    with pytest.raises(StorageFailureError):
        await store.read(WORK_ID, BlobKind.FULL)


@pytest.mark.asyncio
async def test_delete_is_idempotent(store: BlobStore) -> None:
    await store.write(WORK_ID, b"full", BlobKind.FULL)
    assert await store.delete(WORK_ID, BlobKind.FULL) is True
    assert await store.delete(WORK_ID, BlobKind.FULL) is False
    assert not store.path_for(WORK_ID, BlobKind.FULL).exists()


@pytest.mark.asyncio
async def test_write_into_missing_directory_fails(tmp_path: Path) -> None:
    store = BlobStore(tmp_path / "never-created")
    with pytest.raises(StorageFailureError):
        await store.write(WORK_ID, b"data", BlobKind.THUMBNAIL)


@pytest.mark.parametrize("work_id", ["thumbs/20240501-120000-0123456789", "../escape"])
def test_path_for_rejects_nested_names(store: BlobStore, work_id: str) -> None:
    with pytest.raises(ValueError):
        store.path_for(work_id, BlobKind.FULL)


@pytest.mark.asyncio
async def test_scan_lists_own_files_with_mtime(store: BlobStore) -> None:
    path = await store.write(WORK_ID, b"thumb", BlobKind.THUMBNAIL)
    os.utime(path, (1_700_000_000, 1_700_000_000))
    (store.thumbs_dir / "notes.jpg").write_bytes(b"x")
    (store.thumbs_dir / f"{WORK_ID}.png").write_bytes(b"x")

    assert await store.scan(BlobKind.THUMBNAIL) == [
        (WORK_ID, datetime.fromtimestamp(1_700_000_000, timezone.utc)),
    ]
    assert await store.scan(BlobKind.FULL) == []
