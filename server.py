from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from sojmieblo_backend import imaging
from sojmieblo_backend.config import (
    CLEANUP_INTERVAL_SECONDS,
    CLEANUP_STARTUP_DELAY_SECONDS,
    LOG_LEVEL,
    MAX_AGE_DAYS,
    MAX_IMAGE_UPLOAD_BYTES,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    WORKS_ROOT,
    WORKS_URL_PREFIX,
)
from sojmieblo_backend.errors import (
    CorruptMetadataError,
    InvalidInputError,
    StorageFailureError,
    WorkNotFoundError,
)
from sojmieblo_backend.eviction import EvictionScheduler
from sojmieblo_backend.ratelimit import RateLimiter
from sojmieblo_backend.registry import WorkRegistry


BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"

logger = logging.getLogger(__name__)


class SaveWorkRequest(BaseModel):
    image: str
    metadata: dict[str, Any] = Field(default_factory=dict)


def _registry(request: Request) -> WorkRegistry:
    return request.app.state.registry


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _process_upload(raw: bytes) -> tuple[imaging.ImageInfo, bytes, bytes]:
    # CPU-bound Pillow work; runs in a worker thread.
    info = imaging.get_image_info(raw)
    return info, imaging.convert_to_jpeg(raw), imaging.create_thumbnail(raw)


def create_app(
    works_root: Optional[Path] = None,
    *,
    start_eviction: bool = True,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    root = Path(works_root) if works_root is not None else WORKS_ROOT
    limiter = rate_limiter or RateLimiter(RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry = WorkRegistry(root, url_prefix=WORKS_URL_PREFIX)
        registry.initialize()
        app.state.registry = registry

        scheduler = EvictionScheduler(
            registry,
            max_age=timedelta(days=MAX_AGE_DAYS),
            interval=CLEANUP_INTERVAL_SECONDS,
            startup_delay=CLEANUP_STARTUP_DELAY_SECONDS,
        )
        app.state.eviction = scheduler
        if start_eviction:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    app = FastAPI(lifespan=lifespan)
    app.state.rate_limiter = limiter

    @app.middleware("http")
    async def limit_requests(request: Request, call_next):
        key = _client_key(request)
        if not limiter.hit(key):
            logger.warning("Rate limit exceeded for %s", key)
            return JSONResponse(
                {"detail": "Too many requests, please try again later"},
                status_code=429,
                headers={"Retry-After": str(limiter.retry_after(key))},
            )
        return await call_next(request)

    @app.post("/api/save-work")
    async def save_work(payload: SaveWorkRequest, request: Request) -> JSONResponse:
        """Convert an exported canvas (data URL) to JPEG + thumbnail and store it."""
        try:
            raw = imaging.decode_data_url(payload.image)
        except InvalidInputError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if len(raw) > MAX_IMAGE_UPLOAD_BYTES:
            raise HTTPException(status_code=413, detail="Image too large")

        try:
            info, image_bytes, thumbnail_bytes = await asyncio.to_thread(_process_upload, raw)
        except InvalidInputError as e:
            raise HTTPException(status_code=400, detail=str(e))

        attributes = {
            "originalWidth": info.width,
            "originalHeight": info.height,
            "format": info.format.lower() if info.format else None,
            "userMetadata": payload.metadata,
        }
        try:
            saved = await _registry(request).save(image_bytes, thumbnail_bytes, attributes)
        except InvalidInputError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StorageFailureError:
            raise HTTPException(status_code=500, detail="Failed to save work")
        return JSONResponse({"success": True, "work": saved.to_public_dict()})

    @app.get("/api/works")
    async def list_works(request: Request) -> JSONResponse:
        works = await _registry(request).list_works()
        return JSONResponse({"works": [work.to_public_dict() for work in works]})

    # Declared before /api/works/{work_id} so "stats" is not taken for an id.
    @app.get("/api/works/stats")
    async def works_stats(request: Request) -> JSONResponse:
        stats = await _registry(request).stats()
        return JSONResponse(stats.to_public_dict())

    @app.get("/api/works/{work_id}")
    async def get_work(work_id: str, request: Request) -> JSONResponse:
        try:
            work = await _registry(request).get(work_id)
        except WorkNotFoundError:
            raise HTTPException(status_code=404, detail="Work not found")
        except (CorruptMetadataError, StorageFailureError):
            raise HTTPException(status_code=500, detail="Failed to read work")
        return JSONResponse({"work": work.to_public_dict()})

    async def _serve_blob(path_lookup, work_id: str, *, download: bool) -> FileResponse:
        try:
            path = await path_lookup(work_id)
        except WorkNotFoundError:
            raise HTTPException(status_code=404, detail="Work not found")
        except (CorruptMetadataError, StorageFailureError):
            raise HTTPException(status_code=500, detail="Failed to read work")
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Image not found")

        headers = {"X-Content-Type-Options": "nosniff"}
        if download:
            headers["Content-Disposition"] = f'attachment; filename="{path.name}"'
        return FileResponse(path, media_type="image/jpeg", headers=headers)

    @app.get("/api/works/{work_id}/download")
    async def download_work(work_id: str, request: Request) -> FileResponse:
        return await _serve_blob(_registry(request).get_image_path, work_id, download=True)

    @app.get("/api/works/{work_id}/thumbnail")
    async def work_thumbnail(work_id: str, request: Request) -> FileResponse:
        return await _serve_blob(_registry(request).get_thumbnail_path, work_id, download=False)

    @app.delete("/api/works/{work_id}")
    async def delete_work(work_id: str, request: Request) -> JSONResponse:
        try:
            await _registry(request).delete(work_id)
        except WorkNotFoundError:
            raise HTTPException(status_code=404, detail="Work not found")
        except StorageFailureError:
            raise HTTPException(status_code=500, detail="Failed to delete work")
        return JSONResponse({"success": True})

    # Static frontend (the deformation UI) when it is deployed alongside.
    # Note: define API routes above, then mount static at '/'.
    if PUBLIC_DIR.is_dir():
        app.mount("/", StaticFiles(directory=str(PUBLIC_DIR), html=True), name="static")

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
