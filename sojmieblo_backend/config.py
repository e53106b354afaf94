from __future__ import annotations

import os
from pathlib import Path


# Root directory for saved works (metadata + full images, thumbnails in a subdir).
# Default: project-local ./data/works for easier inspection.
# Override with env var SOJMIEBLO_WORKS_ROOT.
_root_raw = os.environ.get("SOJMIEBLO_WORKS_ROOT")
if _root_raw and _root_raw.strip():
    WORKS_ROOT = Path(_root_raw)
else:
    # sojmieblo_backend/ -> project root
    WORKS_ROOT = Path(__file__).resolve().parent.parent / "data" / "works"
WORKS_ROOT = WORKS_ROOT.resolve()

# How old a work may get before the eviction sweep removes it.
MAX_AGE_DAYS = float(os.environ.get("SOJMIEBLO_MAX_AGE_DAYS", "7"))

# How often the server sweeps for expired works, and how long it waits after start.
CLEANUP_INTERVAL_SECONDS = float(os.environ.get("SOJMIEBLO_CLEANUP_INTERVAL_SECONDS", "3600"))
CLEANUP_STARTUP_DELAY_SECONDS = float(os.environ.get("SOJMIEBLO_CLEANUP_STARTUP_DELAY_SECONDS", "10"))

# Decoded upload limit for a single exported image.
MAX_IMAGE_UPLOAD_BYTES = int(os.environ.get("SOJMIEBLO_MAX_IMAGE_UPLOAD_BYTES", str(20 * 1024 * 1024)))  # 20MB

# Image pipeline knobs.
THUMBNAIL_SIZE = int(os.environ.get("SOJMIEBLO_THUMBNAIL_SIZE", "200"))
JPEG_QUALITY = int(os.environ.get("SOJMIEBLO_JPEG_QUALITY", "95"))

LOG_LEVEL = os.environ.get("SOJMIEBLO_LOG_LEVEL", "INFO").upper()

# On-disk layout under WORKS_ROOT.
THUMBS_SUBDIR = "thumbs"
IMAGE_EXT = ".jpg"
METADATA_EXT = ".json"

# Public URL prefix the HTTP layer serves works under.
WORKS_URL_PREFIX = "/api/works"

# Per-client request limit (requests per window). 0 disables limiting.
RATE_LIMIT_MAX_REQUESTS = int(os.environ.get("SOJMIEBLO_RATE_LIMIT_MAX_REQUESTS", "100"))
RATE_LIMIT_WINDOW_SECONDS = float(os.environ.get("SOJMIEBLO_RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
