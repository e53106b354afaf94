"""Image pipeline for exported works.

Turns the browser's data URL into the byte buffers the registry stores: a
re-encoded full JPEG, a JPEG thumbnail, and the basic image facts.
"""
from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import JPEG_QUALITY, THUMBNAIL_SIZE
from .errors import InvalidInputError


_DATA_URL_PREFIX_RE = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)

# EXIF IFD0 tags.
_TAG_IMAGE_DESCRIPTION = 0x010E
_TAG_SOFTWARE = 0x0131
_TAG_ARTIST = 0x013B
_TAG_COPYRIGHT = 0x8298

WATERMARK_TAGS = {
    _TAG_COPYRIGHT: "Created by Sojmieblo",
    _TAG_SOFTWARE: "Sojmieblo",
    _TAG_ARTIST: "Sojmieblo User",
    _TAG_IMAGE_DESCRIPTION: "Deformed image created with Sojmieblo",
}


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str | None
    mode: str


def decode_data_url(data_url: str) -> bytes:
    """Decode ``data:image/...;base64,<payload>`` (the prefix is optional)."""
    if not isinstance(data_url, str) or not data_url.strip():
        raise InvalidInputError("Image data is empty")
    payload = _DATA_URL_PREFIX_RE.sub("", data_url.strip(), count=1)
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError("Image data is not valid base64") from exc
    if not data:
        raise InvalidInputError("Image data is empty")
    return data


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise InvalidInputError("Unsupported or corrupt image") from exc
    return image


def _to_rgb(image: Image.Image) -> Image.Image:
    image = ImageOps.exif_transpose(image)
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        # JPEG has no alpha: flatten onto white.
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def get_image_info(data: bytes) -> ImageInfo:
    with _open(data) as image:
        return ImageInfo(width=image.width, height=image.height, format=image.format, mode=image.mode)


def convert_to_jpeg(data: bytes, *, quality: int = JPEG_QUALITY, watermark: bool = True) -> bytes:
    """Re-encode as a high-quality JPEG, dropping the source metadata."""
    with _open(data) as image:
        rgb = _to_rgb(image)
        exif = Image.Exif()
        if watermark:
            for tag, value in WATERMARK_TAGS.items():
                exif[tag] = value
        out = io.BytesIO()
        rgb.save(out, format="JPEG", quality=quality, subsampling=0, optimize=True, exif=exif.tobytes())
        return out.getvalue()


def create_thumbnail(data: bytes, *, max_size: int = THUMBNAIL_SIZE) -> bytes:
    """Fit inside ``max_size`` x ``max_size``; never enlarges."""
    with _open(data) as image:
        rgb = _to_rgb(image)
        # thumbnail() only ever shrinks.
        rgb.thumbnail((max_size, max_size))
        out = io.BytesIO()
        rgb.save(out, format="JPEG", quality=85, optimize=True)
        return out.getvalue()
