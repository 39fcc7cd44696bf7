"""Raster image helpers: dimensions, MIME type, data URIs.

Only reads headers; pixel work (rotate/resize/thumbnails) lives elsewhere.
"""

import base64
from pathlib import Path
from typing import Tuple

from PIL import Image, UnidentifiedImageError

SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")

_MEDIA_TYPE_MAP = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def dimensions(path) -> Tuple[int, int]:
    """Return (width, height). Raises ValueError if the file isn't a readable image."""
    try:
        with Image.open(path) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Not a readable image: {path} ({e})")


def mime_type(path) -> str:
    """MIME type from the image header, falling back to the file extension."""
    try:
        with Image.open(path) as img:
            mime = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        mime = None
    if mime:
        return mime
    return _MEDIA_TYPE_MAP.get(Path(path).suffix.lower(), "application/octet-stream")


def data_uri(path) -> str:
    """Encode an image file as a data: URI for inline prediction input."""
    with open(path, "rb") as f:
        data = f.read()
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{mime_type(path)};base64,{encoded}"
