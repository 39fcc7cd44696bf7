"""Saving a user-finalized (cropped) image and its manually placed corners."""

import logging
import shutil
from typing import Any, Dict, List, Optional

from PIL import Image

from artwall.meta.library import Library
from artwall.meta.store import MetadataStore
from artwall.services import raster

log = logging.getLogger(__name__)


def _valid_corners(corners) -> bool:
    if not isinstance(corners, list) or len(corners) != 4:
        return False
    for point in corners:
        if not isinstance(point, (list, tuple)) or len(point) != 2:
            return False
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in point):
            return False
    return True


def save_final(
    store: MetadataStore,
    library: Library,
    base: str,
    image_path,
    corners: Optional[List[List[float]]] = None,
) -> Dict[str, Any]:
    """
    Store ``image_path`` as ``<base>_final.jpg`` and record manual corners.

    Corners are only recorded when exactly four [x, y] pairs are given.
    ``original_filename`` defaults to ``base`` if the document has none.

    Raises:
        ValueError: ``image_path`` is not a readable image
    """
    width, height = raster.dimensions(image_path)
    library.ensure_dirs()
    target = library.final_image_path(base)

    if raster.mime_type(image_path) == "image/jpeg":
        shutil.copyfile(image_path, target)
    else:
        with Image.open(image_path) as img:
            img.convert("RGB").save(target, "JPEG", quality=95)
    log.info("Saved final image %s (%dx%d)", target.name, width, height)

    if corners is not None and not _valid_corners(corners):
        log.warning("Ignoring corners for %s: expected 4 [x, y] pairs, got %r", base, corners)
        corners = None

    def _apply(doc):
        if corners is not None:
            doc["manual_corners"] = [list(p) for p in corners]
        doc.setdefault("original_filename", base)
        return dict(doc)

    return store.update(base, _apply)
