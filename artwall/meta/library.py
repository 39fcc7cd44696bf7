"""On-disk layout of an image library.

    <root>/images/<base>_original.<ext>         uploaded source image
    <root>/images/<base>_original.<ext>.json    metadata document
    <root>/images/<base>_final.<ext>            finalized (cropped) artwork
    <root>/images/<base>_variant_<name>.jpg     variant artifact
    <root>/images/<base>_ai_form.jpg            AI form artifact
    <root>/variants/<name>.<ext>                variant templates (wall photos)

Thumbnails sit beside their image as ``<stem>_thumb<suffix>``.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from artwall.utils import get_artwall_home

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp")

_SUFFIX_RE = re.compile(r"_(original|final|ai_form|variant_.+)$")


@dataclass
class VariantTemplate:
    """A wall template that a variant composes the artwork into."""
    name: str
    filename: str
    path: Path


def thumbnail_path(path: Path) -> Path:
    """Return the thumbnail sibling of an image path."""
    path = Path(path)
    return path.with_name(f"{path.stem}_thumb{path.suffix}")


def extract_base_name(filename: str) -> str:
    """
    Strip extensions and job suffixes from an image filename.

    IMG_2106_2_original.jpg.json -> IMG_2106_2
    IMG_2106_2_variant_loft_thumb.jpg -> IMG_2106_2
    """
    name = Path(filename).name
    if name.endswith(".json"):
        name = name[: -len(".json")]
    stem = Path(name).stem
    if stem.endswith("_thumb"):
        stem = stem[: -len("_thumb")]
    variant_pos = stem.find("_variant_")
    if variant_pos != -1:
        return stem[:variant_pos]
    return _SUFFIX_RE.sub("", stem)


def split_variant_filename(filename: str) -> Optional[tuple]:
    """Return (base, variant_name) for a ``*_variant_*`` filename, else None."""
    stem = Path(filename).stem
    if stem.endswith("_thumb"):
        stem = stem[: -len("_thumb")]
    pos = stem.find("_variant_")
    if pos == -1:
        return None
    return stem[:pos], stem[pos + len("_variant_"):]


class Library:
    """Deterministic paths for one library root."""

    def __init__(self, root=None):
        self.root = Path(root) if root is not None else get_artwall_home()
        self.images_dir = self.root / "images"
        self.variants_dir = self.root / "variants"

    def ensure_dirs(self):
        self.images_dir.mkdir(parents=True, exist_ok=True)
        self.variants_dir.mkdir(parents=True, exist_ok=True)

    # -- metadata documents ---------------------------------------------------

    def metadata_path(self, base: str) -> Path:
        """Path of the metadata document for ``base``.

        An existing ``<base>_original.<ext>.json`` wins; otherwise the jpg name.
        """
        for ext in IMAGE_EXTENSIONS:
            candidate = self.images_dir / f"{base}_original.{ext}.json"
            if candidate.is_file():
                return candidate
        return self.images_dir / f"{base}_original.jpg.json"

    def has_metadata(self, base: str) -> bool:
        return self.metadata_path(base).is_file()

    def list_bases(self) -> List[str]:
        """Bases of every metadata document in the library, sorted."""
        if not self.images_dir.is_dir():
            return []
        bases = set()
        for path in self.images_dir.glob("*_original.*.json"):
            bases.add(extract_base_name(path.name))
        return sorted(bases)

    # -- images -----------------------------------------------------------------

    def _find_with_prefix(self, prefix: str) -> Optional[Path]:
        if not self.images_dir.is_dir():
            return None
        for path in sorted(self.images_dir.iterdir()):
            if not path.is_file():
                continue
            if path.suffix.lower().lstrip(".") not in IMAGE_EXTENSIONS:
                continue
            if path.stem.endswith("_thumb"):
                continue
            if path.stem.startswith(prefix):
                return path
        return None

    def find_original_image(self, base: str) -> Optional[Path]:
        return self._find_with_prefix(f"{base}_original")

    def find_final_image(self, base: str) -> Optional[Path]:
        return self._find_with_prefix(f"{base}_final")

    def final_image_path(self, base: str) -> Path:
        """Where a newly saved final image is written."""
        return self.images_dir / f"{base}_final.jpg"

    def variant_target_path(self, base: str, variant_name: str) -> Path:
        return self.images_dir / f"{base}_variant_{variant_name}.jpg"

    def ai_form_target_path(self, base: str) -> Path:
        return self.images_dir / f"{base}_ai_form.jpg"

    # -- templates --------------------------------------------------------------

    def list_variant_templates(self) -> List[VariantTemplate]:
        """Image files in the variants directory, sorted by filename."""
        if not self.variants_dir.is_dir():
            return []
        templates = []
        for path in sorted(self.variants_dir.iterdir()):
            if not path.is_file():
                continue
            if path.suffix.lower().lstrip(".") not in IMAGE_EXTENSIONS:
                continue
            templates.append(VariantTemplate(name=path.stem, filename=path.name, path=path))
        return templates
