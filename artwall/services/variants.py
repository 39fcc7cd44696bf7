"""Variant orchestrator: compose a finalized painting onto each wall template.

One job per (image, template) pair, tracked at
``ai_painting_variants.variants[<name>]``. A pass only submits predictions;
``artwall poll`` later downloads the outputs. The active-variant list is
recomputed inside every locked write that touches the section.
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from artwall.errors import (
    FinalImageNotFound,
    InvalidVariantFile,
    MetadataNotFound,
    NoMatchingVariantTemplates,
    NoVariantTemplatesFound,
    VariantFileNotFound,
)
from artwall.meta.library import Library, split_variant_filename, thumbnail_path
from artwall.meta.models import (
    AI_PAINTING_VARIANTS,
    COMPLETED,
    FAILED,
    IN_PROGRESS,
    WANTED,
    JobSlot,
    variant_section,
)
from artwall.meta.store import Document, MetadataStore
from artwall.services import raster
from artwall.services.image_jobs import start_image_job
from artwall.services.replicate import ReplicateAPI
from artwall.utils import now_iso

log = logging.getLogger(__name__)

VARIANT_MODEL = "google/nano-banana"

VARIANT_PROMPT = """You are an image editor.

Task:
- Place the painting into the free space on the wall.
- Ensure the painting is properly scaled and positioned realistically.
- The painting should be centered or positioned appropriately on the wall.
- Maintain natural lighting and shadows."""


@dataclass
class VariantSummary:
    """Counts and state after one orchestrator pass."""
    base: str
    started: int = 0
    skipped: int = 0
    total: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    active_variants: List[str] = field(default_factory=list)
    status: Optional[str] = None

    @property
    def message(self) -> str:
        if self.started > 0:
            return f"Started generation for {self.started} variant(s)"
        return "No variants started"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "base": self.base,
            "started": self.started,
            "skipped": self.skipped,
            "total": self.total,
            "errors": list(self.errors),
            "active_variants": list(self.active_variants),
            "status": self.status,
            "message": self.message,
        }


def aggregate_status(records) -> Optional[str]:
    """Section status from its variant records: any running wins, then all done."""
    statuses = [r.get("status") for r in records if isinstance(r, dict)]
    if not statuses:
        return None
    if IN_PROGRESS in statuses:
        return IN_PROGRESS
    if all(s == COMPLETED for s in statuses):
        return COMPLETED
    if FAILED in statuses:
        return FAILED
    return WANTED


def _is_live(record: Dict[str, Any], target: Path) -> bool:
    status = record.get("status") if isinstance(record, dict) else None
    if status == IN_PROGRESS:
        return True
    return status == COMPLETED and target.is_file()


def sync_active_variants(doc: Document, library: Library, base: str) -> List[str]:
    """
    Recompute ``active_variants`` and the section status in place.

    Existing order is kept; newly live names are appended in record order.
    """
    section = variant_section(doc)
    variants = section["variants"]

    def live(name):
        return name in variants and _is_live(variants[name], library.variant_target_path(base, name))

    active = [name for name in dict.fromkeys(section["active_variants"]) if live(name)]
    for name in variants:
        if name not in active and live(name):
            active.append(name)
    section["active_variants"] = active

    status = aggregate_status(variants.values())
    if status is not None:
        section["status"] = status
    if status == IN_PROGRESS and not section.get("started_at"):
        section["started_at"] = now_iso()
    return active


def _variant_input(template_path: Path, final_image: Path) -> Dict[str, Any]:
    return {
        "prompt": VARIANT_PROMPT,
        "image_input": [raster.data_uri(template_path), raster.data_uri(final_image)],
        "output_format": "jpg",
    }


def _finish_pass(doc: Document, library: Library, base: str, clear_flag: bool) -> Tuple[List[str], Optional[str]]:
    active = sync_active_variants(doc, library, base)
    section = doc[AI_PAINTING_VARIANTS]
    if clear_flag:
        section["image_generation_needed"] = False
    return active, section.get("status")


def generate_variants(
    store: MetadataStore,
    library: Library,
    client: ReplicateAPI,
    base: str,
    names: Optional[List[str]] = None,
    force: bool = False,
) -> VariantSummary:
    """
    Ensure a variant job exists for every (matching) wall template.

    Args:
        names: Restrict to these template names (None = all templates)
        force: Regenerate completed variants even if their artifact exists.
            ``ai_painting_variants.image_generation_needed`` in the document
            has the same effect and is cleared after a pass without errors.

    Raises:
        FinalImageNotFound, NoVariantTemplatesFound, NoMatchingVariantTemplates,
        MetadataNotFound
    """
    final_image = library.find_final_image(base)
    if final_image is None:
        raise FinalImageNotFound(f"no final image for {base}", base=base)

    templates = library.list_variant_templates()
    if not templates:
        raise NoVariantTemplatesFound(f"no templates in {library.variants_dir}")
    if names is not None:
        requested = set(names)
        templates = [t for t in templates if t.name in requested]
        if not templates:
            raise NoMatchingVariantTemplates(
                "none of the requested templates exist", requested=sorted(requested),
            )

    doc = store.load(base)
    if not doc:
        raise MetadataNotFound(f"no metadata document for {base}", base=base)

    section = doc.get(AI_PAINTING_VARIANTS) or {}
    flagged = bool(section.get("image_generation_needed"))
    force = force or flagged

    summary = VariantSummary(base=base, total=len(templates))
    sync = partial(sync_active_variants, library=library, base=base)

    for template in templates:
        target = library.variant_target_path(base, template.name)
        outcome = start_image_job(
            store, client, base, JobSlot.for_variant(template.name),
            model=VARIANT_MODEL,
            build_input=partial(_variant_input, template.path, final_image),
            payload={
                "variant_name": template.name,
                "target_path": str(target),
                "variant_template_path": str(template.path),
                "final_image_path": str(final_image),
                "prompt": VARIANT_PROMPT,
                "prompt_final": None,
                "width": doc.get("width"),
                "height": doc.get("height"),
            },
            force_regenerate=force,
            after=sync,
        )
        if outcome.skipped:
            summary.skipped += 1
        elif outcome.error is not None:
            summary.errors.append({
                "variant": template.name,
                "error": outcome.error.code,
                "detail": getattr(outcome.error, "detail", None) or str(outcome.error),
            })
        else:
            summary.started += 1

    clear_flag = flagged and not summary.errors
    active, status = store.update(base, lambda d: _finish_pass(d, library, base, clear_flag))
    summary.active_variants = active
    summary.status = status

    log.info(
        "%s variants: %d started, %d skipped, %d errors (of %d)",
        base, summary.started, summary.skipped, len(summary.errors), summary.total,
    )
    return summary


def queue_variant(
    store: MetadataStore,
    library: Library,
    client: ReplicateAPI,
    base: str,
    name: str,
) -> Tuple[bool, VariantSummary]:
    """
    Ensure a single variant, reporting whether it already existed.

    A variant exists if it is in the active list or its artifact is on disk;
    existing variants are left untouched.
    """
    doc = store.load(base)
    if not doc:
        raise MetadataNotFound(f"no metadata document for {base}", base=base)

    active = variant_section(doc)["active_variants"]
    if name in active or library.variant_target_path(base, name).is_file():
        summary = VariantSummary(base=base, total=1, skipped=1, active_variants=list(active))
        summary.status = (doc.get(AI_PAINTING_VARIANTS) or {}).get("status")
        return True, summary

    return False, generate_variants(store, library, client, base, names=[name])


def delete_variant(store: MetadataStore, library: Library, filename: str) -> Dict[str, Any]:
    """
    Delete a variant artifact and its thumbnail, and drop it from the active list.

    Only plain ``*_variant_*`` filenames inside the images directory are accepted.

    Raises:
        InvalidVariantFile, VariantFileNotFound
    """
    name = Path(filename).name
    parts = split_variant_filename(name) if name == filename else None
    if not parts or not parts[0] or not parts[1]:
        raise InvalidVariantFile(f"not a variant file: {filename}", filename=filename)
    base, variant = parts

    path = library.images_dir / name
    if not path.is_file():
        raise VariantFileNotFound(f"{name} does not exist", filename=name)

    deleted = [name]
    path.unlink()
    thumb = thumbnail_path(path)
    if thumb != path and thumb.is_file():
        thumb.unlink()
        deleted.append(thumb.name)
    log.info("Deleted %s", ", ".join(deleted))

    active: List[str] = []
    if store.load(base):
        def _drop(doc):
            section = variant_section(doc)
            section["active_variants"] = [n for n in section["active_variants"] if n != variant]
            return sync_active_variants(doc, library, base)

        active = store.update(base, _drop)

    return {"base": base, "variant": variant, "deleted": deleted, "active_variants": active}
