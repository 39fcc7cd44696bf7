"""AI form job: a rectified, front-on rendering of the painting inside its corners."""

import logging
from pathlib import Path
from typing import Any, Dict, List

from artwall.errors import CornersRequired, ImageNotFound, MetadataNotFound
from artwall.meta.library import Library, extract_base_name
from artwall.meta.models import AI_FORM, JobSlot
from artwall.meta.store import MetadataStore
from artwall.services import jobs, raster
from artwall.services.corners import SLOT as CORNER_SLOT
from artwall.services.corners import locate_original
from artwall.services.image_jobs import StartOutcome, start_image_job
from artwall.services.replicate import ReplicateAPI

log = logging.getLogger(__name__)

AI_FORM_MODEL = "google/nano-banana"
SLOT = JobSlot(AI_FORM)

AI_FORM_PROMPT = """You are an image editor.

Task:
- The photo shows a painting. Its canvas corners, in pixels, are:
{corners}
- Crop to the canvas and correct the perspective so the painting is seen straight on.
- Keep the colors, brush strokes and texture of the painting unchanged.
- Do not add a frame, wall or background."""


def request_ai_form(store: MetadataStore, library: Library, image: str) -> Dict[str, Any]:
    """
    Flag the AI form job as wanted for the image ``image`` belongs to.

    ``image`` may be any file of the image (original, final, variant, thumb).

    Raises:
        MetadataNotFound: the image has no metadata document
    """
    name = Path(image).name
    if not (library.images_dir / name).is_file():
        raise ImageNotFound(f"{name} is not in {library.images_dir}", image=name)
    base = extract_base_name(name)
    if not store.load(base):
        raise MetadataNotFound(f"no metadata document for {image}", image=image, base=base)
    record = jobs.transition(store, base, SLOT, jobs.mark_wanted)
    log.info("%s: ai_form %s", base, record.get("status"))
    return record


def known_corners(doc: Dict[str, Any]) -> List[List[int]]:
    """Manual corners win over detected ones; [] if neither has four."""
    manual = doc.get("manual_corners")
    if isinstance(manual, list) and len(manual) == 4:
        return manual
    detected = CORNER_SLOT.get(doc).get("corners")
    if isinstance(detected, list) and len(detected) == 4:
        return detected
    return []


def _format_corners(corners: List[List[int]]) -> str:
    labels = ("top-left", "top-right", "bottom-right", "bottom-left")
    return "\n".join(f"  {label}: ({x}, {y})" for label, (x, y) in zip(labels, corners))


def run_ai_form(
    store: MetadataStore,
    library: Library,
    client: ReplicateAPI,
    base: str,
    force: bool = False,
) -> StartOutcome:
    """
    Submit the AI form prediction for ``base``; ``artwall poll`` downloads it.

    Raises:
        MetadataNotFound, OriginalImageNotFound, UnsupportedImageType, CornersRequired
    """
    doc = store.load(base)
    if not doc:
        raise MetadataNotFound(f"no metadata document for {base}", base=base)
    corners = known_corners(doc)
    if not corners:
        raise CornersRequired(f"{base} has no corners; run `artwall corners {base}` first", base=base)

    path, width, height = locate_original(library, base)
    prompt = AI_FORM_PROMPT.format(corners=_format_corners(corners))
    target = library.ai_form_target_path(base)

    def build_input():
        return {
            "prompt": prompt,
            "image_input": [raster.data_uri(path)],
            "output_format": "jpg",
        }

    return start_image_job(
        store, client, base, SLOT,
        model=AI_FORM_MODEL,
        build_input=build_input,
        payload={
            "target_path": str(target),
            "image_path": str(path),
            "corners": corners,
            "prompt": prompt,
            "prompt_final": None,
            "width": width,
            "height": height,
        },
        force_regenerate=force,
    )
