"""Corner detection job: find the four canvas corners of a painting photo."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from artwall.errors import (
    ArtwallError,
    ExtractionFailed,
    OriginalImageNotFound,
    PredictionFailed,
    PredictionTimedOut,
    SubmissionFailed,
    UnsupportedImageType,
)
from artwall.meta.library import Library
from artwall.meta.models import COMPLETED, CORNER_DETECTION, FAILED, IN_PROGRESS, WANTED, Corner, JobSlot
from artwall.meta.store import MetadataStore
from artwall.services import jobs, raster
from artwall.services.corner_parser import parse_corners
from artwall.services.image_jobs import mark_timed_out, record_response
from artwall.services.jobs import Decision
from artwall.services.replicate import MAX_POLL_ATTEMPTS, POLL_INTERVAL, PredictionHandle, ReplicateAPI

log = logging.getLogger(__name__)

CORNER_MODEL = "google/gemini-3-pro"
SLOT = JobSlot(CORNER_DETECTION)

CORNER_PROMPT = """Analyze this image and identify the four corners of the painting canvas (excluding frame, wall, mat, glass, shadows).

Return the coordinates as percentages relative to the image dimensions in JSON format:
{
  "corners": [
    {"x": 10.5, "y": 15.2, "label": "top-left"},
    {"x": 89.3, "y": 14.8, "label": "top-right"},
    {"x": 88.7, "y": 85.1, "label": "bottom-right"},
    {"x": 11.2, "y": 84.9, "label": "bottom-left"}
  ]
}

The coordinates should be percentages (0-100) where:
- x: horizontal position as percentage of image width
- y: vertical position as percentage of image height
- Order: top-left, top-right, bottom-right, bottom-left

Return ONLY valid JSON, no other text."""


@dataclass
class CornerDetection:
    """Result of a corner detection request."""
    base: str
    status: str
    corners: List[Corner] = field(default_factory=list)
    image_width: Optional[int] = None
    image_height: Optional[int] = None
    cached: bool = False
    error: Optional[ArtwallError] = None

    @property
    def ok(self) -> bool:
        return self.status == COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ok": self.ok,
            "base": self.base,
            "status": self.status,
            "cached": self.cached,
            "image_width": self.image_width,
            "image_height": self.image_height,
            "corners": [c.pixel for c in self.corners],
            "corners_with_percentages": [c.to_dict() for c in self.corners],
        }
        if self.error is not None:
            data.update(self.error.to_dict())
        return data


def _corner_input(image_path) -> Dict[str, Any]:
    return {
        "images": [raster.data_uri(image_path)],
        "max_output_tokens": 65535,
        "prompt": CORNER_PROMPT,
        "temperature": 1,
        "thinking_level": "low",
        "top_p": 0.95,
        "videos": [],
    }


def _has_corners(record: Dict[str, Any]) -> bool:
    corners = record.get("corners")
    return isinstance(corners, list) and len(corners) == 4


def corners_from_record(record: Dict[str, Any]) -> List[Corner]:
    """Rebuild Corner objects from a completed corner_detection record."""
    detailed = record.get("corners_with_percentages")
    if isinstance(detailed, list) and len(detailed) == 4:
        return [
            Corner(
                label=c.get("label", ""),
                x_percent=c.get("x_percent"),
                y_percent=c.get("y_percent"),
                x=c.get("x"),
                y=c.get("y"),
            )
            for c in detailed
        ]
    width = record.get("image_width") or 0
    height = record.get("image_height") or 0
    corners = []
    for label, (x, y) in zip(("top-left", "top-right", "bottom-right", "bottom-left"), record["corners"]):
        corners.append(Corner(
            label=label,
            x_percent=round(x / width * 100, 2) if width else None,
            y_percent=round(y / height * 100, 2) if height else None,
            x=x,
            y=y,
        ))
    return corners


def locate_original(library: Library, base: str):
    """Return (path, width, height) of the original image, checking it can be sent."""
    path = library.find_original_image(base)
    if path is None:
        raise OriginalImageNotFound(f"no original image for {base}", base=base)
    mime = raster.mime_type(path)
    if mime not in raster.SUPPORTED_MIME_TYPES:
        raise UnsupportedImageType(f"{path.name} is {mime}", mime=mime)
    width, height = raster.dimensions(path)
    return path, width, height


def detect_corners(
    store: MetadataStore,
    library: Library,
    client: ReplicateAPI,
    base: str,
    force: bool = False,
    max_attempts: int = MAX_POLL_ATTEMPTS,
    interval: float = POLL_INTERVAL,
) -> CornerDetection:
    """
    Detect the painting corners for ``base``, reusing a cached result.

    Blocks while the prediction is polled. Submission failures and timeouts
    are returned in ``error`` with the job left retryable; extraction failures
    mark the job failed and are raised.

    Raises:
        OriginalImageNotFound, UnsupportedImageType, ExtractionFailed
    """
    path, width, height = locate_original(library, base)

    decision, record = jobs.claim(
        store, base, SLOT,
        force_regenerate=force,
        artifact_exists=_has_corners,
        payload={
            "image_path": str(path),
            "image_width": width,
            "image_height": height,
            "model": CORNER_MODEL,
            "corners": None,
            "corners_with_percentages": None,
            "output_text": None,
        },
    )

    if decision is Decision.SKIP:
        if record.get("status") == COMPLETED:
            return CornerDetection(
                base, COMPLETED, corners_from_record(record),
                record.get("image_width") or width, record.get("image_height") or height,
                cached=True,
            )
        return CornerDetection(base, record.get("status") or IN_PROGRESS, image_width=width, image_height=height)

    try:
        handle = client.submit(CORNER_MODEL, _corner_input(path))
    except SubmissionFailed as e:
        log.warning("%s: corner detection submission failed: %s", base, e)
        jobs.transition(store, base, SLOT, jobs.release, e.code, e.to_dict())
        return CornerDetection(base, WANTED, image_width=width, image_height=height, error=e)

    jobs.transition(store, base, SLOT, jobs.attach_handle, handle)
    return finish_corner_detection(
        store, client, base, handle, width, height, max_attempts=max_attempts, interval=interval,
    )


def _with_output(record: Dict[str, Any], result, text: str) -> Dict[str, Any]:
    new = record_response(record, result)
    if result.response is None:
        return new
    new["output_text"] = text
    new["output_empty"] = not text.strip()
    return new


def finish_corner_detection(
    store: MetadataStore,
    client: ReplicateAPI,
    base: str,
    handle: PredictionHandle,
    width: int,
    height: int,
    max_attempts: int = MAX_POLL_ATTEMPTS,
    interval: float = POLL_INTERVAL,
) -> CornerDetection:
    """Poll a corner prediction, persist the raw response, then parse it."""
    url = handle.prediction_url
    result = client.poll(handle, max_attempts=max_attempts, interval=interval)
    text = result.output_text() if result.succeeded else ""

    # Raw evidence first, so a parse failure never loses it
    record = jobs.transition(store, base, SLOT, _with_output, result, text, only_if_url=url)
    if record is None:
        return CornerDetection(base, "superseded", image_width=width, image_height=height)

    if result.timed_out:
        error = PredictionTimedOut(
            f"prediction still {result.status} after {result.attempts} polls",
            status=result.status,
            attempts=result.attempts,
            prediction_url=url,
        )
        jobs.transition(store, base, SLOT, mark_timed_out, result.attempts, only_if_url=url)
        return CornerDetection(base, IN_PROGRESS, image_width=width, image_height=height, error=error)

    if not result.succeeded:
        error = PredictionFailed(
            result.error or result.status, status=result.status, attempts=result.attempts,
        )
        jobs.transition(store, base, SLOT, jobs.fail, error.code, error.to_dict(), only_if_url=url)
        return CornerDetection(base, FAILED, image_width=width, image_height=height, error=error)

    try:
        corners = parse_corners(text, width, height)
    except ExtractionFailed as e:
        log.warning("%s: could not extract corners: %s", base, e)
        jobs.transition(store, base, SLOT, jobs.fail, e.code, e.to_dict(), only_if_url=url)
        raise

    jobs.transition(
        store, base, SLOT, jobs.complete,
        corners=[c.pixel for c in corners],
        corners_with_percentages=[c.to_dict() for c in corners],
        image_width=width,
        image_height=height,
        only_if_url=url,
    )
    log.info("%s: corners detected %s", base, [c.pixel for c in corners])
    return CornerDetection(base, COMPLETED, corners, width, height)
