"""Resume worker: poll every in-flight prediction and fold its result back in.

Any process can run a pass. Handles are read from the documents, polled on a
thread pool and finished through the same job code that started them, so a
crashed or timed-out request is picked up where it stopped.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional

from artwall.errors import ArtwallError
from artwall.meta.library import Library
from artwall.meta.models import (
    AI_FORM,
    AI_PAINTING_VARIANTS,
    CORNER_DETECTION,
    FAILED,
    IN_PROGRESS,
    JobSlot,
)
from artwall.meta.store import Document, MetadataStore
from artwall.services import jobs
from artwall.services.corners import finish_corner_detection, locate_original
from artwall.services.image_jobs import finish_image_job
from artwall.services.jobs import STALE_AFTER_SECONDS
from artwall.services.replicate import MAX_POLL_ATTEMPTS, POLL_INTERVAL, PredictionHandle, ReplicateAPI
from artwall.services.variants import sync_active_variants

log = logging.getLogger(__name__)

DEFAULT_WORKERS = 4


@dataclass
class PollOutcome:
    """Result of finishing one in-flight job."""
    base: str
    slot: JobSlot
    status: str
    error: Optional[str] = None
    detail: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"base": self.base, "job": self.slot.label, "status": self.status}
        if self.error:
            data["error"] = self.error
        if self.detail is not None:
            data["detail"] = self.detail
        return data


def all_slots(doc: Document) -> List[JobSlot]:
    """Every job slot that has a record in ``doc``."""
    slots = [JobSlot(kind) for kind in (CORNER_DETECTION, AI_FORM) if isinstance(doc.get(kind), dict)]
    section = doc.get(AI_PAINTING_VARIANTS)
    variants = section.get("variants") if isinstance(section, dict) else None
    if isinstance(variants, dict):
        slots.extend(JobSlot.for_variant(name) for name in variants)
    return slots


def pending_slots(doc: Document) -> List[JobSlot]:
    """Slots whose job is in_progress with a prediction handle to poll."""
    pending = []
    for slot in all_slots(doc):
        record = slot.get(doc)
        if record.get("status") == IN_PROGRESS and record.get("prediction_url"):
            pending.append(slot)
    return pending


def requeue_stale(
    store: MetadataStore,
    library: Library,
    base: str,
    older_than: float = STALE_AFTER_SECONDS,
    include_failed: bool = False,
    now: Optional[datetime] = None,
) -> List[JobSlot]:
    """
    Move stale in_progress jobs of ``base`` back to wanted.

    With ``include_failed``, failed jobs are moved to wanted too (keeping their
    error, so the next start is a retry). Returns the requeued slots.
    """
    if not store.load(base):
        return []

    def _requeue(doc):
        requeued = []
        for slot in all_slots(doc):
            record = slot.get(doc)
            if jobs.is_stale(record, older_than, now):
                slot.put(doc, jobs.requeue(record, now=now))
            elif include_failed and record.get("status") == FAILED:
                slot.put(doc, jobs.requeue(record, reason=record.get("error") or FAILED, now=now))
            else:
                continue
            requeued.append(slot)
        if any(slot.variant for slot in requeued):
            sync_active_variants(doc, library, base)
        return requeued

    requeued = store.update(base, _requeue)
    for slot in requeued:
        log.info("%s %s requeued", base, slot.label)
    return requeued


def _finish(
    store: MetadataStore,
    library: Library,
    client: ReplicateAPI,
    base: str,
    slot: JobSlot,
    handle: PredictionHandle,
    max_attempts: int,
    interval: float,
) -> PollOutcome:
    if slot.kind == CORNER_DETECTION:
        record = slot.get(store.load(base))
        width, height = record.get("image_width"), record.get("image_height")
        if not width or not height:
            _, width, height = locate_original(library, base)
        detection = finish_corner_detection(
            store, client, base, handle, width, height, max_attempts=max_attempts, interval=interval,
        )
        error = detection.error
        return PollOutcome(
            base, slot, detection.status,
            error=error.code if error else None,
            detail=str(error) if error else None,
        )

    after = partial(sync_active_variants, library=library, base=base) if slot.variant else None
    record = finish_image_job(
        store, client, base, slot, handle, max_attempts=max_attempts, interval=interval, after=after,
    )
    if record is None:
        return PollOutcome(base, slot, "superseded")
    return PollOutcome(base, slot, record["status"], error=record.get("error"), detail=record.get("detail"))


def poll_pending(
    store: MetadataStore,
    library: Library,
    client: ReplicateAPI,
    bases: Optional[List[str]] = None,
    max_attempts: int = MAX_POLL_ATTEMPTS,
    interval: float = POLL_INTERVAL,
    requeue_after: Optional[float] = None,
    workers: int = DEFAULT_WORKERS,
) -> List[PollOutcome]:
    """
    Finish every in-flight job of ``bases`` (default: the whole library).

    Args:
        requeue_after: If set, first requeue in_progress jobs older than this
            many seconds
        workers: Thread pool size; each worker blocks on one poll loop

    Returns:
        One outcome per polled job, sorted by base and slot. A job that raises
        is reported with its error code; it never aborts the others.
    """
    tasks = []
    for base in (bases if bases is not None else store.keys()):
        if requeue_after is not None:
            requeue_stale(store, library, base, older_than=requeue_after)
        doc = store.load(base)
        for slot in pending_slots(doc):
            tasks.append((base, slot, PredictionHandle.from_record(slot.get(doc))))

    if not tasks:
        log.info("No in-flight predictions")
        return []

    log.info("Polling %d in-flight prediction(s) with %d worker(s)", len(tasks), workers)
    outcomes = []
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        futures = {
            executor.submit(_finish, store, library, client, base, slot, handle, max_attempts, interval): (base, slot)
            for base, slot, handle in tasks
        }
        for future in as_completed(futures):
            base, slot = futures[future]
            try:
                outcomes.append(future.result())
            except ArtwallError as e:
                log.warning("%s %s: %s", base, slot.label, e)
                outcomes.append(PollOutcome(base, slot, FAILED, error=e.code, detail=str(e)))
            except Exception as e:
                log.exception("%s %s: unexpected error while polling", base, slot.label)
                outcomes.append(PollOutcome(base, slot, "error", error=type(e).__name__, detail=str(e)))

    outcomes.sort(key=lambda o: (o.base, o.slot.label))
    return outcomes
