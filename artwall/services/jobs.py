"""Job state machine: wanted -> in_progress -> completed | failed.

``decide`` is a pure function of a job record. The transition helpers return
new record dicts; ``claim`` and ``transition`` apply them inside the metadata
store's locked update so concurrent workers never both start the same job.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from artwall.meta.models import COMPLETED, FAILED, IN_PROGRESS, WANTED, JobSlot
from artwall.meta.store import Document, MetadataStore
from artwall.utils import age_seconds, now_iso

log = logging.getLogger(__name__)

# An in_progress marker without a handle is a worker between its marker write
# and its submit call; past this age it is treated as abandoned.
SUBMIT_GRACE_SECONDS = 120

# Default age after which in_progress records are requeued (poll budget is 600s).
STALE_AFTER_SECONDS = 900

Record = Dict[str, Any]


class Decision(Enum):
    SKIP = "skip"
    START = "start"
    RETRY = "retry"


def has_handle(record: Record) -> bool:
    return bool(record.get("prediction_url") or record.get("prediction_id"))


def decide(
    record: Record,
    force_regenerate: bool = False,
    artifact_exists: bool = False,
    now: Optional[datetime] = None,
) -> Decision:
    """
    Decide what to do with one job.

    Args:
        record: Current job record ({} if the job was never requested)
        force_regenerate: Restart completed jobs even if their artifact exists
        artifact_exists: Whether the job's output is still present
        now: Clock override for tests

    Returns:
        SKIP for live or finished jobs, RETRY for failed jobs (or rejected
        submissions carrying an error), START otherwise.
    """
    status = record.get("status")

    if status == COMPLETED:
        if artifact_exists and not force_regenerate:
            return Decision.SKIP
        return Decision.START

    if status == IN_PROGRESS:
        if has_handle(record):
            return Decision.SKIP
        age = age_seconds(record.get("started_at"), now)
        if age is not None and age < SUBMIT_GRACE_SECONDS:
            return Decision.SKIP
        return Decision.START

    if status == FAILED or record.get("error"):
        return Decision.RETRY

    return Decision.START


def begin(record: Record, decision: Decision, now: Optional[datetime] = None, **payload) -> Record:
    """Return the in_progress record written before the external call is made."""
    if decision is Decision.SKIP:
        raise ValueError("Cannot begin a skipped job")
    new = dict(record)
    new.update(payload)
    new.update({
        "status": IN_PROGRESS,
        "started_at": now_iso(now),
        "prediction_id": None,
        "prediction_url": None,
        "prediction_status": "unknown",
    })
    new.pop("detail", None)
    new.pop("completed_at", None)
    if decision is Decision.RETRY:
        new.pop("error", None)
        new.pop("error_detail", None)
    return new


def attach_handle(record: Record, handle) -> Record:
    new = dict(record)
    new.update(handle.to_record())
    return new


def release(record: Record, error: str, detail: Any = None) -> Record:
    """Submission was rejected: back to wanted so the next pass retries it."""
    new = dict(record)
    new.update({
        "status": WANTED,
        "error": error,
        "prediction_id": None,
        "prediction_url": None,
        "prediction_status": "unknown",
    })
    if detail is not None:
        new["error_detail"] = detail
    return new


def complete(record: Record, now: Optional[datetime] = None, **payload) -> Record:
    new = dict(record)
    new.update(payload)
    new["status"] = COMPLETED
    new["completed_at"] = now_iso(now)
    new.pop("error", None)
    new.pop("error_detail", None)
    new.pop("detail", None)
    return new


def fail(record: Record, error: str, detail: Any = None, now: Optional[datetime] = None, **payload) -> Record:
    new = dict(record)
    new.update(payload)
    new["status"] = FAILED
    new["error"] = error
    new["failed_at"] = now_iso(now)
    if detail is not None:
        new["error_detail"] = detail
    return new


def mark_wanted(record: Record, now: Optional[datetime] = None) -> Record:
    """Flag a job as wanted unless it is already running."""
    if record.get("status") == IN_PROGRESS and has_handle(record):
        return dict(record)
    new = dict(record)
    new["status"] = WANTED
    new["requested_at"] = now_iso(now)
    return new


def is_stale(record: Record, older_than: float, now: Optional[datetime] = None) -> bool:
    if record.get("status") != IN_PROGRESS:
        return False
    age = age_seconds(record.get("started_at"), now)
    return age is None or age >= older_than


def requeue(record: Record, reason: str = "stale_in_progress", now: Optional[datetime] = None) -> Record:
    """Move a stuck record back to wanted, keeping the old handle for audit."""
    new = dict(record)
    if record.get("prediction_url"):
        new["previous_prediction_url"] = record["prediction_url"]
    new.update({
        "status": WANTED,
        "error": reason,
        "requeued_at": now_iso(now),
        "prediction_id": None,
        "prediction_url": None,
        "prediction_status": "unknown",
    })
    return new


# =============================================================================
# Store-backed transitions
# =============================================================================

def claim(
    store: MetadataStore,
    key: str,
    slot: JobSlot,
    force_regenerate: bool = False,
    artifact_exists: Union[bool, Callable[[Record], bool]] = False,
    now: Optional[datetime] = None,
    payload: Optional[Dict[str, Any]] = None,
    after: Optional[Callable[[Document], None]] = None,
) -> Tuple[Decision, Record]:
    """
    Atomically decide and, on START/RETRY, persist the in_progress marker.

    ``artifact_exists`` may be a callable taking the current record.
    ``after`` runs on the document inside the lock once the record is written.
    """
    def _claim(doc):
        record = slot.get(doc)
        exists = artifact_exists(record) if callable(artifact_exists) else bool(artifact_exists)
        decision = decide(record, force_regenerate, exists, now)
        if decision is not Decision.SKIP:
            record = begin(record, decision, now, **(payload or {}))
            slot.put(doc, record)
        if after is not None:
            after(doc)
        return decision, record

    decision, record = store.update(key, _claim)
    log.info("%s %s: %s", key, slot.label, decision.value)
    return decision, record


def transition(
    store: MetadataStore,
    key: str,
    slot: JobSlot,
    fn: Callable[..., Record],
    *args,
    only_if_url: Optional[str] = None,
    after: Optional[Callable[[Document], None]] = None,
    **kwargs,
) -> Optional[Record]:
    """
    Apply ``fn(record, *args, **kwargs)`` to the record at ``slot`` under the lock.

    With ``only_if_url``, the write is dropped (returns None) when the record no
    longer points at that prediction, e.g. it was requeued and restarted.
    """
    def _apply(doc):
        record = slot.get(doc)
        if only_if_url is not None and record.get("prediction_url") != only_if_url:
            log.warning("%s %s moved to another prediction, dropping update", key, slot.label)
            return None
        record = fn(record, *args, **kwargs)
        slot.put(doc, record)
        if after is not None:
            after(doc)
        return record

    return store.update(key, _apply)
