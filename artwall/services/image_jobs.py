"""Image-producing jobs: submit an edit prediction, later download its output.

Starting and finishing are separate steps. ``start_image_job`` persists the
prediction handle and returns immediately; ``finish_image_job`` can run in any
process later, polls the handle, persists the raw response, then downloads the
output to the record's ``target_path``.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from artwall.errors import ArtwallError, OutputDownloadFailed, PredictionFailed, SubmissionFailed
from artwall.meta.models import JobSlot
from artwall.meta.store import Document, MetadataStore
from artwall.services import jobs
from artwall.services.jobs import Decision
from artwall.services.replicate import (
    MAX_POLL_ATTEMPTS,
    POLL_INTERVAL,
    PredictionHandle,
    PredictionResult,
    ReplicateAPI,
)

log = logging.getLogger(__name__)


@dataclass
class StartOutcome:
    """What happened when a job was asked to start."""
    slot: JobSlot
    decision: Decision
    record: Dict[str, Any]
    error: Optional[ArtwallError] = None

    @property
    def started(self) -> bool:
        return self.decision is not Decision.SKIP and self.error is None

    @property
    def skipped(self) -> bool:
        return self.decision is Decision.SKIP


def start_image_job(
    store: MetadataStore,
    client: ReplicateAPI,
    key: str,
    slot: JobSlot,
    model: str,
    build_input: Callable[[], Dict[str, Any]],
    payload: Dict[str, Any],
    force_regenerate: bool = False,
    after: Optional[Callable[[Document], None]] = None,
) -> StartOutcome:
    """
    Claim the job and, if it should run, submit the prediction.

    ``payload`` must include ``target_path``. ``build_input`` is only called
    when the job actually starts. A rejected submission puts the job back to
    ``wanted`` with the error recorded and is returned, not raised.
    """
    target = Path(payload["target_path"])
    payload = dict(payload, model=model)

    decision, record = jobs.claim(
        store, key, slot,
        force_regenerate=force_regenerate,
        artifact_exists=lambda r: target.is_file(),
        payload=payload,
        after=after,
    )
    if decision is Decision.SKIP:
        return StartOutcome(slot, decision, record)

    try:
        model_input = build_input()
    except OSError as e:
        error = SubmissionFailed("could not read prediction input", detail=str(e))
        record = jobs.transition(store, key, slot, jobs.release, error.code, error.to_dict(), after=after)
        return StartOutcome(slot, decision, record, error=error)

    try:
        handle = client.submit(model, model_input)
    except SubmissionFailed as e:
        log.warning("%s %s: submission failed: %s", key, slot.label, e)
        record = jobs.transition(store, key, slot, jobs.release, e.code, e.to_dict(), after=after)
        return StartOutcome(slot, decision, record, error=e)

    def _attach(rec):
        rec = jobs.attach_handle(rec, handle)
        rec["prompt_final"] = model_input.get("prompt")
        return rec

    record = jobs.transition(store, key, slot, _attach, after=after)
    return StartOutcome(slot, decision, record)


def record_response(record: Dict[str, Any], result: PredictionResult) -> Dict[str, Any]:
    """Copy a poll result's raw payload into a job record, before any interpretation."""
    new = dict(record)
    new["prediction_status"] = result.status
    new["poll_attempts"] = result.attempts
    if result.response is not None:
        new["replicate_response"] = result.response
        new["replicate_response_raw"] = result.raw_json()
    return new


def mark_timed_out(record: Dict[str, Any], attempts: int) -> Dict[str, Any]:
    new = dict(record)
    new["detail"] = "timed_out"
    new["poll_attempts"] = attempts
    return new


def finish_image_job(
    store: MetadataStore,
    client: ReplicateAPI,
    key: str,
    slot: JobSlot,
    handle: PredictionHandle,
    max_attempts: int = MAX_POLL_ATTEMPTS,
    interval: float = POLL_INTERVAL,
    after: Optional[Callable[[Document], None]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Poll an image prediction to a terminal status and materialize its output.

    Returns the final record, or None if the record was restarted meanwhile.
    A timed-out poll leaves the record in_progress (handle kept) with
    ``detail="timed_out"`` so a later pass resumes it.
    """
    url = handle.prediction_url
    result = client.poll(handle, max_attempts=max_attempts, interval=interval)

    record = jobs.transition(store, key, slot, record_response, result, only_if_url=url)
    if record is None:
        return None

    if result.timed_out:
        return jobs.transition(
            store, key, slot, mark_timed_out, result.attempts, only_if_url=url, after=after,
        )

    if not result.succeeded:
        error = PredictionFailed(result.error or result.status, status=result.status)
        return jobs.transition(
            store, key, slot, jobs.fail, error.code, error.to_dict(), only_if_url=url, after=after,
        )

    output_url = result.output_url()
    if not output_url:
        return jobs.transition(
            store, key, slot, jobs.fail, "empty_output", {"output": (result.response or {}).get("output")},
            only_if_url=url, after=after,
        )

    target = record.get("target_path")
    try:
        client.download(output_url, Path(target))
    except OutputDownloadFailed as e:
        log.warning("%s %s: %s", key, slot.label, e)
        return jobs.transition(
            store, key, slot, jobs.fail, e.code, e.to_dict(), only_if_url=url, after=after,
        )

    log.info("%s %s completed -> %s", key, slot.label, Path(target).name)
    return jobs.transition(
        store, key, slot, jobs.complete, output_url=output_url, only_if_url=url, after=after,
    )
