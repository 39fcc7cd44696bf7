"""
Tests for resuming in-flight predictions and requeueing stuck jobs.

To run: pytest tests/test_pending.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest
import requests

from artwall.errors import OutputDownloadFailed
from artwall.meta import MemoryMetadataStore
from artwall.meta.models import COMPLETED, FAILED, IN_PROGRESS, WANTED, JobSlot
from artwall.services.image_jobs import finish_image_job
from artwall.services.pending import pending_slots, poll_pending, requeue_stale
from artwall.services.replicate import PredictionHandle, ReplicateAPI
from artwall.services.variants import generate_variants
from conftest import FakeSession, corners_json, make_image

P1 = "https://api.replicate.com/v1/predictions/p1"
P2 = "https://api.replicate.com/v1/predictions/p2"


def iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


@pytest.fixture
def store():
    return MemoryMetadataStore({"IMG_1": {"width": 400, "height": 300}})


@pytest.fixture
def started(store, library, client):
    """IMG_1 with two variant predictions in flight (loft=p1, studio=p2)."""
    make_image(library.images_dir / "IMG_1_final.jpg", size=(40, 30))
    make_image(library.variants_dir / "loft.jpg", size=(16, 16))
    make_image(library.variants_dir / "studio.jpg", size=(16, 16))
    generate_variants(store, library, client, "IMG_1")
    return store


def image_output(name):
    return {"status": "succeeded", "output": [f"https://replicate.delivery/{name}.jpg"]}


class TestPendingSlots:
    def test_only_in_progress_with_handle(self):
        doc = {
            "corner_detection": {"status": IN_PROGRESS, "prediction_url": P1},
            "ai_form": {"status": IN_PROGRESS, "prediction_url": None},
            "ai_painting_variants": {"variants": {
                "loft": {"status": IN_PROGRESS, "prediction_url": P2},
                "studio": {"status": COMPLETED, "prediction_url": "x"},
            }},
        }
        labels = [slot.label for slot in pending_slots(doc)]
        assert labels == ["corner_detection", "ai_painting_variants[loft]"]


class TestPollPending:
    def test_downloads_variant_outputs(self, started, library, client):
        client.responses[P1] = image_output("loft")
        client.responses[P2] = image_output("studio")

        outcomes = poll_pending(started, library, client, interval=0)

        assert [(o.slot.variant, o.status) for o in outcomes] == [("loft", COMPLETED), ("studio", COMPLETED)]
        assert library.variant_target_path("IMG_1", "loft").is_file()
        section = started.load("IMG_1")["ai_painting_variants"]
        assert section["status"] == COMPLETED
        assert section["active_variants"] == ["loft", "studio"]
        loft = section["variants"]["loft"]
        assert loft["output_url"] == "https://replicate.delivery/loft.jpg"
        assert loft["completed_at"]
        assert "replicate_response_raw" in loft

    def test_nothing_in_flight(self, store, library, client):
        assert poll_pending(store, library, client) == []
        assert client.polled == []

    def test_one_failure_does_not_abort_others(self, started, library, client):
        client.responses[P1] = {"status": "failed", "error": "bad wall"}
        client.responses[P2] = image_output("studio")

        outcomes = {o.slot.variant: o for o in poll_pending(started, library, client, workers=2)}

        assert outcomes["loft"].status == FAILED
        assert outcomes["loft"].error == "prediction_not_completed"
        assert outcomes["studio"].status == COMPLETED
        section = started.load("IMG_1")["ai_painting_variants"]
        assert section["active_variants"] == ["studio"]
        assert section["status"] == FAILED

    def test_download_failure_marks_failed(self, started, library, client):
        client.responses[P1] = image_output("loft")
        client.responses[P2] = image_output("studio")
        client.download_errors["https://replicate.delivery/loft.jpg"] = OutputDownloadFailed("404")

        outcomes = {o.slot.variant: o for o in poll_pending(started, library, client)}

        assert outcomes["loft"].error == "output_download_failed"
        assert outcomes["studio"].status == COMPLETED

    def test_unexpected_error_reported(self, started, library, client):
        client.responses[P1] = image_output("loft")
        client.responses[P2] = image_output("studio")
        client.download_errors["https://replicate.delivery/loft.jpg"] = RuntimeError("disk full")

        outcomes = {o.slot.variant: o for o in poll_pending(started, library, client)}

        assert outcomes["loft"].status == "error"
        assert outcomes["loft"].error == "RuntimeError"
        assert outcomes["studio"].status == COMPLETED

    def test_empty_output_fails(self, started, library, client):
        client.default_response = {"status": "succeeded", "output": None}
        outcomes = poll_pending(started, library, client, bases=["IMG_1"])
        assert {o.error for o in outcomes} == {"empty_output"}

    def test_timeout_keeps_handle(self, started, library, client):
        client.default_response = {"status": "processing"}

        outcomes = poll_pending(started, library, client, max_attempts=2)

        assert {o.status for o in outcomes} == {IN_PROGRESS}
        loft = started.load("IMG_1")["ai_painting_variants"]["variants"]["loft"]
        assert loft["detail"] == "timed_out"
        assert loft["prediction_url"] == P1

        # The next pass resumes the same predictions
        client.default_response = image_output("any")
        poll_pending(started, library, client)
        assert client.polled.count(P1) == 2

    def test_resumes_corner_detection(self, library, client):
        make_image(library.images_dir / "IMG_2_original.jpg", size=(1000, 2000))
        store = MemoryMetadataStore({"IMG_2": {"corner_detection": {
            "status": IN_PROGRESS,
            "prediction_id": "p7",
            "prediction_url": "https://api.replicate.com/v1/predictions/p7",
            "image_width": 1000,
            "image_height": 2000,
        }}})
        client.default_response = {"status": "succeeded", "output": corners_json()}

        outcomes = poll_pending(store, library, client)

        assert [(o.base, o.slot.label, o.status) for o in outcomes] == [("IMG_2", "corner_detection", COMPLETED)]
        record = store.load("IMG_2")["corner_detection"]
        assert record["corners"][0] == [100, 300]

    def test_corner_parse_failure_reported(self, library, client):
        make_image(library.images_dir / "IMG_2_original.jpg", size=(100, 100))
        store = MemoryMetadataStore({"IMG_2": {"corner_detection": {
            "status": IN_PROGRESS, "prediction_url": P1, "image_width": 100, "image_height": 100,
        }}})
        client.default_response = {"status": "succeeded", "output": "I see no painting."}

        outcomes = poll_pending(store, library, client)

        assert outcomes[0].status == FAILED
        assert outcomes[0].error == "no_json_found"
        assert store.load("IMG_2")["corner_detection"]["error"] == "no_json_found"


class TestRequeue:
    def test_stale_requeued(self, library):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        store = MemoryMetadataStore({"IMG_1": {
            "ai_form": {"status": IN_PROGRESS, "prediction_url": P1, "started_at": iso(now - timedelta(hours=2))},
            "corner_detection": {"status": IN_PROGRESS, "prediction_url": P2, "started_at": iso(now)},
        }})

        requeued = requeue_stale(store, library, "IMG_1", older_than=900, now=now)

        assert requeued == [JobSlot("ai_form")]
        doc = store.load("IMG_1")
        assert doc["ai_form"]["status"] == WANTED
        assert doc["ai_form"]["error"] == "stale_in_progress"
        assert doc["ai_form"]["previous_prediction_url"] == P1
        assert doc["corner_detection"]["status"] == IN_PROGRESS

    def test_failed_only_with_flag(self, library):
        store = MemoryMetadataStore({"IMG_1": {"ai_form": {"status": FAILED, "error": "empty_output"}}})

        assert requeue_stale(store, library, "IMG_1") == []
        assert requeue_stale(store, library, "IMG_1", include_failed=True) == [JobSlot("ai_form")]
        record = store.load("IMG_1")["ai_form"]
        assert record["status"] == WANTED
        assert record["error"] == "empty_output"

    def test_absent_document_untouched(self, library):
        store = MemoryMetadataStore()
        assert requeue_stale(store, library, "IMG_9") == []
        assert store.keys() == []

    def test_poll_requeues_before_polling(self, started, library, client):
        started.update(
            "IMG_1",
            lambda d: d["ai_painting_variants"]["variants"]["loft"].update(started_at="2020-01-01T00:00:00Z"),
        )
        client.default_response = image_output("x")

        outcomes = poll_pending(started, library, client, requeue_after=900)

        assert [o.slot.variant for o in outcomes] == ["studio"]
        section = started.load("IMG_1")["ai_painting_variants"]
        assert section["variants"]["loft"]["status"] == WANTED
        assert section["active_variants"] == ["studio"]


class TestResumeFinishedPrediction:
    """Records whose remote status was already recorded as succeeded."""

    @pytest.fixture
    def unreachable(self):
        session = FakeSession(get=[requests.exceptions.ConnectionError("reset") for _ in range(3)])
        return ReplicateAPI(token="r8_test", session=session)

    def test_image_job_stays_resumable(self, library, unreachable):
        target = library.variant_target_path("IMG_1", "loft")
        store = MemoryMetadataStore({"IMG_1": {"ai_painting_variants": {"variants": {"loft": {
            "status": IN_PROGRESS,
            "prediction_id": "p1",
            "prediction_url": P1,
            "prediction_status": "succeeded",
            "target_path": str(target),
        }}}}})
        slot = JobSlot.for_variant("loft")
        handle = PredictionHandle.from_record(slot.get(store.load("IMG_1")))

        record = finish_image_job(store, unreachable, "IMG_1", slot, handle, max_attempts=3, interval=0)

        assert record["status"] == IN_PROGRESS
        assert record["detail"] == "timed_out"
        assert record["prediction_url"] == P1
        assert "error" not in record
        assert not target.exists()

    def test_corner_job_not_failed(self, library, unreachable):
        make_image(library.images_dir / "IMG_2_original.jpg", size=(100, 100))
        store = MemoryMetadataStore({"IMG_2": {"corner_detection": {
            "status": IN_PROGRESS,
            "prediction_url": P1,
            "prediction_status": "succeeded",
            "image_width": 100,
            "image_height": 100,
        }}})

        outcomes = poll_pending(store, library, unreachable, max_attempts=3, interval=0)

        assert outcomes[0].status == IN_PROGRESS
        assert outcomes[0].error == "timed_out"
        record = store.load("IMG_2")["corner_detection"]
        assert record["status"] == IN_PROGRESS
        assert record["detail"] == "timed_out"
        assert "output_empty" not in record
