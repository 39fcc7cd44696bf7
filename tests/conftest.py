"""Shared fixtures: a temporary image library and a scripted prediction client."""

import json
from pathlib import Path

import pytest
import requests
from PIL import Image

from artwall.meta import Library, MemoryMetadataStore
from artwall.services.replicate import PredictionHandle, PredictionResult


def make_image(path, size=(1000, 2000), fmt=None, color=(120, 80, 40)):
    """Write a solid-color image and return its path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, fmt)
    return path


def corners_json(points=((10, 15), (90, 15), (90, 85), (10, 85)), labels=None):
    """Model-style corner payload for percentage points."""
    labels = labels or ("top-left", "top-right", "bottom-right", "bottom-left")
    return json.dumps({
        "corners": [{"x": x, "y": y, "label": label} for (x, y), label in zip(points, labels)]
    })


class FakeResponse:
    def __init__(self, status_code=200, data=None, text="", content=b""):
        self.status_code = status_code
        self._data = data
        self.text = text
        self.content = content

    def json(self):
        if self._data is None:
            raise ValueError("No JSON object could be decoded")
        return self._data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, post=None, get=None):
        self.headers = {}
        self.post_queue = list(post or [])
        self.get_queue = list(get or [])
        self.posts = []
        self.gets = []

    def _next(self, queue):
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return self._next(self.post_queue)

    def get(self, url, timeout=None):
        self.gets.append(url)
        return self._next(self.get_queue)


class FakeReplicate:
    """
    Stand-in for ReplicateAPI.

    Submissions get sequential handles. ``poll`` answers from ``responses``
    (keyed by prediction URL) or ``default_response``; a response whose
    status isn't terminal makes the poll time out.
    """

    def __init__(self, default_response=None):
        self.submitted = []
        self.submit_errors = []
        self.responses = {}
        self.default_response = default_response or {"status": "succeeded", "output": None}
        self.polled = []
        self.downloaded = []
        self.download_errors = {}

    def submit(self, model, model_input):
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        n = len(self.submitted) + 1
        self.submitted.append((model, model_input))
        return PredictionHandle(f"p{n}", f"https://api.replicate.com/v1/predictions/p{n}", "starting")

    def poll(self, handle, max_attempts=120, interval=5):
        self.polled.append(handle.prediction_url)
        response = self.responses.get(handle.prediction_url, self.default_response)
        response = dict(response, id=handle.prediction_id)
        status = response.get("status")
        attempts = max_attempts if status not in ("succeeded", "failed", "canceled") else 1
        handle.prediction_status = status
        return PredictionResult(handle=handle, status=status, response=response, attempts=attempts)

    def download(self, url, dest):
        if url in self.download_errors:
            raise self.download_errors[url]
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(b"\xff\xd8 generated " + url.encode())
        self.downloaded.append((url, dest))
        return dest


@pytest.fixture
def library(tmp_path):
    lib = Library(tmp_path / "library")
    lib.ensure_dirs()
    return lib


@pytest.fixture
def store():
    return MemoryMetadataStore()


@pytest.fixture
def client():
    return FakeReplicate()
