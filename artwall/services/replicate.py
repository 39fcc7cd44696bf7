"""Replicate predictions API interface."""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from artwall.errors import OutputDownloadFailed, SubmissionFailed

log = logging.getLogger(__name__)

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")

POLL_INTERVAL = 5          # seconds between polls
MAX_POLL_ATTEMPTS = 120    # 120 * 5s = 10 minutes
REQUEST_TIMEOUT = 30


def load_replicate_token() -> Optional[str]:
    """Return the Replicate API token from REPLICATE_API_TOKEN, or None."""
    token = os.environ.get("REPLICATE_API_TOKEN", "").strip()
    return token or None


@dataclass
class PredictionHandle:
    """Opaque reference to an in-flight prediction, enough to resume polling."""
    prediction_id: Optional[str]
    prediction_url: str
    prediction_status: str = "unknown"

    @classmethod
    def from_response(cls, resp: Dict[str, Any]) -> "PredictionHandle":
        return cls(
            prediction_id=resp.get("id"),
            prediction_url=resp["urls"]["get"],
            prediction_status=resp.get("status") or "unknown",
        )

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Optional["PredictionHandle"]:
        """Rebuild a handle persisted in a job record, None if it has none."""
        url = record.get("prediction_url")
        if not url:
            return None
        return cls(
            prediction_id=record.get("prediction_id"),
            prediction_url=url,
            prediction_status=record.get("prediction_status") or "unknown",
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "prediction_id": self.prediction_id,
            "prediction_url": self.prediction_url,
            "prediction_status": self.prediction_status,
        }


@dataclass
class PredictionResult:
    """Outcome of polling one prediction."""
    handle: PredictionHandle
    status: str
    response: Optional[Dict[str, Any]]
    attempts: int = 0

    @property
    def timed_out(self) -> bool:
        """Not terminal yet, or terminal but its payload never arrived."""
        return self.status not in TERMINAL_STATUSES or self.response is None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded" and self.response is not None

    @property
    def error(self) -> Optional[str]:
        if self.response and self.response.get("error"):
            return str(self.response["error"])
        if self.timed_out:
            return "Prediction did not complete in time"
        return None

    def output_text(self) -> str:
        """Model output flattened to text (token lists are joined with spaces)."""
        output = (self.response or {}).get("output")
        if output is None:
            return ""
        if isinstance(output, list):
            return " ".join(str(part) for part in output)
        return str(output)

    def output_url(self) -> Optional[str]:
        """First output URL for image-producing models."""
        output = (self.response or {}).get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if isinstance(output, str) and output.startswith(("http://", "https://")):
            return output
        return None

    def raw_json(self) -> str:
        return json.dumps(self.response, indent=2, ensure_ascii=False)


class ReplicateAPI:
    """Interface to the Replicate predictions API."""

    BASE_URL = "https://api.replicate.com/v1"

    def __init__(self, token: Optional[str] = None, session: Optional[requests.Session] = None):
        self.token = token or load_replicate_token()
        self.session = session or requests.Session()
        if self.token:
            self.session.headers.update({"Authorization": f"Token {self.token}"})
        self.session.headers.update({"User-Agent": "artwall/1.0"})

    def submit(self, model: str, model_input: Dict[str, Any]) -> PredictionHandle:
        """
        Create a prediction without waiting for it.

        Raises:
            SubmissionFailed: transport error, HTTP >= 400, or a response without urls.get
        """
        url = f"{self.BASE_URL}/models/{model}/predictions"
        try:
            response = self.session.post(url, json={"input": model_input}, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise SubmissionFailed(f"request to {model} failed", detail=str(e))

        if response.status_code >= 400:
            raise SubmissionFailed(
                f"{model} rejected prediction (HTTP {response.status_code})",
                detail=response.text[:500],
                http_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or not isinstance(data.get("urls"), dict) or not data["urls"].get("get"):
            raise SubmissionFailed(
                "invalid_prediction_response",
                detail=response.text[:500],
                http_code=response.status_code,
            )

        handle = PredictionHandle.from_response(data)
        log.info("Created prediction %s on %s (%s)", handle.prediction_id, model, handle.prediction_status)
        return handle

    def get(self, url: str) -> Dict[str, Any]:
        """Fetch a prediction once. Raises requests/ValueError errors to the caller."""
        response = self.session.get(url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected JSON object, got {type(data).__name__}")
        return data

    def poll(
        self,
        handle: PredictionHandle,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        interval: float = POLL_INTERVAL,
    ) -> PredictionResult:
        """
        Poll a prediction until it reaches a terminal status or attempts run out.

        Transient errors (network, bad status, invalid JSON) are logged and
        counted as an attempt. A handle that is already terminal (resuming a
        finished job) is fetched without waiting first, and keeps being
        fetched until its payload arrives. When attempts run out the result
        is ``timed_out`` and ``response`` holds the last good payload, if any.
        """
        status = handle.prediction_status
        last_response = None
        attempt = 0
        wait = status not in TERMINAL_STATUSES

        while (status not in TERMINAL_STATUSES or last_response is None) and attempt < max_attempts:
            if wait:
                time.sleep(interval)
            wait = True
            attempt += 1
            try:
                resp = self.get(handle.prediction_url)
            except (requests.exceptions.RequestException, ValueError) as e:
                log.warning(
                    "Poll %d/%d for %s failed: %s",
                    attempt, max_attempts, handle.prediction_id, e,
                )
                continue
            last_response = resp
            status = resp.get("status") or "unknown"
            log.debug("Poll %d/%d for %s: %s", attempt, max_attempts, handle.prediction_id, status)

        handle.prediction_status = status
        result = PredictionResult(handle=handle, status=status, response=last_response, attempts=attempt)
        if result.timed_out:
            log.warning("Prediction %s still %s after %d attempts", handle.prediction_id, status, attempt)
        return result

    def download(self, url: str, dest: Path) -> Path:
        """Download an output file and publish it atomically at ``dest``."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            response = self.session.get(url, timeout=REQUEST_TIMEOUT * 4)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise OutputDownloadFailed(f"could not download {url}", url=url, reason=str(e))

        fd, tmp = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=str(dest.parent))
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(response.content)
            os.replace(tmp, dest)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        log.info("Downloaded %s -> %s", url, dest.name)
        return dest
