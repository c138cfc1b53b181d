"""
Engine client - HTTP boundary to the generation engine.

The engine is a queue-based compute service on a local HTTP API:
- POST /prompt           {"prompt": <work spec>, "client_id": ...} -> {"prompt_id": ...}
- GET  /history/{id}     {} until finished, then {"<id>": {...outputs...}}
- GET  /queue            {"queue_running": [...], "queue_pending": [...]}

The work specification is delivered unmodified inside the envelope. There is
no automatic retry on submission.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import requests

from genorch.errors import GenorchError, SubmissionError

logger = logging.getLogger(__name__)

HANDLE_FIELD = "prompt_id"


class EngineError(GenorchError):
    """Engine status endpoint could not be read."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def build_envelope(work_spec: Any, client_id: Optional[str] = None) -> dict[str, Any]:
    """Wrap a work specification in the submission envelope."""
    envelope: dict[str, Any] = {"prompt": work_spec}
    if client_id:
        envelope["client_id"] = client_id
    return envelope


class EngineClient:
    """HTTP client for the engine's submit and status endpoints."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8188",
        timeout: tuple[float, float] = (5.0, 300.0),
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "EngineClient":
        return cls(base_url=config.engine_url, timeout=config.http_timeout)

    def _extract_error_message(self, response: Optional[requests.Response]) -> str:
        """Pull the engine's error text out of a failed response."""
        if response is None:
            return "no response"
        try:
            data = response.json()
        except ValueError:
            return (response.text or "").strip()[:500] or f"status {response.status_code}"
        if isinstance(data, dict) and "error" in data:
            error = data["error"]
            if isinstance(error, dict):
                return error.get("message") or json.dumps(error)
            return str(error)
        return json.dumps(data)[:500]

    def submit(self, work_spec_path: Path, client_id: Optional[str] = None,
               job_id: Optional[str] = None) -> str:
        """
        Submit a work specification and return the engine's handle.

        Args:
            work_spec_path: Local path of the work-specification JSON document
            client_id: Optional engine client id (the job id by default)
            job_id: Job the submission belongs to, for diagnostics

        Returns:
            Submission handle

        Raises:
            SubmissionError: Transport failure, rejection, or a response
                without a handle (malformed=True)
        """
        try:
            work_spec = json.loads(Path(work_spec_path).read_text())
        except OSError as e:
            raise SubmissionError(f"cannot read work specification {work_spec_path}: {e}", job_id=job_id) from e
        except json.JSONDecodeError as e:
            raise SubmissionError(f"work specification is not valid JSON: {e}", job_id=job_id) from e

        url = f"{self.base_url}/prompt"
        envelope = build_envelope(work_spec, client_id or job_id)
        try:
            response = self.session.post(url, json=envelope, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            message = self._extract_error_message(e.response)
            raise SubmissionError(f"engine rejected submission ({status}): {message}", job_id=job_id) from e
        except requests.RequestException as e:
            raise SubmissionError(f"failed to submit to engine at {url}: {e}", job_id=job_id) from e

        try:
            data = response.json()
        except ValueError as e:
            raise SubmissionError(
                f"engine response is not JSON: {response.text[:200]!r}", job_id=job_id, malformed=True
            ) from e

        handle = data.get(HANDLE_FIELD) if isinstance(data, dict) else None
        if not handle:
            raise SubmissionError(
                f"engine response missing {HANDLE_FIELD}: {json.dumps(data)[:200]}",
                job_id=job_id,
                malformed=True,
            )
        return str(handle)

    def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise EngineError(f"GET {url} failed with status {status}", status) from e
        except requests.RequestException as e:
            raise EngineError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise EngineError(f"GET {url} returned invalid JSON") from e

    def get_history(self, handle: str) -> dict[str, Any]:
        """Return the history record for handle ({} while not finished)."""
        data = self._get_json(f"/history/{handle}")
        return data if isinstance(data, dict) else {}

    def get_queue(self) -> dict[str, Any]:
        """Return the engine's running/pending queue view."""
        data = self._get_json("/queue")
        return data if isinstance(data, dict) else {}
