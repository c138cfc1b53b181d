"""
Result publisher - deliver the archive and notify the completion webhook.

Destinations:
- http(s)://...                 pre-signed PUT URL
- storage://<bucket>/<path>     object store upload (upsert)

Upload failure is fatal for the job. Notification is best-effort: callers
log NotifyError and move on.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import requests

from genorch.errors import NotifyError, PublishError
from genorch.schemas.job import STORAGE_SCHEME, parse_storage_uri
from genorch.storage.client import ObjectStoreClient, StorageError

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/zip"


class ResultPublisher:
    """Uploads archives and posts completion callbacks."""

    def __init__(
        self,
        store: ObjectStoreClient,
        notify_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.store = store
        self.notify_timeout = notify_timeout
        self.session = session or requests.Session()

    def publish(self, archive_path: Path, destination: str, job_id: Optional[str] = None) -> None:
        """
        Upload archive_path to destination.

        Raises:
            PublishError: If the destination is invalid, unreachable, or rejects the upload
        """
        if not archive_path.is_file():
            raise PublishError(f"archive not found: {archive_path}", job_id=job_id)

        try:
            if destination.startswith(STORAGE_SCHEME):
                bucket, object_path = parse_storage_uri(destination)
                self.store.upload(bucket, object_path, archive_path, content_type=ARCHIVE_CONTENT_TYPE)
            elif destination.startswith(("http://", "https://")):
                self.store.put_file(destination, archive_path, content_type=ARCHIVE_CONTENT_TYPE)
            else:
                raise PublishError(f"unsupported destination: {destination!r}", job_id=job_id)
        except ValueError as e:
            raise PublishError(str(e), job_id=job_id) from e
        except StorageError as e:
            raise PublishError(str(e), job_id=job_id) from e
        except OSError as e:
            raise PublishError(f"cannot read archive {archive_path}: {e}", job_id=job_id) from e

        logger.info("Upload complete.", extra={"job_id": job_id, "stage": "publish"})

    def notify(self, callback_url: str, summary: dict[str, Any]) -> None:
        """
        POST the job summary to callback_url.

        Raises:
            NotifyError: If the webhook is unreachable or answers with an error
        """
        job_id = summary.get("job_id")
        try:
            response = self.session.post(callback_url, json=summary, timeout=self.notify_timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise NotifyError(f"callback answered with status {status}", job_id=job_id) from e
        except requests.RequestException as e:
            raise NotifyError(f"callback failed: {e}", job_id=job_id) from e
