"""
Object store client - IO boundary for artifact retrieval and delivery.

Artifacts live either behind a pre-signed URL or in a bucket of a
Supabase-style storage API. Bucket objects are fetched through a
time-limited signed URL created with the service key.

Endpoints (relative to {storage_url}/storage/v1):
- POST /object/sign/{bucket}/{path}   body {"expiresIn": ttl} -> {"signedURL": ...}
- POST /object/{bucket}/{path}        upload (x-upsert: true)

Errors are raised as StorageError; callers translate them into the
stage error of the job they are working on.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import requests

from genorch.errors import GenorchError
from genorch.schemas.job import ArtifactReference

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class StorageError(GenorchError):
    """Object store request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ObjectStoreClient:
    """HTTP client for signed-URL object storage."""

    def __init__(
        self,
        storage_url: Optional[str] = None,
        storage_key: Optional[str] = None,
        signed_url_ttl: int = 3600,
        timeout: tuple[float, float] = (5.0, 300.0),
        session: Optional[requests.Session] = None,
    ):
        self.storage_url = storage_url.rstrip("/") if storage_url else None
        self.storage_key = storage_key
        self.signed_url_ttl = signed_url_ttl
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "ObjectStoreClient":
        return cls(
            storage_url=config.storage_url,
            storage_key=config.storage_key,
            signed_url_ttl=config.signed_url_ttl,
            timeout=config.http_timeout,
        )

    @property
    def api_base(self) -> str:
        if not self.storage_url:
            raise StorageError("storage_url is not configured; bucket references cannot be resolved")
        return f"{self.storage_url}/storage/v1"

    def _auth_headers(self) -> dict[str, str]:
        if not self.storage_key:
            raise StorageError("storage_key is not configured")
        return {
            "Authorization": f"Bearer {self.storage_key}",
            "apikey": self.storage_key,
        }

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    def create_signed_url(self, bucket: str, path: str, expires_in: Optional[int] = None) -> str:
        """Create a time-limited retrieval URL for bucket/path."""
        url = f"{self.api_base}/object/sign/{bucket}/{path.lstrip('/')}"
        expires = expires_in or self.signed_url_ttl
        try:
            response = self.session.post(
                url,
                json={"expiresIn": expires},
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise StorageError(f"signing {bucket}/{path} failed with status {status}", status) from e
        except requests.RequestException as e:
            raise StorageError(f"signing {bucket}/{path} failed: {e}") from e
        except ValueError as e:
            raise StorageError(f"signing {bucket}/{path} returned invalid JSON") from e

        signed = data.get("signedURL") if isinstance(data, dict) else None
        if not signed:
            raise StorageError(f"signing {bucket}/{path} returned no signedURL")
        if signed.startswith(("http://", "https://")):
            return signed
        return f"{self.api_base}/{signed.lstrip('/')}"

    def resolve_url(self, ref: ArtifactReference) -> str:
        """Return a fetchable URL for ref, signing it if it lives in a bucket."""
        if ref.is_url:
            return ref.path
        return self.create_signed_url(ref.source, ref.path)

    def download(self, url: str, dest: Path) -> int:
        """
        Stream url into dest, creating parent directories.

        Content goes to a sibling .part file first and is renamed into
        place only after the transfer completes.

        Returns:
            Number of bytes written
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        written = 0
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
        except requests.exceptions.HTTPError as e:
            partial.unlink(missing_ok=True)
            status = e.response.status_code if e.response is not None else None
            raise StorageError(f"download failed with status {status}", status) from e
        except requests.RequestException as e:
            partial.unlink(missing_ok=True)
            raise StorageError(f"download failed: {e}") from e

        os.replace(partial, dest)
        return written

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def put_file(self, url: str, path: Path, content_type: str = "application/zip") -> None:
        """PUT a local file to a pre-signed upload URL."""
        try:
            with open(path, "rb") as f:
                response = self.session.put(
                    url,
                    data=f,
                    headers={"Content-Type": content_type},
                    timeout=self.timeout,
                )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise StorageError(f"upload rejected with status {status}", status) from e
        except requests.RequestException as e:
            raise StorageError(f"upload failed: {e}") from e

    def upload(self, bucket: str, object_path: str, path: Path,
               content_type: str = "application/zip") -> None:
        """Upload a local file into bucket/object_path (upsert)."""
        url = f"{self.api_base}/object/{bucket}/{object_path.lstrip('/')}"
        headers = dict(self._auth_headers())
        headers["Content-Type"] = content_type
        headers["x-upsert"] = "true"
        logger.info(f"Uploading {path} -> {bucket}/{object_path}")
        try:
            with open(path, "rb") as f:
                response = self.session.post(url, data=f, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise StorageError(f"upload to {bucket}/{object_path} rejected with status {status}", status) from e
        except requests.RequestException as e:
            raise StorageError(f"upload to {bucket}/{object_path} failed: {e}") from e
