"""Tests for ResultPublisher."""

from unittest.mock import MagicMock

import pytest
import requests

from genorch.errors import NotifyError, PublishError
from genorch.publisher import ResultPublisher


@pytest.fixture
def archive(tmp_path):
    path = tmp_path / "output.zip"
    path.write_bytes(b"PK\x03\x04 archive")
    return path


class TestPublish:
    """Destination routing and failure mapping."""

    def test_signed_url_destination_uses_put(self, store, archive):
        ResultPublisher(store).publish(archive, "https://signed.test/upload/j1.zip", job_id="j1")

        assert store.puts == [("https://signed.test/upload/j1.zip", b"PK\x03\x04 archive", "application/zip")]
        assert store.uploads == []

    def test_storage_destination_uploads_to_bucket(self, store, archive):
        ResultPublisher(store).publish(archive, "storage://outputs/owner-1/j1.zip", job_id="j1")

        assert store.uploads == [("outputs", "owner-1/j1.zip", b"PK\x03\x04 archive", "application/zip")]
        assert store.puts == []

    def test_rejected_upload(self, store, archive):
        store.reject_uploads = True

        with pytest.raises(PublishError, match="status 403") as exc_info:
            ResultPublisher(store).publish(archive, "https://signed.test/upload/j1.zip", job_id="j1")

        assert exc_info.value.job_id == "j1"

    def test_unsupported_destination(self, store, archive):
        with pytest.raises(PublishError, match="unsupported destination"):
            ResultPublisher(store).publish(archive, "ftp://example/j1.zip")

    def test_malformed_storage_destination(self, store, archive):
        with pytest.raises(PublishError, match="storage://<bucket>/<path>"):
            ResultPublisher(store).publish(archive, "storage://outputs")

    def test_missing_archive(self, store, tmp_path):
        with pytest.raises(PublishError, match="archive not found"):
            ResultPublisher(store).publish(tmp_path / "nope.zip", "https://signed.test/upload")


class TestNotify:
    """Completion webhook."""

    def test_posts_summary(self, store):
        session = MagicMock()
        publisher = ResultPublisher(store, notify_timeout=3.0, session=session)
        summary = {"job_id": "j1", "status": "done", "submission_handle": "abc"}

        publisher.notify("https://hooks.test/done", summary)

        session.post.assert_called_once_with("https://hooks.test/done", json=summary, timeout=3.0)

    def test_unreachable_callback(self, store):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(NotifyError, match="callback failed") as exc_info:
            ResultPublisher(store, session=session).notify("https://hooks.test/done", {"job_id": "j1"})

        assert exc_info.value.job_id == "j1"

    def test_callback_error_status(self, store):
        response = MagicMock()
        response.status_code = 502
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
        session = MagicMock()
        session.post.return_value = response

        with pytest.raises(NotifyError, match="status 502"):
            ResultPublisher(store, session=session).notify("https://hooks.test/done", {"job_id": "j1"})
