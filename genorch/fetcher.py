"""
Artifact fetcher - idempotent download of a job's inputs.

fetch() returns immediately when the local target already exists, so a
partially completed job can be re-run without downloading again. The work
specification is required; dataset bundle and model weights are fetched only
when the job references them.
"""

import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from genorch.errors import FetchError
from genorch.schemas.job import ArtifactReference
from genorch.storage.client import ObjectStoreClient, StorageError
from genorch.workspace import JobWorkspace

logger = logging.getLogger(__name__)


@dataclass
class FetchedArtifacts:
    """Local paths of a job's inputs after fetching."""
    work_spec: Path
    dataset_dir: Optional[Path] = None
    weights: list[Path] = field(default_factory=list)


def extract_bundle(archive: Path, dest: Path, job_id: Optional[str] = None) -> list[Path]:
    """
    Expand a zip bundle into dest, overwriting existing files.

    Raises:
        FetchError: If the archive is corrupt, encrypted, or cannot be
            expanded, or a member escapes dest
    """
    try:
        dest.mkdir(parents=True, exist_ok=True)
        dest_root = dest.resolve()
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                member_path = (dest_root / member).resolve()
                if member_path != dest_root and dest_root not in member_path.parents:
                    raise FetchError(f"dataset member escapes target directory: {member}", job_id=job_id)
            zf.extractall(dest_root)
            return [dest_root / name for name in zf.namelist() if not name.endswith("/")]
    except zipfile.BadZipFile as e:
        raise FetchError(f"dataset bundle is not a valid zip: {archive}", job_id=job_id) from e
    # RuntimeError: encrypted member; NotImplementedError: unsupported compression
    except (OSError, RuntimeError, NotImplementedError) as e:
        raise FetchError(f"cannot expand dataset bundle {archive}: {e}", job_id=job_id) from e


class ArtifactFetcher:
    """Downloads artifact references to their local targets."""

    def __init__(self, store: ObjectStoreClient):
        self.store = store

    def fetch(self, ref: ArtifactReference, job_id: Optional[str] = None) -> Path:
        """
        Fetch ref to its local target.

        Args:
            ref: Reference with a resolved target path
            job_id: Job the fetch belongs to, for diagnostics

        Returns:
            Local path of the artifact

        Raises:
            FetchError: If the artifact cannot be retrieved
        """
        if ref.target is None:
            raise FetchError(f"no local target for {ref.source}/{ref.path}", job_id=job_id)

        target = Path(ref.target)
        if target.exists():
            logger.info(f"Already exists, skip download: {target}", extra={"job_id": job_id, "stage": "fetch"})
            return target

        label = ref.path if ref.is_url else f"{ref.source}/{ref.path}"
        try:
            url = self.store.resolve_url(ref)
            logger.info(f"Downloading {label} -> {target}", extra={"job_id": job_id, "stage": "fetch"})
            size = self.store.download(url, target)
        except StorageError as e:
            raise FetchError(f"{label}: {e}", job_id=job_id) from e
        except OSError as e:
            raise FetchError(f"{label}: cannot write {target}: {e}", job_id=job_id) from e

        logger.debug(f"Fetched {size} bytes into {target}")
        return target

    def fetch_job_artifacts(self, workspace: JobWorkspace) -> FetchedArtifacts:
        """
        Fetch every artifact a job references.

        Optional artifacts with no reference are skipped. A dataset bundle is
        expanded into the job's dataset directory.
        """
        job_id = workspace.job.job_id

        dataset_dir = None
        dataset_ref = workspace.dataset_ref()
        if dataset_ref is not None:
            archive = self.fetch(dataset_ref, job_id=job_id)
            extract_bundle(archive, workspace.dataset_dir, job_id=job_id)
            dataset_dir = workspace.dataset_dir

        weights = [self.fetch(ref, job_id=job_id) for ref in workspace.weight_refs()]

        work_spec = self.fetch(workspace.work_spec_ref(), job_id=job_id)

        return FetchedArtifacts(work_spec=work_spec, dataset_dir=dataset_dir, weights=weights)
