"""
Job-scoped local path layout.

All paths derive from the configured root, the job's mode and the job id,
so re-running a job lands on the same paths and the fetcher's idempotence
check works across runs:

    <root>/<mode>/tmp/<job_id>/workflow.json     work specification
    <root>/<mode>/tmp/<job_id>/dataset.zip       dataset bundle
    <root>/<mode>/datasets/<job_id>/             expanded dataset
    <root>/<mode>/loras/<job_id>/<owner>__<mode>__latest.safetensors   default weight target
    <root>/<mode>/outputs/<job_id>/              engine output directory
    <root>/<mode>/outputs/<job_id>/meta.json     output metadata
    <root>/<mode>/tmp/<job_id>/output.zip        packaged archive
"""

from pathlib import Path

from genorch.schemas.job import ArtifactReference, Job

WORK_SPEC_FILENAME = "workflow.json"
DATASET_FILENAME = "dataset.zip"
ARCHIVE_FILENAME = "output.zip"
METADATA_FILENAME = "meta.json"


class JobWorkspace:
    """Deterministic local paths for one job under an explicit root."""

    def __init__(self, root: Path, job: Job):
        self.root = Path(root)
        self.job = job
        self.mode_root = self.root / job.mode.value

    @property
    def tmp_dir(self) -> Path:
        return self.mode_root / "tmp" / self.job.job_id

    @property
    def output_dir(self) -> Path:
        return self.mode_root / "outputs" / self.job.job_id

    @property
    def dataset_dir(self) -> Path:
        return self.mode_root / "datasets" / self.job.job_id

    @property
    def weights_dir(self) -> Path:
        return self.mode_root / "loras" / self.job.job_id

    @property
    def work_spec_path(self) -> Path:
        return self.tmp_dir / WORK_SPEC_FILENAME

    @property
    def dataset_archive_path(self) -> Path:
        return self.tmp_dir / DATASET_FILENAME

    @property
    def archive_path(self) -> Path:
        return self.tmp_dir / ARCHIVE_FILENAME

    @property
    def metadata_path(self) -> Path:
        return self.output_dir / METADATA_FILENAME

    def default_weight_path(self, index: int = 0) -> Path:
        stem = f"{self.job.owner_id}__{self.job.mode.value}__latest"
        if index:
            stem = f"{stem}_{index}"
        return self.weights_dir / f"{stem}.safetensors"

    def prepare(self) -> None:
        """Create the tmp and output directories."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _resolve_target(self, ref: ArtifactReference, default: Path) -> ArtifactReference:
        if ref.target is None:
            return ref.with_target(str(default))
        target = Path(ref.target).expanduser()
        if not target.is_absolute():
            target = self.root / target
        return ref.with_target(str(target))

    def work_spec_ref(self) -> ArtifactReference:
        return self._resolve_target(self.job.work_spec, self.work_spec_path)

    def dataset_ref(self) -> ArtifactReference | None:
        if self.job.dataset is None:
            return None
        return self._resolve_target(self.job.dataset, self.dataset_archive_path)

    def weight_refs(self) -> list[ArtifactReference]:
        return [
            self._resolve_target(ref, self.default_weight_path(i))
            for i, ref in enumerate(self.job.weights)
        ]
