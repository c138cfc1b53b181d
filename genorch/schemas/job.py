"""
Job schema - the unit of work and its artifact references.

A Job is built from a job descriptor (a batch document entry or the
single-job settings) and never changes afterwards. Lifecycle status lives
on JobRecord (see state.py), not on the Job.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Union

from genorch.errors import JobSpecError

# Source category for references whose path is already a fetchable URL
URL_SOURCE = "url"

STORAGE_SCHEME = "storage://"


def parse_storage_uri(uri: str) -> tuple[str, str]:
    """Split storage://bucket/path into (bucket, path)."""
    remainder = uri[len(STORAGE_SCHEME):] if uri.startswith(STORAGE_SCHEME) else ""
    bucket, _, object_path = remainder.partition("/")
    if not bucket or not object_path:
        raise ValueError(f"storage location must be storage://<bucket>/<path>, got {uri!r}")
    return bucket, object_path


class ExecutionMode(str, Enum):
    """Compliance mode a job runs under."""
    RESTRICTED = "restricted"
    UNRESTRICTED = "unrestricted"


@dataclass(frozen=True)
class ArtifactReference:
    """
    Where an input artifact lives and where it lands locally.

    Attributes:
        source: Object-store bucket/category, or "url" for a pre-signed URL
        path: Object path inside the bucket, or the URL itself
        target: Local target path. None means the workspace picks the
            deterministic default for the artifact's role.
    """
    source: str
    path: str
    target: Optional[str] = None

    def __post_init__(self):
        if not self.source:
            raise JobSpecError("artifact reference missing 'source'")
        if not self.path:
            raise JobSpecError("artifact reference missing 'path'")

    @property
    def is_url(self) -> bool:
        return self.source == URL_SOURCE

    def with_target(self, target: str) -> "ArtifactReference":
        return replace(self, target=target)

    def to_dict(self) -> dict[str, Any]:
        result = {"source": self.source, "path": self.path}
        if self.target is not None:
            result["target"] = self.target
        return result

    @classmethod
    def from_value(cls, value: Union[str, dict[str, Any]], role: str) -> "ArtifactReference":
        """
        Parse a reference from a descriptor value.

        A bare string is shorthand for a pre-signed URL, or for a bucket
        object when written as storage://bucket/path.
        """
        if isinstance(value, str):
            if value.startswith(STORAGE_SCHEME):
                try:
                    bucket, object_path = parse_storage_uri(value)
                except ValueError as e:
                    raise JobSpecError(f"{role} reference: {e}") from e
                return cls(source=bucket, path=object_path)
            return cls(source=URL_SOURCE, path=value)
        if isinstance(value, dict):
            try:
                return cls(
                    source=value["source"],
                    path=value["path"],
                    target=value.get("target"),
                )
            except KeyError as e:
                raise JobSpecError(f"{role} reference missing field {e}")
        raise JobSpecError(f"{role} reference must be a URL string or an object, got {type(value).__name__}")


def _optional_reference(value: Any, role: str) -> Optional[ArtifactReference]:
    # Empty strings and nulls both mean "not supplied"
    if value is None or value == "":
        return None
    return ArtifactReference.from_value(value, role)


def _require(data: dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        job = data.get("job_id") or "<unknown>"
        raise JobSpecError(f"job {job}: '{key}' is required")
    return value


@dataclass(frozen=True)
class Job:
    """
    A single generation job.

    Attributes:
        job_id: Unique opaque identifier, also used to scope local paths
        owner_id: Identifier of the owner the output is produced for
        mode: Execution mode checked by the guardrail
        platform: Destination platform checked by the guardrail
        work_spec: Reference to the work-specification JSON document
        destination: Where the output archive is delivered
        dataset: Optional dataset bundle (zip) reference
        weights: Model weight references (may be empty)
        notify_url: Optional completion webhook
    """
    job_id: str
    owner_id: str
    mode: ExecutionMode
    platform: str
    work_spec: ArtifactReference
    destination: str
    dataset: Optional[ArtifactReference] = None
    weights: tuple[ArtifactReference, ...] = field(default_factory=tuple)
    notify_url: Optional[str] = None

    def __post_init__(self):
        if not self.job_id or "/" in self.job_id or "\\" in self.job_id or self.job_id in (".", ".."):
            raise JobSpecError(f"invalid job_id {self.job_id!r}: must be a non-empty path-safe name")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a job descriptor."""
        result: dict[str, Any] = {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "mode": self.mode.value,
            "platform": self.platform,
            "work_spec": self.work_spec.to_dict(),
            "destination": self.destination,
        }
        if self.dataset is not None:
            result["dataset"] = self.dataset.to_dict()
        if self.weights:
            result["weights"] = [w.to_dict() for w in self.weights]
        if self.notify_url:
            result["notify_url"] = self.notify_url
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        """
        Build a Job from a job descriptor.

        Raises:
            JobSpecError: If a required field is missing or a value is invalid
        """
        if not isinstance(data, dict):
            raise JobSpecError(f"job descriptor must be an object, got {type(data).__name__}")

        job_id = str(_require(data, "job_id"))
        mode_value = _require(data, "mode")
        try:
            mode = ExecutionMode(mode_value)
        except ValueError:
            allowed = ", ".join(m.value for m in ExecutionMode)
            raise JobSpecError(f"job {job_id}: unknown mode {mode_value!r} (expected one of: {allowed})")

        raw_weights = data.get("weights") or []
        if isinstance(raw_weights, (str, dict)):
            raw_weights = [raw_weights]
        weights = tuple(ArtifactReference.from_value(w, "weights") for w in raw_weights)

        return cls(
            job_id=job_id,
            owner_id=str(_require(data, "owner_id")),
            mode=mode,
            platform=str(_require(data, "platform")),
            work_spec=ArtifactReference.from_value(_require(data, "work_spec"), "work_spec"),
            destination=str(_require(data, "destination")),
            dataset=_optional_reference(data.get("dataset"), "dataset"),
            weights=weights,
            notify_url=data.get("notify_url") or None,
        )
