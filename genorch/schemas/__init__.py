"""
genorch.schemas - Data structures for the job lifecycle.

Job -> JobRecord -> OutputMetadata -> BatchResult

1. Job: Immutable unit of work parsed from a job descriptor
2. JobRecord: Mutable lifecycle record (state, handle, error) for one run of a Job
3. OutputMetadata: Metadata record stamped into the output directory on completion
4. BatchResult: Per-job records and counts for a batch run
"""

from .job import (
    ArtifactReference,
    ExecutionMode,
    Job,
    STORAGE_SCHEME,
    URL_SOURCE,
    parse_storage_uri,
)
from .state import (
    FAILURE_STATES,
    InvalidTransition,
    JobRecord,
    JobState,
    TERMINAL_STATES,
)
from .result import (
    BatchResult,
    OutputMetadata,
)

__all__ = [
    # Job
    "ArtifactReference",
    "ExecutionMode",
    "Job",
    "STORAGE_SCHEME",
    "URL_SOURCE",
    "parse_storage_uri",
    # State
    "FAILURE_STATES",
    "InvalidTransition",
    "JobRecord",
    "JobState",
    "TERMINAL_STATES",
    # Results
    "BatchResult",
    "OutputMetadata",
]
