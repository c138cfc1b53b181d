"""
Output packager - stamp metadata and archive a job's output directory.

The work specification must direct the engine to write its files into the
job's output directory. The packager archives whatever is there; it does not
go looking for files the engine wrote elsewhere.
"""

import json
import logging
import zipfile
from pathlib import Path

from genorch.errors import PackagingError
from genorch.schemas.result import OutputMetadata
from genorch.workspace import METADATA_FILENAME

logger = logging.getLogger(__name__)


def write_metadata(output_dir: Path, metadata: OutputMetadata) -> Path:
    """
    Write the metadata record into output_dir.

    Raises:
        PackagingError: If output_dir is missing or the record cannot be written
    """
    if not output_dir.is_dir():
        raise PackagingError(f"output directory not found: {output_dir}", job_id=metadata.job_id)

    path = output_dir / METADATA_FILENAME
    try:
        path.write_text(json.dumps(metadata.to_dict(), indent=2) + "\n")
    except OSError as e:
        raise PackagingError(f"cannot write {path}: {e}", job_id=metadata.job_id) from e
    return path


def package(output_dir: Path, archive_path: Path, job_id: str | None = None) -> Path:
    """
    Archive every file under output_dir into a zip at archive_path.

    Member names are relative to output_dir. An existing archive is replaced.

    Returns:
        archive_path

    Raises:
        PackagingError: On unexpected filesystem state
    """
    if not output_dir.is_dir():
        raise PackagingError(f"output directory not found: {output_dir}", job_id=job_id)

    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        files = sorted(p for p in output_dir.rglob("*") if p.is_file())
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in files:
                zf.write(path, arcname=path.relative_to(output_dir).as_posix())
    except OSError as e:
        raise PackagingError(f"cannot build archive {archive_path}: {e}", job_id=job_id) from e

    logger.info(f"Packaged {len(files)} files into {archive_path}", extra={"job_id": job_id, "stage": "package"})
    return archive_path


def package_outputs(output_dir: Path, archive_path: Path, metadata: OutputMetadata) -> Path:
    """Write metadata, then archive the output directory."""
    write_metadata(output_dir, metadata)
    return package(output_dir, archive_path, job_id=metadata.job_id)
