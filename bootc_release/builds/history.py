"""Release history persistence.

Records pipeline runs so that past releases can be listed from the
CLI. Functions take an open session; callers own the transaction.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from bootc_release.builds.models import ReleaseRecord
from bootc_release.errors import ReleaseError, ReleaseNotFoundError
from bootc_release.release.manifest import ReleaseManifest
from bootc_release.types import ReleaseStatus

logger = logging.getLogger(__name__)


def start_release(
    session: Session,
    project: str,
    variant: str,
    tag: str,
    push: bool = False,
    sign: bool = False,
) -> ReleaseRecord:
    """Create a release record in running state.

    Args:
        session: Database session.
        project: Project name.
        variant: Variant being built.
        tag: Primary tag.
        push: Whether a push was requested.
        sign: Whether signing was requested.

    Returns:
        The flushed ReleaseRecord.
    """
    record = ReleaseRecord(
        project=project,
        variant=variant,
        tag=tag,
        pushed=push,
        signed=sign,
        status=ReleaseStatus.PENDING.value,
    )
    session.add(record)
    record.mark_running()
    session.flush()
    logger.debug("Started release record %d", record.id)
    return record


def complete_release(
    session: Session,
    record: ReleaseRecord,
    manifest: ReleaseManifest,
    manifest_path: Path | None = None,
) -> ReleaseRecord:
    """Mark a release as succeeded and copy the manifest summary."""
    record.version = manifest.version.version
    record.image_ref = manifest.version.image_ref
    if manifest.images:
        record.digest = manifest.images[0].digest
    record.signed = bool(manifest.signatures)
    if manifest.sbom is not None:
        record.sbom_location = manifest.sbom.location
    if manifest_path is not None:
        record.manifest_path = str(manifest_path)
    record.mark_succeeded()
    session.flush()
    return record


def fail_release(
    session: Session,
    record: ReleaseRecord,
    error: Exception,
) -> ReleaseRecord:
    """Mark a release as failed with the error's code and message."""
    if isinstance(error, ReleaseError):
        record.mark_failed(error_type=error.code, message=error.message)
    else:
        record.mark_failed(error_type=type(error).__name__, message=str(error))
    session.flush()
    return record


def get_release(session: Session, release_id: int) -> ReleaseRecord:
    """Get a release record by ID.

    Raises:
        ReleaseNotFoundError: If the record does not exist.
    """
    record = session.get(ReleaseRecord, release_id)
    if record is None:
        raise ReleaseNotFoundError(release_id)
    return record


def list_releases(
    session: Session,
    project: str | None = None,
    status: ReleaseStatus | None = None,
    limit: int = 50,
) -> list[ReleaseRecord]:
    """List release records, newest first.

    Args:
        session: Database session.
        project: Filter by project name.
        status: Filter by status.
        limit: Maximum results to return.
    """
    stmt = select(ReleaseRecord)
    if project is not None:
        stmt = stmt.where(ReleaseRecord.project == project)
    if status is not None:
        stmt = stmt.where(ReleaseRecord.status == status.value)
    stmt = stmt.order_by(ReleaseRecord.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


__all__ = [
    "complete_release",
    "fail_release",
    "get_release",
    "list_releases",
    "start_release",
]
