"""Release history ORM models.

This module defines the ReleaseRecord model storing one row per
pipeline run started from the CLI.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from bootc_release.db import Base
from bootc_release.types import ReleaseStatus


class ReleaseRecord(Base):
    """ORM model for release pipeline runs.

    Attributes:
        id: Primary key.
        project: Project name.
        variant: Variant built.
        tag: Primary image tag.
        version: Computed version string.
        image_ref: Resolved image reference.
        digest: Image digest, empty if the lookup failed.
        status: Run status (pending, running, succeeded, failed).
        pushed: Whether the image was pushed.
        signed: Whether the image was signed.
        sbom_location: Path of the generated SBOM.
        manifest_path: Path of the written release manifest.
        error_type: Error code if the run failed.
        error_message: Error message if the run failed.
        requested_at: Timestamp when the run was recorded.
        started_at: Timestamp when the pipeline started.
        finished_at: Timestamp when the pipeline finished.
    """

    __tablename__ = "release_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    project: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    variant: Mapped[str] = mapped_column(String(100), nullable=False)
    tag: Mapped[str] = mapped_column(String(128), nullable=False)
    version: Mapped[str | None] = mapped_column(String(100), nullable=True)
    image_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    digest: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReleaseStatus.PENDING.value, index=True
    )
    pushed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    signed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    sbom_location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    manifest_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (Index("ix_release_records_project_status", "project", "status"),)

    def __repr__(self) -> str:
        return (
            f"<ReleaseRecord(id={self.id}, project='{self.project}', "
            f"tag='{self.tag}', status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this run as running."""
        self.status = ReleaseStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self) -> None:
        """Mark this run as succeeded."""
        self.status = ReleaseStatus.SUCCEEDED.value
        self.finished_at = datetime.now()

    def mark_failed(
        self, error_type: str | None = None, message: str | None = None
    ) -> None:
        """Mark this run as failed.

        Args:
            error_type: Error code.
            message: Error message details.
        """
        self.status = ReleaseStatus.FAILED.value
        self.finished_at = datetime.now()
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message

    def is_succeeded(self) -> bool:
        """Check if this run succeeded."""
        return self.status == ReleaseStatus.SUCCEEDED.value


__all__ = ["ReleaseRecord"]
