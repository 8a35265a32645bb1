"""Repository and per-window sync log models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.models.base import Base, IntegerIdMixin, utcnow


class SyncStatus(str, Enum):
    """Lifecycle of one sync window."""

    STARTED = "Started"
    COMPLETED = "Completed"
    FAILED = "Failed"


class Repository(Base, IntegerIdMixin):
    """A Bitbucket repository tracked for ingestion."""

    __tablename__ = "repositories"

    external_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    workspace: Mapped[str] = mapped_column(String(255), nullable=False)
    created_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_delta_sync_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    exclude_from_sync: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Repository {self.workspace}/{self.slug}>"


class RepositorySyncLog(Base, IntegerIdMixin):
    """Outcome of syncing one repository over one date window."""

    __tablename__ = "repository_sync_logs"

    repository_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repositories.id"), nullable=False, index=True
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    commit_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
