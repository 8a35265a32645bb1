"""Pull request, approval and PR-commit link models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.models.base import Base, IntegerIdMixin


class PullRequestState(str, Enum):
    """Bitbucket pull request states."""

    OPEN = "OPEN"
    MERGED = "MERGED"
    DECLINED = "DECLINED"
    SUPERSEDED = "SUPERSEDED"


class PullRequest(Base, IntegerIdMixin):
    """A pull request, overwritten on every sync."""

    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint("external_id", "repository_id", name="uq_pull_requests_external_repo"),
    )

    external_id: Mapped[str] = mapped_column(String(50), nullable=False)
    repository_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repositories.id"), nullable=False, index=True
    )
    author_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merged_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_revert: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<PullRequest #{self.external_id}>"


class PullRequestApproval(Base, IntegerIdMixin):
    """Latest approval by one user on one pull request."""

    __tablename__ = "pull_request_approvals"
    __table_args__ = (
        UniqueConstraint("pull_request_id", "user_uuid", name="uq_pr_approvals_pr_user"),
    )

    pull_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pull_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_uuid: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="REVIEWER")
    approved: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False, default="approved")
    approved_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PullRequestCommit(Base):
    """Link between a pull request and one of its commits."""

    __tablename__ = "pull_request_commits"

    pull_request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pull_requests.id", ondelete="CASCADE"), primary_key=True
    )
    commit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("commits.id", ondelete="CASCADE"), primary_key=True
    )
