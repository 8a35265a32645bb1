"""Commit and per-file change models."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitpulse.models.base import Base, IntegerIdMixin, utcnow


class Commit(Base, IntegerIdMixin):
    """A commit with aggregate line counts.

    A row whose ``code_lines_added`` is NULL is incomplete and gets its
    counts filled in on the next sync.
    """

    __tablename__ = "commits"

    hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    repository_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repositories.id"), nullable=False, index=True
    )
    author_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lines_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    code_lines_added: Mapped[int | None] = mapped_column(Integer, nullable=True)
    code_lines_removed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data_lines_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    data_lines_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    config_lines_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    config_lines_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    docs_lines_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    docs_lines_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_merge: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_revert: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Set for every merge commit, not only those reached through a PR
    is_pr_merge_commit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    files: Mapped[list["CommitFile"]] = relationship(
        "CommitFile",
        back_populates="commit",
        cascade="all, delete-orphan",
    )

    @property
    def is_complete(self) -> bool:
        return self.code_lines_added is not None

    def __repr__(self) -> str:
        return f"<Commit {self.hash[:12]}>"


class CommitFile(Base, IntegerIdMixin):
    """Line changes of one file within a commit."""

    __tablename__ = "commit_files"

    commit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("commits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    change_status: Mapped[str] = mapped_column(String(20), nullable=False)
    lines_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lines_removed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    file_extension: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    exclude_from_reporting: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    commit: Mapped["Commit"] = relationship("Commit", back_populates="files")

    def __repr__(self) -> str:
        return f"<CommitFile {self.file_path}>"
