"""Database models."""

from gitpulse.models.base import Base
from gitpulse.models.commit import Commit, CommitFile
from gitpulse.models.pull_request import (
    PullRequest,
    PullRequestApproval,
    PullRequestCommit,
    PullRequestState,
)
from gitpulse.models.repository import Repository, RepositorySyncLog, SyncStatus
from gitpulse.models.setting import Setting
from gitpulse.models.user import User

__all__ = [
    "Base",
    "Commit",
    "CommitFile",
    "PullRequest",
    "PullRequestApproval",
    "PullRequestCommit",
    "PullRequestState",
    "Repository",
    "RepositorySyncLog",
    "Setting",
    "SyncStatus",
    "User",
]
