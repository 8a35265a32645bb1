"""Bitbucket ingestion orchestrators."""

from gitpulse.pipelines.ingestion.base import BaseSyncOrchestrator, SyncResult
from gitpulse.pipelines.ingestion.commits import CommitSyncOrchestrator
from gitpulse.pipelines.ingestion.pull_requests import PullRequestSyncOrchestrator
from gitpulse.pipelines.ingestion.repositories import RepositorySyncOrchestrator
from gitpulse.pipelines.ingestion.upsert import CommitUpsertEngine
from gitpulse.pipelines.ingestion.users import UserSyncOrchestrator

__all__ = [
    "BaseSyncOrchestrator",
    "CommitSyncOrchestrator",
    "CommitUpsertEngine",
    "PullRequestSyncOrchestrator",
    "RepositorySyncOrchestrator",
    "SyncResult",
    "UserSyncOrchestrator",
]
