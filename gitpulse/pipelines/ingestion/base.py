"""Shared pieces of the Bitbucket sync orchestrators."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.integrations.bitbucket.client import BitbucketClient, bitbucket_client
from gitpulse.models.base import utcnow
from gitpulse.models.repository import Repository

logger = structlog.get_logger()


@dataclass
class SyncResult:
    """Result of a sync run."""

    source: str
    started_at: datetime
    completed_at: datetime | None = None
    boundary_hit: bool = False
    items_processed: int = 0
    items_synced: int = 0
    items_skipped: int = 0
    commits_synced: int = 0
    approvals_synced: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if not self.completed_at:
            return 0
        return (self.completed_at - self.started_at).total_seconds()

    def finish(self) -> "SyncResult":
        self.completed_at = utcnow()
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source": self.source,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "boundary_hit": self.boundary_hit,
            "items_processed": self.items_processed,
            "items_synced": self.items_synced,
            "items_skipped": self.items_skipped,
            "commits_synced": self.commits_synced,
            "approvals_synced": self.approvals_synced,
            "error_count": len(self.errors),
        }


class BaseSyncOrchestrator:
    """Base class for orchestrators that page through one Bitbucket collection.

    Orchestrators never sleep for the rate limit themselves; the client does.
    They only report the pause so long runs stay explainable in the logs.
    """

    source_name = "bitbucket"

    def __init__(self, session: AsyncSession, client: BitbucketClient | None = None):
        self.session = session
        self.client = client or bitbucket_client

    def _new_result(self) -> SyncResult:
        return SyncResult(source=self.source_name, started_at=utcnow())

    def _check_rate_limit(self, action: str, **context: Any) -> None:
        wait = self.client.rate_limit.wait_time()
        if wait is not None:
            logger.info(
                "Waiting for rate limit to reset",
                action=action,
                wait_seconds=round(wait.total_seconds(), 1),
                **context,
            )

    def _warn_if_rate_limited(self, **context: Any) -> None:
        wait = self.client.rate_limit.wait_time()
        if wait is not None:
            logger.warning(
                "API is currently rate limited, sync will wait before starting",
                wait_seconds=round(wait.total_seconds(), 1),
                **context,
            )

    async def _get_repository(self, workspace: str, repo_slug: str) -> Repository | None:
        return await self.session.scalar(
            select(Repository).where(
                Repository.slug == repo_slug,
                Repository.workspace == workspace,
            )
        )

    async def _mark_synced(self, repository_id: int) -> None:
        await self.session.execute(
            update(Repository)
            .where(Repository.id == repository_id)
            .values(last_delta_sync_date=utcnow())
        )
        await self.session.commit()
