"""Commit history sync for one repository."""

from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.integrations.bitbucket.client import BitbucketClient
from gitpulse.integrations.bitbucket.schemas import CommitPayload
from gitpulse.pipelines.diff_parser import DiffParser
from gitpulse.pipelines.ingestion.authors import AuthorResolver
from gitpulse.pipelines.ingestion.base import BaseSyncOrchestrator, SyncResult
from gitpulse.pipelines.ingestion.upsert import CommitUpsertEngine
from gitpulse.utils.dates import as_utc

logger = structlog.get_logger()


class CommitSyncOrchestrator(BaseSyncOrchestrator):
    """Walks a repository's commits newest-first over a date window.

    Paging stops at the first commit older than ``start_date`` and the result
    reports ``boundary_hit`` so callers filling history backwards know there
    is more to fetch. Commits newer than ``end_date`` are skipped.
    """

    source_name = "bitbucket_commits"

    def __init__(
        self,
        session: AsyncSession,
        client: BitbucketClient | None = None,
        parser: DiffParser | None = None,
        resolver: AuthorResolver | None = None,
    ):
        super().__init__(session, client)
        self.engine = CommitUpsertEngine(session, parser=parser, resolver=resolver)

    async def sync(
        self,
        workspace: str,
        repo_slug: str,
        start_date: datetime,
        end_date: datetime,
    ) -> SyncResult:
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        result = self._new_result()
        log = logger.bind(workspace=workspace, repo=repo_slug)
        log.info(
            "Starting commit sync",
            start_date=start_date.date().isoformat(),
            end_date=end_date.date().isoformat(),
        )
        self._warn_if_rate_limited(workspace=workspace, repo=repo_slug)

        repository = await self._get_repository(workspace, repo_slug)
        if repository is None:
            log.warning("Repository not found, sync repositories first")
            return result.finish()
        repository_id = repository.id

        try:
            next_url: str | None = None
            keep_fetching = True
            while keep_fetching:
                self._check_rate_limit("fetch commits", repo=repo_slug)
                page = await self.client.get_commits(workspace, repo_slug, next_url)
                if not page.values:
                    break

                for commit in page.values:
                    if commit.date < start_date:
                        result.boundary_hit = True
                        keep_fetching = False
                        break
                    if commit.date > end_date:
                        continue

                    result.items_processed += 1
                    _, written = await self.sync_commit(workspace, repo_slug, repository_id, commit)
                    if written:
                        result.commits_synced += 1
                    else:
                        result.items_skipped += 1

                next_url = page.next
                if not next_url:
                    keep_fetching = False

            await self._mark_synced(repository_id)
        except Exception as e:
            log.error("Commit sync failed", error=str(e))
            raise

        result.items_synced = result.commits_synced
        log.info(
            "Commit sync finished",
            commits_synced=result.commits_synced,
            boundary_hit=result.boundary_hit,
        )
        return result.finish()

    async def sync_commit(
        self,
        workspace: str,
        repo_slug: str,
        repository_id: int,
        commit: CommitPayload,
    ) -> tuple[int | None, bool]:
        """Upsert one commit, fetching its diff only when it is not already complete.

        Returns the commit id (None when the author cannot be resolved) and
        whether anything was written.
        """
        commit_id = await self.engine.find_complete_commit_id(commit.hash)
        if commit_id is not None:
            return commit_id, False

        self._check_rate_limit("fetch diff", commit=commit.hash)
        diff_text = await self.client.get_commit_diff(workspace, repo_slug, commit.hash)
        commit_id = await self.engine.upsert_commit(commit, repository_id, diff_text)
        return commit_id, commit_id is not None
