"""Pull request, approval and PR commit sync for one repository."""

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.integrations.bitbucket.client import BitbucketClient, BitbucketNotFoundError
from gitpulse.integrations.bitbucket.schemas import PullRequestPayload, safe_datetime
from gitpulse.models.base import utcnow
from gitpulse.models.database import insert_for
from gitpulse.models.pull_request import (
    PullRequest,
    PullRequestApproval,
    PullRequestCommit,
    PullRequestState,
)
from gitpulse.pipelines.diff_parser import DiffParser
from gitpulse.pipelines.ingestion.authors import AuthorResolver, author_resolver, identity_for_account
from gitpulse.pipelines.ingestion.base import BaseSyncOrchestrator, SyncResult
from gitpulse.pipelines.ingestion.commits import CommitSyncOrchestrator
from gitpulse.utils.dates import as_utc

logger = structlog.get_logger()

CLOSED_STATES = (PullRequestState.DECLINED.value, PullRequestState.SUPERSEDED.value)


def merged_on(pr: PullRequestPayload) -> datetime | None:
    """Merge time of a merged PR: the merge commit date, else its last update."""
    if pr.state != PullRequestState.MERGED.value:
        return None
    merge_date = pr.merge_commit.date if pr.merge_commit else None
    return safe_datetime(merge_date) or safe_datetime(pr.updated_on)


def closed_on(pr: PullRequestPayload) -> datetime | None:
    if pr.state not in CLOSED_STATES:
        return None
    return safe_datetime(pr.closed_on)


def is_revert_title(title: str | None) -> bool:
    return bool(title) and "revert" in title.lower()


class PullRequestSyncOrchestrator(BaseSyncOrchestrator):
    """Syncs pull requests updated within a window, with approvals and commits.

    A PR created before ``start_date`` is still synced, but paging stops after
    the page it was found on and ``boundary_hit`` is reported.
    """

    source_name = "bitbucket_pull_requests"

    def __init__(
        self,
        session: AsyncSession,
        client: BitbucketClient | None = None,
        parser: DiffParser | None = None,
        resolver: AuthorResolver | None = None,
    ):
        super().__init__(session, client)
        self.resolver = resolver or author_resolver
        self.commits = CommitSyncOrchestrator(session, client=self.client, parser=parser, resolver=self.resolver)

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
            "Starting PR sync",
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
            while True:
                self._check_rate_limit("fetch pull requests", repo=repo_slug)
                page = await self.client.get_pull_requests(
                    workspace, repo_slug, start_date, end_date, next_url
                )
                if not page.values:
                    break

                for pr in page.values:
                    if pr.created_on < start_date:
                        result.boundary_hit = True
                    result.items_processed += 1
                    await self._sync_pull_request(workspace, repo_slug, repository_id, pr, result)

                next_url = page.next
                if result.boundary_hit or not next_url:
                    break

            await self._mark_synced(repository_id)
        except Exception as e:
            log.error("PR sync failed", error=str(e))
            raise

        log.info(
            "PR sync finished",
            pull_requests_synced=result.items_synced,
            commits_synced=result.commits_synced,
            approvals_synced=result.approvals_synced,
            boundary_hit=result.boundary_hit,
        )
        return result.finish()

    async def _sync_pull_request(
        self,
        workspace: str,
        repo_slug: str,
        repository_id: int,
        pr: PullRequestPayload,
        result: SyncResult,
    ) -> None:
        identity = identity_for_account(pr.author)
        if not identity.resolvable:
            logger.warning("PR has no author uuid, skipping", pr_id=pr.id, repo=repo_slug)
            result.items_skipped += 1
            return

        author_id = await self.resolver.get_or_create(self.session, identity)
        if author_id is None:
            logger.warning("PR author could not be resolved, skipping", pr_id=pr.id, author=identity.external_id)
            result.items_skipped += 1
            return

        pull_request_id = await self.upsert_pull_request(repository_id, author_id, pr)
        result.items_synced += 1

        result.approvals_synced += await self.sync_approvals(workspace, repo_slug, pr.id, pull_request_id)
        result.commits_synced += await self.sync_pull_request_commits(
            workspace, repo_slug, repository_id, pr.id, pull_request_id
        )

    async def upsert_pull_request(self, repository_id: int, author_id: int, pr: PullRequestPayload) -> int:
        """Insert or overwrite a PR row and return its id."""
        values = {
            "title": pr.title or "",
            "state": pr.state,
            "created_on": pr.created_on,
            "updated_on": safe_datetime(pr.updated_on),
            "merged_on": merged_on(pr),
            "closed_on": closed_on(pr),
            "is_revert": is_revert_title(pr.title),
        }
        stmt = insert_for(self.session, PullRequest).values(
            external_id=str(pr.id),
            repository_id=repository_id,
            author_id=author_id,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id", "repository_id"],
            set_={name: stmt.excluded[name] for name in values},
        )
        await self.session.execute(stmt)
        await self.session.commit()

        pull_request_id = await self.session.scalar(
            select(PullRequest.id).where(
                PullRequest.external_id == str(pr.id),
                PullRequest.repository_id == repository_id,
            )
        )
        logger.info(
            "PR inserted/updated",
            pr_id=pr.id,
            title=pr.title,
            state=pr.state,
            db_id=pull_request_id,
            is_revert=values["is_revert"],
        )
        return pull_request_id

    async def sync_approvals(
        self,
        workspace: str,
        repo_slug: str,
        pr_number: int,
        pull_request_id: int,
    ) -> int:
        """Record every approval found in the PR activity feed."""
        synced = 0
        next_url: str | None = None
        while True:
            self._check_rate_limit("fetch PR activity", pr_id=pr_number)
            page = await self.client.get_pull_request_activity(workspace, repo_slug, pr_number, next_url)

            for activity in page.values:
                approval = activity.approval
                if approval is None or approval.user is None or not approval.user.uuid:
                    continue
                user = approval.user
                values = {
                    "display_name": user.display_name or user.nickname,
                    "role": "REVIEWER",
                    "approved": True,
                    "state": "approved",
                    "approved_on": safe_datetime(approval.date) or utcnow(),
                }
                stmt = insert_for(self.session, PullRequestApproval).values(
                    pull_request_id=pull_request_id,
                    user_uuid=user.uuid,
                    **values,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["pull_request_id", "user_uuid"],
                    set_={name: stmt.excluded[name] for name in values},
                )
                await self.session.execute(stmt)
                synced += 1

            await self.session.commit()
            next_url = page.next
            if not next_url:
                break

        if synced:
            logger.info("Synced PR approvals", pr_id=pr_number, approvals=synced)
        return synced

    async def sync_pull_request_commits(
        self,
        workspace: str,
        repo_slug: str,
        repository_id: int,
        pr_number: int,
        pull_request_id: int,
    ) -> int:
        """Upsert the PR's commits and link them; a 404 on the commit list skips the PR's commits."""
        synced = 0
        next_url: str | None = None
        while True:
            self._check_rate_limit("fetch PR commits", pr_id=pr_number)
            try:
                page = await self.client.get_pull_request_commits(workspace, repo_slug, pr_number, next_url)
            except BitbucketNotFoundError:
                logger.warning(
                    "PR has no accessible commits, skipping commit sync for this PR",
                    pr_id=pr_number,
                    workspace=workspace,
                    repo=repo_slug,
                )
                break

            for commit in page.values:
                commit_id, written = await self.commits.sync_commit(
                    workspace, repo_slug, repository_id, commit
                )
                if commit_id is None:
                    continue
                if written:
                    synced += 1
                await self.link_commit(pull_request_id, commit_id)

            next_url = page.next
            if not next_url:
                break
        return synced

    async def link_commit(self, pull_request_id: int, commit_id: int) -> None:
        stmt = insert_for(self.session, PullRequestCommit).values(
            pull_request_id=pull_request_id,
            commit_id=commit_id,
        )
        await self.session.execute(
            stmt.on_conflict_do_nothing(index_elements=["pull_request_id", "commit_id"])
        )
        await self.session.commit()
