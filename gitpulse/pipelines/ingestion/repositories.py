"""Workspace repository sync."""

import structlog

from gitpulse.integrations.bitbucket.schemas import RepositoryPayload, safe_datetime
from gitpulse.models.base import utcnow
from gitpulse.models.database import insert_for
from gitpulse.models.repository import Repository
from gitpulse.pipelines.ingestion.base import BaseSyncOrchestrator, SyncResult

logger = structlog.get_logger()


class RepositorySyncOrchestrator(BaseSyncOrchestrator):
    """Upserts every repository of a workspace keyed on its Bitbucket uuid."""

    source_name = "bitbucket_repositories"

    async def sync(self, workspace: str) -> SyncResult:
        result = self._new_result()
        logger.info("Starting repository sync", workspace=workspace)

        next_url: str | None = None
        while True:
            self._check_rate_limit("fetch repositories", workspace=workspace)
            page = await self.client.get_repositories(workspace, next_url)
            if not page.values:
                break

            for repo in page.values:
                result.items_processed += 1
                await self.upsert_repository(workspace, repo)
                result.items_synced += 1
            await self.session.commit()

            next_url = page.next
            if not next_url:
                break

        logger.info("Repository sync finished", workspace=workspace, repositories=result.items_synced)
        return result.finish()

    async def upsert_repository(self, workspace: str, repo: RepositoryPayload) -> None:
        values = {
            "name": repo.name,
            "slug": repo.slug,
            "workspace": repo.workspace.slug if repo.workspace and repo.workspace.slug else workspace,
            "last_delta_sync_date": utcnow(),
        }
        stmt = insert_for(self.session, Repository).values(
            external_id=repo.uuid,
            created_on=safe_datetime(repo.created_on),
            exclude_from_sync=False,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id"],
            set_={name: stmt.excluded[name] for name in values},
        )
        await self.session.execute(stmt)
