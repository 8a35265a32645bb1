"""Workspace member sync."""

import structlog

from gitpulse.integrations.bitbucket.schemas import UserPayload, safe_datetime
from gitpulse.models.database import insert_for
from gitpulse.models.user import User
from gitpulse.pipelines.ingestion.base import BaseSyncOrchestrator, SyncResult

logger = structlog.get_logger()


class UserSyncOrchestrator(BaseSyncOrchestrator):
    """Upserts workspace members keyed on their account uuid."""

    source_name = "bitbucket_users"

    async def sync(self, workspace: str) -> SyncResult:
        result = self._new_result()
        logger.info("Starting user sync", workspace=workspace)

        next_url: str | None = None
        while True:
            self._check_rate_limit("fetch workspace members", workspace=workspace)
            page = await self.client.get_users(workspace, next_url)
            if not page.values:
                break

            for membership in page.values:
                user = membership.user
                result.items_processed += 1
                if user is None or not user.uuid:
                    result.items_skipped += 1
                    continue
                if not user.display_name:
                    logger.warning("User has no display name, skipping", user_uuid=user.uuid)
                    result.items_skipped += 1
                    continue
                await self.upsert_user(user)
                result.items_synced += 1
            await self.session.commit()

            next_url = page.next
            if not next_url:
                break

        logger.info("User sync finished", workspace=workspace, users=result.items_synced)
        return result.finish()

    async def upsert_user(self, user: UserPayload) -> None:
        values = {
            "display_name": user.display_name,
            "avatar_url": user.avatar_url,
            "created_on": safe_datetime(user.created_on),
        }
        stmt = insert_for(self.session, User).values(
            external_id=user.uuid,
            exclude_from_reporting=False,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["external_id"],
            set_={name: stmt.excluded[name] for name in values},
        )
        await self.session.execute(stmt)
