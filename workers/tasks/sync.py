"""Bitbucket sync and maintenance tasks."""

import asyncio
from datetime import timedelta

import structlog

from workers.celery_app import app

logger = structlog.get_logger()


def run_async(coro):
    """Helper to run async code in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@app.task(bind=True, max_retries=3, default_retry_delay=300)
def run_auto_sync(self, mode: str | None = None):
    """Run auto-sync for every tracked repository.

    ``mode`` overrides the stored Full/Delta setting for this run.
    """
    try:
        return run_async(_run_auto_sync(mode))
    except Exception as e:
        logger.error("Auto-sync task failed", error=str(e))
        raise self.retry(exc=e)


async def _run_auto_sync(mode: str | None = None):
    """Async implementation of auto-sync."""
    from gitpulse.integrations.bitbucket.client import BitbucketClient
    from gitpulse.models.database import isolated_session
    from gitpulse.pipelines.auto_sync import AutoSyncRunner, load_sync_settings
    from gitpulse.classification.classifier import file_classifier

    client = BitbucketClient()
    try:
        async with isolated_session() as session:
            await file_classifier.load(session)
            sync_settings = await load_sync_settings(session)
            if mode:
                sync_settings = sync_settings.model_copy(update={"mode": mode})
            report = await AutoSyncRunner(session, client).run(sync_settings)
    finally:
        await client.close()

    return report.to_dict()


@app.task(bind=True, max_retries=3, default_retry_delay=300)
def sync_repository(self, workspace: str, repo_slug: str, days: int = 5):
    """Sync commits and pull requests of one repository for the last ``days`` days."""
    try:
        return run_async(_sync_repository(workspace, repo_slug, days))
    except Exception as e:
        logger.error("Repository sync task failed", workspace=workspace, repo=repo_slug, error=str(e))
        raise self.retry(exc=e)


async def _sync_repository(workspace: str, repo_slug: str, days: int):
    """Async implementation of a single repository sync."""
    from gitpulse.integrations.bitbucket.client import BitbucketClient
    from gitpulse.models.database import isolated_session
    from gitpulse.pipelines.ingestion import CommitSyncOrchestrator, PullRequestSyncOrchestrator
    from gitpulse.classification.classifier import file_classifier
    from gitpulse.models.base import utcnow

    end_date = utcnow()
    start_date = end_date - timedelta(days=days)

    client = BitbucketClient()
    try:
        async with isolated_session() as session:
            await file_classifier.load(session)
            commits = await CommitSyncOrchestrator(session, client).sync(workspace, repo_slug, start_date, end_date)
            prs = await PullRequestSyncOrchestrator(session, client).sync(workspace, repo_slug, start_date, end_date)
    finally:
        await client.close()

    logger.info(
        "Repository sync task complete",
        workspace=workspace,
        repo=repo_slug,
        commits_synced=commits.commits_synced + prs.commits_synced,
    )
    return {
        "status": "success",
        "commits": commits.to_dict(),
        "pull_requests": prs.to_dict(),
    }


@app.task
def refresh_line_counts():
    """Re-classify stored files and rebuild commit category line counts."""
    return run_async(_refresh_line_counts())


async def _refresh_line_counts():
    """Async implementation of the line count refresh."""
    from gitpulse.classification.classifier import file_classifier
    from gitpulse.models.database import isolated_session
    from gitpulse.pipelines.maintenance import refresh_line_counts as refresh

    async with isolated_session() as session:
        await file_classifier.load(session)
        result = await refresh(session)

    return result.to_dict()
