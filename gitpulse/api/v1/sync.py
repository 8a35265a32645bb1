"""Sync and maintenance API endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.classification.classifier import file_classifier, file_extension
from gitpulse.integrations.bitbucket.client import BitbucketClient, bitbucket_client
from gitpulse.models.database import get_db
from gitpulse.pipelines import maintenance
from gitpulse.pipelines.auto_sync import AutoSyncRunner
from gitpulse.pipelines.ingestion import (
    CommitSyncOrchestrator,
    PullRequestSyncOrchestrator,
    RepositorySyncOrchestrator,
    UserSyncOrchestrator,
)
from gitpulse.schemas.sync import ClassificationResponse, DateRange, MaintenanceResponse, SyncResponse

logger = structlog.get_logger()

router = APIRouter()


def get_bitbucket_client() -> BitbucketClient:
    """Bitbucket client dependency."""
    return bitbucket_client


@router.post("/users/{workspace}", response_model=SyncResponse)
async def sync_users(
    workspace: str,
    db: AsyncSession = Depends(get_db),
    client: BitbucketClient = Depends(get_bitbucket_client),
) -> SyncResponse:
    """Sync workspace members."""
    try:
        result = await UserSyncOrchestrator(db, client).sync(workspace)
    except Exception as e:
        logger.error("User sync failed", workspace=workspace, error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred while syncing users: {e}")
    return SyncResponse(message=f"User sync completed for workspace '{workspace}'.", result=result.to_dict())


@router.post("/repositories/{workspace}", response_model=SyncResponse)
async def sync_repositories(
    workspace: str,
    db: AsyncSession = Depends(get_db),
    client: BitbucketClient = Depends(get_bitbucket_client),
) -> SyncResponse:
    """Sync the repositories of a workspace."""
    try:
        result = await RepositorySyncOrchestrator(db, client).sync(workspace)
    except Exception as e:
        logger.error("Repository sync failed", workspace=workspace, error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred while syncing repositories: {e}")
    return SyncResponse(
        message=f"Repository sync completed for workspace '{workspace}'.",
        result=result.to_dict(),
    )


@router.post("/commits/{workspace}/{repo_slug}", response_model=SyncResponse)
async def sync_commits(
    workspace: str,
    repo_slug: str,
    date_range: DateRange,
    db: AsyncSession = Depends(get_db),
    client: BitbucketClient = Depends(get_bitbucket_client),
) -> SyncResponse:
    """Sync commits of a repository within a date window."""
    try:
        result = await CommitSyncOrchestrator(db, client).sync(
            workspace, repo_slug, date_range.start_date, date_range.end_date
        )
    except Exception as e:
        logger.error("Commit sync failed", workspace=workspace, repo=repo_slug, error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred while syncing commits: {e}")
    return SyncResponse(
        message=f"Commit sync completed for {workspace}/{repo_slug}. {result.commits_synced} commits synced.",
        result=result.to_dict(),
    )


@router.post("/pullrequests/{workspace}/{repo_slug}", response_model=SyncResponse)
async def sync_pull_requests(
    workspace: str,
    repo_slug: str,
    date_range: DateRange,
    db: AsyncSession = Depends(get_db),
    client: BitbucketClient = Depends(get_bitbucket_client),
) -> SyncResponse:
    """Sync pull requests, approvals and PR commits of a repository."""
    try:
        result = await PullRequestSyncOrchestrator(db, client).sync(
            workspace, repo_slug, date_range.start_date, date_range.end_date
        )
    except Exception as e:
        logger.error("PR sync failed", workspace=workspace, repo=repo_slug, error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred while syncing pull requests: {e}")
    return SyncResponse(
        message=f"Pull request sync completed for {workspace}/{repo_slug}.",
        result=result.to_dict(),
    )


@router.post("/auto", response_model=SyncResponse)
async def run_auto_sync(
    db: AsyncSession = Depends(get_db),
    client: BitbucketClient = Depends(get_bitbucket_client),
) -> SyncResponse:
    """Run auto-sync with the stored settings."""
    try:
        report = await AutoSyncRunner(db, client).run()
    except Exception as e:
        logger.error("Auto-sync failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred during auto-sync: {e}")
    return SyncResponse(message=f"Auto-sync ({report.mode}) completed.", result=report.to_dict())


@router.post("/fix-pr-merge-flags", response_model=MaintenanceResponse)
@router.post("/fix-pr-merge-flags/{repo_slug}", response_model=MaintenanceResponse)
async def fix_pr_merge_flags(
    repo_slug: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> MaintenanceResponse:
    """Flag merge commits linked to pull requests as PR merge commits."""
    try:
        updated = await maintenance.fix_pr_merge_flags(db, repo_slug)
    except Exception as e:
        logger.error("Fixing PR merge flags failed", repo=repo_slug, error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred while fixing PR merge flags: {e}")
    scope = f" in repository '{repo_slug}'" if repo_slug else ""
    return MaintenanceResponse(message=f"Fixed PR merge flags for {updated} commits{scope}.", updated=updated)


@router.post("/refresh-commit-line-counts", response_model=MaintenanceResponse)
async def refresh_commit_line_counts(db: AsyncSession = Depends(get_db)) -> MaintenanceResponse:
    """Re-classify stored files and recompute commit category line counts."""
    try:
        result = await maintenance.refresh_line_counts(db)
    except Exception as e:
        logger.error("Refreshing commit line counts failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred while refreshing line counts: {e}")
    return MaintenanceResponse(
        message=(
            f"Refreshed line counts: {result.files_reclassified} files re-classified, "
            f"{result.commits_updated} commits updated."
        ),
        updated=result.files_reclassified,
        details=result.to_dict(),
    )


@router.post("/identify-revert-commits/{workspace}", response_model=MaintenanceResponse)
async def identify_revert_commits(workspace: str, db: AsyncSession = Depends(get_db)) -> MaintenanceResponse:
    """Mark revert commits of a workspace."""
    try:
        marked = await maintenance.mark_revert_commits(db, workspace)
    except Exception as e:
        logger.error("Identifying revert commits failed", workspace=workspace, error=str(e))
        raise HTTPException(status_code=500, detail=f"An error occurred while identifying revert commits: {e}")
    return MaintenanceResponse(message=f"Marked {marked} revert commits in workspace '{workspace}'.", updated=marked)


@router.post("/classification/reload")
async def reload_classification(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Reload file classification rules from the configured source."""
    config = await file_classifier.load(db)
    return config.summary()


@router.get("/classification/classify", response_model=ClassificationResponse)
async def classify_path(path: str = Query(..., min_length=1)) -> ClassificationResponse:
    """Classify a single path with the active rules."""
    return ClassificationResponse(
        path=path,
        file_type=file_classifier.classify(path).value,
        extension=file_extension(path),
    )
