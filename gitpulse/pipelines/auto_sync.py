"""Scheduled sync of every tracked repository.

Two modes:

- **Delta** syncs the last ``delta_sync_days`` days of each repository once.
- **Full** fills history backwards in windows of ``batch_days`` days until
  neither commits nor pull requests report that older data exists. Windows
  already logged as completed are skipped unless ``overwrite`` is set.

Every window synced is recorded in ``repository_sync_logs``.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.config import settings
from gitpulse.integrations.bitbucket.client import BitbucketClient, bitbucket_client
from gitpulse.models.base import utcnow
from gitpulse.models.repository import Repository, RepositorySyncLog, SyncStatus
from gitpulse.models.setting import Setting
from gitpulse.pipelines.diff_parser import DiffParser
from gitpulse.pipelines.ingestion.commits import CommitSyncOrchestrator
from gitpulse.pipelines.ingestion.pull_requests import PullRequestSyncOrchestrator
from gitpulse.pipelines.ingestion.repositories import RepositorySyncOrchestrator
from gitpulse.pipelines.ingestion.users import UserSyncOrchestrator
from gitpulse.utils.dates import end_of_day, start_of_day

logger = structlog.get_logger()

SETTINGS_CATEGORY = "AutoSync"


class SyncTargets(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    commits: bool = Field(default=True, alias="Commits")
    pull_requests: bool = Field(default=True, alias="PullRequests")
    repositories: bool = Field(default=True, alias="Repositories")
    users: bool = Field(default=True, alias="Users")


class SyncSettings(BaseModel):
    """Auto-sync behaviour. Field aliases match the ``SyncSettings`` JSON stored in the database."""

    model_config = ConfigDict(populate_by_name=True)

    mode: Literal["Full", "Delta"] = Field(default="Delta", alias="Mode")
    delta_sync_days: int = Field(default=5, alias="DeltaSyncDays", ge=0)
    overwrite: bool = Field(default=False, alias="Overwrite")
    sync_targets: SyncTargets = Field(default_factory=SyncTargets, alias="SyncTargets")
    batch_days: int = Field(default=10, alias="AutoSyncBatchDays", ge=1)

    @classmethod
    def from_app_settings(cls) -> "SyncSettings":
        return cls(
            mode=settings.sync_mode,
            delta_sync_days=settings.sync_delta_days,
            overwrite=settings.sync_overwrite,
            batch_days=settings.sync_batch_days,
            sync_targets=SyncTargets(
                commits=settings.sync_commits,
                pull_requests=settings.sync_pull_requests,
                repositories=settings.sync_repositories,
                users=settings.sync_users,
            ),
        )


async def load_sync_settings(session: AsyncSession) -> SyncSettings:
    """Application defaults overridden by the ``AutoSync`` settings rows."""
    sync_settings = SyncSettings.from_app_settings()
    rows = {
        row.key: row.value
        for row in (
            await session.execute(
                select(Setting).where(Setting.category == SETTINGS_CATEGORY, Setting.is_active.is_(True))
            )
        ).scalars()
    }

    if rows.get("SyncSettings"):
        try:
            stored = SyncSettings.model_validate_json(rows["SyncSettings"])
            sync_settings = SyncSettings.model_validate(
                {**sync_settings.model_dump(), **stored.model_dump(include=stored.model_fields_set)}
            )
        except ValidationError as e:
            logger.warning("Invalid SyncSettings in database, using defaults", error=str(e))

    if rows.get("AutoSyncBatchDays"):
        try:
            sync_settings.batch_days = max(int(rows["AutoSyncBatchDays"]), 1)
        except ValueError as e:
            logger.warning("Invalid AutoSyncBatchDays in database, using default", error=str(e))

    logger.info("Resolved auto-sync settings", **sync_settings.model_dump())
    return sync_settings


@dataclass
class WindowOutcome:
    repository: str
    start_date: datetime
    end_date: datetime
    status: str
    commit_count: int = 0
    boundary_hit: bool = False
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status,
            "commit_count": self.commit_count,
            "boundary_hit": self.boundary_hit,
            "message": self.message,
        }


@dataclass
class AutoSyncReport:
    mode: str
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    workspaces: list[str] = field(default_factory=list)
    windows: list[WindowOutcome] = field(default_factory=list)
    skipped_windows: int = 0

    @property
    def failed(self) -> int:
        return sum(1 for w in self.windows if w.status == SyncStatus.FAILED.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "workspaces": self.workspaces,
            "windows": [w.to_dict() for w in self.windows],
            "skipped_windows": self.skipped_windows,
            "failed_windows": self.failed,
        }


@dataclass
class _RepoRef:
    id: int
    slug: str
    workspace: str


class AutoSyncRunner:
    """Runs users, repositories, commits and pull request syncs for every repository."""

    def __init__(
        self,
        session: AsyncSession,
        client: BitbucketClient | None = None,
        parser: DiffParser | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.session = session
        self.client = client or bitbucket_client
        self.parser = parser
        self._today = today or (lambda: utcnow().date())

    async def run(self, sync_settings: SyncSettings | None = None) -> AutoSyncReport:
        sync_settings = sync_settings or await load_sync_settings(self.session)
        report = AutoSyncReport(mode=sync_settings.mode)
        targets = sync_settings.sync_targets

        repos = await self._repositories()
        workspaces = sorted({r.workspace for r in repos} | ({settings.sync_workspace} - {""}))
        report.workspaces = workspaces

        if targets.users:
            for workspace in workspaces:
                await UserSyncOrchestrator(self.session, self.client).sync(workspace)
        if targets.repositories:
            for workspace in workspaces:
                await RepositorySyncOrchestrator(self.session, self.client).sync(workspace)
            repos = await self._repositories()

        if not repos:
            logger.warning("No repositories to sync, sync repositories first")
        elif not (targets.commits or targets.pull_requests):
            logger.info("Commit and pull request sync disabled")
        elif sync_settings.mode == "Delta":
            await self._run_delta(repos, sync_settings, report)
        else:
            await self._run_full(repos, sync_settings, report)

        report.completed_at = utcnow()
        logger.info(
            "Auto-sync complete",
            mode=report.mode,
            windows=len(report.windows),
            failed=report.failed,
            skipped=report.skipped_windows,
        )
        return report

    async def _repositories(self) -> list[_RepoRef]:
        rows = (
            await self.session.execute(
                select(Repository.id, Repository.slug, Repository.workspace)
                .where(Repository.exclude_from_sync.is_(False))
                .order_by(Repository.id)
            )
        ).all()
        return [_RepoRef(id=r.id, slug=r.slug, workspace=r.workspace) for r in rows]

    async def _run_delta(self, repos: list[_RepoRef], sync_settings: SyncSettings, report: AutoSyncReport) -> None:
        today = self._today()
        end_date = end_of_day(today)
        start_date = start_of_day(today - timedelta(days=sync_settings.delta_sync_days))
        logger.info("Running delta sync", days=sync_settings.delta_sync_days)

        for repo in repos:
            report.windows.append(await self.sync_window(repo, start_date, end_date, sync_settings))

    async def _run_full(self, repos: list[_RepoRef], sync_settings: SyncSettings, report: AutoSyncReport) -> None:
        logger.info("Running full sync", batch_days=sync_settings.batch_days)
        current_end = {repo.id: end_of_day(self._today()) for repo in repos}
        pending = list(repos)

        while pending:
            still_pending = []
            for repo in pending:
                end_date = current_end[repo.id]
                start_date = end_date - timedelta(days=sync_settings.batch_days)

                if not sync_settings.overwrite and await self._window_completed(repo, start_date, end_date):
                    logger.info(
                        "Skipping already synced window",
                        repo=repo.slug,
                        start_date=start_date.date().isoformat(),
                        end_date=end_date.date().isoformat(),
                    )
                    report.skipped_windows += 1
                    current_end[repo.id] = start_date
                    still_pending.append(repo)
                    continue

                outcome = await self.sync_window(repo, start_date, end_date, sync_settings)
                report.windows.append(outcome)
                if outcome.status == SyncStatus.COMPLETED.value and outcome.boundary_hit:
                    current_end[repo.id] = start_date
                    still_pending.append(repo)
                elif outcome.status == SyncStatus.COMPLETED.value:
                    logger.info("No more history found, repository complete", repo=repo.slug)
                else:
                    logger.warning("Giving up on repository for this run", repo=repo.slug)
            pending = still_pending

    async def _window_completed(self, repo: _RepoRef, start_date: datetime, end_date: datetime) -> bool:
        log_id = await self.session.scalar(
            select(RepositorySyncLog.id).where(
                RepositorySyncLog.repository_id == repo.id,
                RepositorySyncLog.start_date == start_date,
                RepositorySyncLog.end_date == end_date,
                RepositorySyncLog.status == SyncStatus.COMPLETED.value,
            )
        )
        return log_id is not None

    async def sync_window(
        self,
        repo: _RepoRef,
        start_date: datetime,
        end_date: datetime,
        sync_settings: SyncSettings,
    ) -> WindowOutcome:
        """Sync commits and pull requests of one repository over one window."""
        log = logger.bind(repo=repo.slug, workspace=repo.workspace)
        log.info(
            "Processing sync window",
            start_date=start_date.date().isoformat(),
            end_date=end_date.date().isoformat(),
        )

        entry = RepositorySyncLog(
            repository_id=repo.id,
            start_date=start_date,
            end_date=end_date,
            status=SyncStatus.STARTED.value,
            synced_at=utcnow(),
        )
        self.session.add(entry)
        await self.session.commit()
        log_id = entry.id

        outcome = WindowOutcome(
            repository=repo.slug,
            start_date=start_date,
            end_date=end_date,
            status=SyncStatus.STARTED.value,
        )
        targets = sync_settings.sync_targets
        try:
            if targets.commits:
                commits = await CommitSyncOrchestrator(self.session, self.client, parser=self.parser).sync(
                    repo.workspace, repo.slug, start_date, end_date
                )
                outcome.commit_count += commits.commits_synced
                outcome.boundary_hit |= commits.boundary_hit
            if targets.pull_requests:
                prs = await PullRequestSyncOrchestrator(self.session, self.client, parser=self.parser).sync(
                    repo.workspace, repo.slug, start_date, end_date
                )
                outcome.commit_count += prs.commits_synced
                outcome.boundary_hit |= prs.boundary_hit
        except Exception as e:
            await self.session.rollback()
            outcome.status = SyncStatus.FAILED.value
            outcome.message = str(e)
            await self._finish_log(log_id, status=SyncStatus.FAILED.value, message=str(e)[:4000])
            log.error("Sync window failed", error=str(e))
            return outcome

        outcome.status = SyncStatus.COMPLETED.value
        await self._finish_log(
            log_id,
            status=SyncStatus.COMPLETED.value,
            message="",
            commit_count=outcome.commit_count,
        )
        log.info("Sync window complete", commits_synced=outcome.commit_count, boundary_hit=outcome.boundary_hit)
        return outcome

    async def _finish_log(self, log_id: int, **values: Any) -> None:
        await self.session.execute(
            update(RepositorySyncLog).where(RepositorySyncLog.id == log_id).values(**values)
        )
        await self.session.commit()
