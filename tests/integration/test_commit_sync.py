"""Tests for the commit sync orchestrator."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from gitpulse.integrations.bitbucket.client import BitbucketAPIError
from gitpulse.models.commit import Commit
from gitpulse.models.repository import Repository
from gitpulse.pipelines.ingestion import CommitSyncOrchestrator

from conftest import NOW, commit_data, rate_limit_waits


class TestCommitSync:
    """Tests for CommitSyncOrchestrator.sync."""

    @pytest.mark.asyncio
    async def test_syncs_commits_in_window(self, db_session, repository, fake_client, parser, sync_window):
        fake_client.commit_pages = [
            [
                commit_data("c1", NOW - timedelta(days=1)),
                commit_data("c2", NOW - timedelta(days=2)),
            ],
            [commit_data("c3", NOW - timedelta(days=3))],
        ]
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        result = await orchestrator.sync("acme", "api", *sync_window)

        assert result.commits_synced == 3
        assert result.items_processed == 3
        assert result.boundary_hit is False
        assert result.completed_at is not None
        assert len(fake_client.called("commits")) == 2
        assert await db_session.scalar(select(func.count()).select_from(Commit)) == 3

    @pytest.mark.asyncio
    async def test_stops_at_first_commit_older_than_window(
        self, db_session, repository, fake_client, parser, sync_window
    ):
        fake_client.commit_pages = [
            [
                commit_data("newer", NOW + timedelta(days=1)),
                commit_data("inside", NOW - timedelta(days=1)),
                commit_data("older", NOW - timedelta(days=20)),
                commit_data("after-boundary", NOW - timedelta(days=2)),
            ],
            [commit_data("next-page", NOW - timedelta(days=3))],
        ]
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        result = await orchestrator.sync("acme", "api", *sync_window)

        assert result.boundary_hit is True
        assert result.commits_synced == 1
        assert [c[1] for c in fake_client.called("diff")] == ["inside"]
        assert len(fake_client.called("commits")) == 1
        hashes = set((await db_session.execute(select(Commit.hash))).scalars())
        assert hashes == {"inside"}

    @pytest.mark.asyncio
    async def test_complete_commits_skip_diff_fetch(self, db_session, repository, fake_client, parser, sync_window):
        fake_client.commit_pages = [[commit_data("c1", NOW - timedelta(days=1))]]
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)
        await orchestrator.sync("acme", "api", *sync_window)

        result = await orchestrator.sync("acme", "api", *sync_window)

        assert result.commits_synced == 0
        assert result.items_skipped == 1
        assert len(fake_client.called("diff")) == 1

    @pytest.mark.asyncio
    async def test_unknown_repository_returns_empty_result(self, db_session, fake_client, parser, sync_window):
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        result = await orchestrator.sync("acme", "missing", *sync_window)

        assert result.items_processed == 0
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_marks_repository_synced(self, db_session, repository, fake_client, parser, sync_window):
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        await orchestrator.sync("acme", "api", *sync_window)

        synced = await db_session.scalar(
            select(Repository.last_delta_sync_date).where(Repository.id == repository.id)
        )
        assert synced is not None

    @pytest.mark.asyncio
    async def test_api_errors_propagate(self, db_session, repository, fake_client, parser, sync_window):
        fake_client.commit_pages = [[commit_data("c1", NOW - timedelta(days=1))]]
        fake_client.diff_error = BitbucketAPIError("Bitbucket request failed with HTTP 500", status_code=500)
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        with pytest.raises(BitbucketAPIError):
            await orchestrator.sync("acme", "api", *sync_window)

        assert await db_session.scalar(select(func.count()).select_from(Commit)) == 0

    @pytest.mark.asyncio
    async def test_naive_window_is_treated_as_utc(self, db_session, repository, fake_client, parser, sync_window):
        fake_client.commit_pages = [[commit_data("c1", NOW - timedelta(days=1))]]
        start, end = sync_window
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        result = await orchestrator.sync("acme", "api", start.replace(tzinfo=None), end.replace(tzinfo=None))

        assert result.commits_synced == 1


class TestCommitSyncRateLimit:
    """Tests for rate limit reporting during commit sync."""

    @pytest.mark.asyncio
    async def test_reports_wait_before_every_call(
        self, db_session, repository, fake_client, parser, sync_window, rate_limited, orchestrator_logger
    ):
        fake_client.commit_pages = [
            [commit_data("c1", NOW - timedelta(days=1))],
            [commit_data("c2", NOW - timedelta(days=2))],
        ]
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        result = await orchestrator.sync("acme", "api", *sync_window)

        assert result.commits_synced == 2
        assert rate_limit_waits(orchestrator_logger) == ["fetch commits", "fetch diff", "fetch commits", "fetch diff"]
        orchestrator_logger.warning.assert_called_once()
        wait = orchestrator_logger.info.call_args_list[0].kwargs["wait_seconds"]
        assert 0 < wait <= 30
        rate_limited.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_wait_reported_without_limit(
        self, db_session, repository, fake_client, parser, sync_window, orchestrator_logger
    ):
        fake_client.commit_pages = [[commit_data("c1", NOW - timedelta(days=1))]]
        orchestrator = CommitSyncOrchestrator(db_session, fake_client, parser=parser)

        await orchestrator.sync("acme", "api", *sync_window)

        assert rate_limit_waits(orchestrator_logger) == []
        orchestrator_logger.warning.assert_not_called()
