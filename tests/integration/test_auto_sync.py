"""Tests for the auto-sync runner and its settings."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from gitpulse.config import settings
from gitpulse.integrations.bitbucket.client import BitbucketAPIError
from gitpulse.models.repository import RepositorySyncLog, SyncStatus
from gitpulse.models.setting import Setting
from gitpulse.pipelines.auto_sync import AutoSyncRunner, SyncSettings, SyncTargets, load_sync_settings
from gitpulse.utils.dates import end_of_day, start_of_day

from conftest import NOW, commit_data

TODAY = NOW.date()


def sync_settings(mode: str, **kwargs) -> SyncSettings:
    return SyncSettings(
        mode=mode,
        sync_targets=SyncTargets(users=False, repositories=False),
        **kwargs,
    )


async def logs(session) -> list[RepositorySyncLog]:
    return list(
        (
            await session.execute(
                select(RepositorySyncLog)
                .order_by(RepositorySyncLog.id)
                .execution_options(populate_existing=True)
            )
        ).scalars()
    )


@pytest.fixture
def runner(db_session, fake_client, parser):
    return AutoSyncRunner(db_session, fake_client, parser=parser, today=lambda: TODAY)


class TestSyncSettings:
    """Tests for loading auto-sync settings."""

    @pytest.mark.asyncio
    async def test_defaults_from_application_settings(self, db_session):
        loaded = await load_sync_settings(db_session)

        assert loaded == SyncSettings.from_app_settings()

    @pytest.mark.asyncio
    async def test_stored_settings_override_defaults(self, db_session):
        db_session.add_all([
            Setting(
                category="AutoSync",
                key="SyncSettings",
                value='{"Mode": "Full", "Overwrite": true, "SyncTargets": {"Users": false}}',
                value_type="String",
                is_active=True,
            ),
            Setting(category="AutoSync", key="AutoSyncBatchDays", value="7", value_type="Integer", is_active=True),
        ])
        await db_session.commit()

        loaded = await load_sync_settings(db_session)

        assert loaded.mode == "Full"
        assert loaded.overwrite is True
        assert loaded.sync_targets.users is False
        assert loaded.sync_targets.commits is True
        assert loaded.batch_days == 7

    @pytest.mark.asyncio
    async def test_invalid_stored_settings_are_ignored(self, db_session):
        db_session.add(
            Setting(category="AutoSync", key="SyncSettings", value='{"Mode": "Sometimes"}', value_type="String", is_active=True)
        )
        await db_session.commit()

        loaded = await load_sync_settings(db_session)

        assert loaded == SyncSettings.from_app_settings()


class TestDeltaSync:
    """Tests for delta mode."""

    @pytest.mark.asyncio
    async def test_syncs_recent_window_and_logs_it(self, db_session, repository, fake_client, runner):
        fake_client.commit_pages = [[
            commit_data("c1", NOW - timedelta(days=1)),
            commit_data("c2", NOW - timedelta(days=4)),
            commit_data("c3", NOW - timedelta(days=9)),
        ]]

        report = await runner.run(sync_settings("Delta", delta_sync_days=5))

        (window,) = report.windows
        assert window.status == SyncStatus.COMPLETED.value
        assert window.commit_count == 2
        assert window.start_date == start_of_day(TODAY - timedelta(days=5))
        assert window.end_date == end_of_day(TODAY)

        (entry,) = await logs(db_session)
        assert entry.status == SyncStatus.COMPLETED.value
        assert entry.commit_count == 2

    @pytest.mark.asyncio
    async def test_failed_window_is_logged(self, db_session, repository, fake_client, runner):
        fake_client.commit_pages = [[commit_data("c1", NOW - timedelta(days=1))]]
        fake_client.diff_error = BitbucketAPIError("Bitbucket request failed with HTTP 500", status_code=500)

        report = await runner.run(sync_settings("Delta"))

        assert report.failed == 1
        (entry,) = await logs(db_session)
        assert entry.status == SyncStatus.FAILED.value
        assert "HTTP 500" in entry.message

    @pytest.mark.asyncio
    async def test_no_repositories(self, db_session, runner):
        report = await runner.run(sync_settings("Delta"))

        assert report.windows == []

    @pytest.mark.asyncio
    async def test_syncs_users_and_repositories_first(self, db_session, fake_client, runner, monkeypatch):
        fake_client.repository_pages = [[{"uuid": "{r-9}", "name": "svc", "slug": "svc", "workspace": {"slug": "acme"}}]]
        monkeypatch.setattr(settings, "sync_workspace", "acme")

        report = await runner.run(SyncSettings(mode="Delta"))

        assert report.workspaces == ["acme"]
        assert [w.repository for w in report.windows] == ["svc"]
        assert fake_client.called("members")
        assert fake_client.called("repositories")


class TestFullSync:
    """Tests for full mode."""

    @pytest.fixture
    def history(self, fake_client):
        fake_client.commit_pages = [[
            commit_data("recent", NOW - timedelta(days=2)),
            commit_data("old", NOW - timedelta(days=25)),
        ]]

    @pytest.mark.asyncio
    async def test_walks_backwards_until_history_is_exhausted(self, db_session, repository, history, runner):
        report = await runner.run(sync_settings("Full", batch_days=10))

        assert [w.status for w in report.windows] == [SyncStatus.COMPLETED.value] * 3
        assert [w.boundary_hit for w in report.windows] == [True, True, False]
        assert [w.commit_count for w in report.windows] == [1, 0, 1]

        first, second, third = report.windows
        assert first.end_date == end_of_day(TODAY)
        assert second.end_date == first.start_date
        assert third.end_date == second.start_date
        assert len(await logs(db_session)) == 3

    @pytest.mark.asyncio
    async def test_completed_windows_are_skipped(self, db_session, repository, history, runner):
        await runner.run(sync_settings("Full", batch_days=10))

        report = await runner.run(sync_settings("Full", batch_days=10))

        assert report.skipped_windows == 3
        assert len(report.windows) == 1
        assert report.windows[0].boundary_hit is False

    @pytest.mark.asyncio
    async def test_overwrite_resyncs_completed_windows(self, db_session, repository, history, runner):
        await runner.run(sync_settings("Full", batch_days=10))

        report = await runner.run(sync_settings("Full", batch_days=10, overwrite=True))

        assert report.skipped_windows == 0
        assert len(report.windows) == 3
        assert [w.commit_count for w in report.windows] == [0, 0, 0]

    @pytest.mark.asyncio
    async def test_failing_repository_is_retired_for_the_run(self, db_session, repository, history, fake_client, runner):
        fake_client.diff_error = BitbucketAPIError("Bitbucket request failed with HTTP 500", status_code=500)

        report = await runner.run(sync_settings("Full", batch_days=10))

        assert len(report.windows) == 1
        assert report.failed == 1
        assert report.to_dict()["failed_windows"] == 1
