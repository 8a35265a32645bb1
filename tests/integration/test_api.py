"""Integration tests for API endpoints."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from gitpulse.models.commit import Commit

from conftest import NOW, commit_data, pull_request_data


def window(days: int = 10) -> dict:
    return {"start_date": (NOW - timedelta(days=days)).isoformat(), "end_date": NOW.isoformat()}


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, async_client):
        """Test health endpoint."""
        response = await async_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data


class TestSyncAPI:
    """Tests for sync endpoints."""

    @pytest.mark.asyncio
    async def test_sync_commits(self, async_client, db_session, repository, fake_client):
        fake_client.commit_pages = [[commit_data("c1", NOW - timedelta(days=1))]]

        response = await async_client.post("/api/v1/sync/commits/acme/api", json=window())

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["result"]["commits_synced"] == 1
        assert "1 commits synced" in data["message"]
        assert await db_session.scalar(select(Commit.hash)) == "c1"

    @pytest.mark.asyncio
    async def test_sync_pull_requests(self, async_client, repository, fake_client):
        fake_client.pull_request_pages = [[pull_request_data(3, NOW - timedelta(days=1))]]

        response = await async_client.post("/api/v1/sync/pullrequests/acme/api", json=window())

        assert response.status_code == 200
        assert response.json()["result"]["items_synced"] == 1

    @pytest.mark.asyncio
    async def test_inverted_window_is_rejected(self, async_client, repository):
        response = await async_client.post(
            "/api/v1/sync/commits/acme/api",
            json={"start_date": NOW.isoformat(), "end_date": (NOW - timedelta(days=1)).isoformat()},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_sync_failure_returns_500(self, async_client, repository, fake_client):
        fake_client.get_commits = AsyncMock(side_effect=RuntimeError("connection reset"))

        response = await async_client.post("/api/v1/sync/commits/acme/api", json=window())

        assert response.status_code == 500
        assert "connection reset" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_sync_repositories_and_users(self, async_client, fake_client):
        fake_client.repository_pages = [[{"uuid": "{r-1}", "name": "api", "slug": "api"}]]
        fake_client.member_pages = [[{"user": {"uuid": "{u-1}", "display_name": "Jane"}}]]

        repos = await async_client.post("/api/v1/sync/repositories/acme")
        users = await async_client.post("/api/v1/sync/users/acme")

        assert repos.status_code == 200
        assert repos.json()["result"]["items_synced"] == 1
        assert users.status_code == 200
        assert users.json()["result"]["items_synced"] == 1


class TestMaintenanceAPI:
    """Tests for maintenance endpoints."""

    @pytest.mark.asyncio
    async def test_fix_pr_merge_flags(self, async_client):
        response = await async_client.post("/api/v1/sync/fix-pr-merge-flags")

        assert response.status_code == 200
        assert response.json()["updated"] == 0

    @pytest.mark.asyncio
    async def test_fix_pr_merge_flags_for_repository(self, async_client):
        with patch(
            "gitpulse.api.v1.sync.maintenance.fix_pr_merge_flags",
            new=AsyncMock(return_value=4),
        ) as fix:
            response = await async_client.post("/api/v1/sync/fix-pr-merge-flags/api")

        assert response.status_code == 200
        assert response.json()["message"] == "Fixed PR merge flags for 4 commits in repository 'api'."
        assert fix.await_args.args[1] == "api"

    @pytest.mark.asyncio
    async def test_refresh_line_counts(self, async_client):
        response = await async_client.post("/api/v1/sync/refresh-commit-line-counts")

        assert response.status_code == 200
        assert response.json()["details"]["files_scanned"] == 0

    @pytest.mark.asyncio
    async def test_identify_revert_commits(self, async_client):
        response = await async_client.post("/api/v1/sync/identify-revert-commits/acme")

        assert response.status_code == 200
        assert response.json()["updated"] == 0

    @pytest.mark.asyncio
    async def test_maintenance_failure_returns_500(self, async_client):
        with patch(
            "gitpulse.api.v1.sync.maintenance.mark_revert_commits",
            new=AsyncMock(side_effect=RuntimeError("database is locked")),
        ):
            response = await async_client.post("/api/v1/sync/identify-revert-commits/acme")

        assert response.status_code == 500
        assert "database is locked" in response.json()["detail"]


class TestClassificationAPI:
    """Tests for classification endpoints."""

    @pytest.mark.asyncio
    async def test_classify_path(self, async_client):
        response = await async_client.get("/api/v1/sync/classification/classify", params={"path": "src/App.cs"})

        assert response.status_code == 200
        assert response.json() == {"path": "src/App.cs", "file_type": "code", "extension": ".cs"}

    @pytest.mark.asyncio
    async def test_classify_requires_path(self, async_client):
        response = await async_client.get("/api/v1/sync/classification/classify")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_reload_rules(self, async_client):
        response = await async_client.post("/api/v1/sync/classification/reload")

        assert response.status_code == 200
        assert response.json()["source"] == "defaults"
