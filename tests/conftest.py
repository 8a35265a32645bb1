"""Pytest fixtures and configuration."""

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gitpulse.api.v1.sync import get_bitbucket_client
from gitpulse.classification.classifier import FileClassifier
from gitpulse.integrations.bitbucket.client import BitbucketNotFoundError
from gitpulse.integrations.bitbucket.rate_limit import RateLimitState
from gitpulse.integrations.bitbucket.schemas import (
    ActivityPayload,
    CommitPayload,
    Page,
    PullRequestPayload,
    RepositoryPayload,
    WorkspaceMembership,
)
from gitpulse.main import app
from gitpulse.models.database import get_db, init_db
from gitpulse.models.repository import Repository
from gitpulse.pipelines.diff_parser import DiffParser

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

SAMPLE_DIFF = """diff --git a/src/app.py b/src/app.py
index 83db48f..bf269f4 100644
--- a/src/app.py
+++ b/src/app.py
@@ -1,3 +1,4 @@
 import os
+import sys
+# comment
-print("old")
+print("new")
diff --git a/README.md b/README.md
new file mode 100644
index 0000000..e69de29
--- /dev/null
+++ b/README.md
@@ -0,0 +1,2 @@
+# Title
+// docs line
"""


class FakeBitbucketClient:
    """In-memory stand-in for BitbucketClient serving canned pages.

    Collections are lists of pages (each a list of raw API dicts). Every call
    is recorded in ``calls``.
    """

    base_url = "https://api.bitbucket.org/2.0/"

    def __init__(self):
        self.rate_limit = RateLimitState()
        self.commit_pages: list[list[dict[str, Any]]] = []
        self.diffs: dict[str, str] = {}
        self.pull_request_pages: list[list[dict[str, Any]]] = []
        self.pr_commit_pages: dict[int, list[list[dict[str, Any]]]] = {}
        self.pr_commit_errors: dict[int, Exception] = {}
        self.activity_pages: dict[int, list[list[dict[str, Any]]]] = {}
        self.repository_pages: list[list[dict[str, Any]]] = []
        self.member_pages: list[list[dict[str, Any]]] = []
        self.diff_error: Exception | None = None
        self.calls: list[tuple] = []

    def _page(self, model, pages, next_url, name):
        index = int(next_url.rsplit("=", 1)[1]) if next_url else 0
        values = pages[index] if index < len(pages) else []
        next_link = f"{self.base_url}{name}?page={index + 1}" if index + 1 < len(pages) else None
        return Page[model].model_validate({"values": values, "next": next_link})

    async def get_commits(self, workspace, repo_slug, next_url=None):
        self.calls.append(("commits", repo_slug, next_url))
        return self._page(CommitPayload, self.commit_pages, next_url, "commits")

    async def get_commit_diff(self, workspace, repo_slug, commit_hash):
        self.calls.append(("diff", commit_hash))
        if self.diff_error is not None:
            raise self.diff_error
        return self.diffs.get(commit_hash, SAMPLE_DIFF)

    async def get_pull_requests(self, workspace, repo_slug, start_date=None, end_date=None, next_url=None):
        self.calls.append(("pullrequests", repo_slug, next_url))
        return self._page(PullRequestPayload, self.pull_request_pages, next_url, "pullrequests")

    async def get_pull_request_commits(self, workspace, repo_slug, pull_request_id, next_url=None):
        self.calls.append(("pr_commits", pull_request_id, next_url))
        if pull_request_id in self.pr_commit_errors:
            raise self.pr_commit_errors[pull_request_id]
        pages = self.pr_commit_pages.get(pull_request_id, [])
        return self._page(CommitPayload, pages, next_url, f"pr/{pull_request_id}/commits")

    async def get_pull_request_activity(self, workspace, repo_slug, pull_request_id, next_url=None):
        self.calls.append(("activity", pull_request_id, next_url))
        pages = self.activity_pages.get(pull_request_id, [])
        return self._page(ActivityPayload, pages, next_url, f"pr/{pull_request_id}/activity")

    async def get_repositories(self, workspace, next_url=None):
        self.calls.append(("repositories", workspace, next_url))
        return self._page(RepositoryPayload, self.repository_pages, next_url, "repositories")

    async def get_users(self, workspace, next_url=None):
        self.calls.append(("members", workspace, next_url))
        return self._page(WorkspaceMembership, self.member_pages, next_url, "members")

    def called(self, kind: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == kind]


def commit_data(
    commit_hash: str,
    date: datetime,
    message: str = "Add feature",
    parents: int = 1,
    uuid: str | None = None,
    raw: str | None = "Jane Doe <jane@example.com>",
) -> dict[str, Any]:
    """Raw commit payload as returned by the commits endpoint."""
    author: dict[str, Any] = {"raw": raw}
    if uuid:
        author["user"] = {"uuid": uuid, "display_name": "Jane Doe"}
    return {
        "hash": commit_hash,
        "date": date.isoformat(),
        "message": message,
        "author": author,
        "parents": [{"hash": f"{commit_hash}-p{i}"} for i in range(parents)],
    }


def pull_request_data(
    pr_id: int,
    created_on: datetime,
    state: str = "OPEN",
    title: str = "Add feature",
    author_uuid: str | None = "{author-1}",
    updated_on: datetime | None = None,
    closed_on: datetime | None = None,
    merge_date: datetime | None = None,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": pr_id,
        "title": title,
        "state": state,
        "created_on": created_on.isoformat(),
        "updated_on": (updated_on or created_on).isoformat(),
        "author": {"uuid": author_uuid, "display_name": "Pat Author"} if author_uuid else {},
    }
    if closed_on:
        data["closed_on"] = closed_on.isoformat()
    if merge_date:
        data["merge_commit"] = {"hash": "m" * 12, "date": merge_date.isoformat()}
    return data


# Database engine on a per-test SQLite file
@pytest.fixture
async def test_engine(tmp_path):
    """Create test database engine."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_client() -> FakeBitbucketClient:
    return FakeBitbucketClient()


@pytest.fixture
def rate_limited(fake_client) -> AsyncMock:
    """Put the fake client under a 30 second rate limit; returns its sleep mock."""
    sleep = AsyncMock()
    fake_client.rate_limit = RateLimitState(sleep=sleep)
    fake_client.rate_limit.set_limit(30)
    return sleep


@pytest.fixture
def orchestrator_logger():
    """Mocked logger of the orchestrator base class."""
    with patch("gitpulse.pipelines.ingestion.base.logger") as mocked:
        yield mocked


def rate_limit_waits(mocked_logger) -> list[str]:
    """Actions for which a rate limit wait was reported."""
    return [
        call.kwargs["action"]
        for call in mocked_logger.info.call_args_list
        if call.args and call.args[0] == "Waiting for rate limit to reset"
    ]


@pytest.fixture
def parser() -> DiffParser:
    """Diff parser with its own default-rules classifier."""
    return DiffParser(FileClassifier())


@pytest.fixture
async def repository(db_session) -> Repository:
    """A tracked repository acme/api."""
    repo = Repository(
        external_id="{repo-1}",
        slug="api",
        name="api",
        workspace="acme",
        exclude_from_sync=False,
    )
    db_session.add(repo)
    await db_session.commit()
    return repo


@pytest.fixture
def sync_window() -> tuple[datetime, datetime]:
    """Ten day window ending at NOW."""
    return NOW - timedelta(days=10), NOW


# Override database dependency
@pytest.fixture
def override_get_db(session_factory):
    """Override get_db dependency."""

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    return _override_get_db


# Async test client
@pytest.fixture
async def async_client(override_get_db, fake_client) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bitbucket_client] = lambda: fake_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def not_found() -> BitbucketNotFoundError:
    return BitbucketNotFoundError("Resource not found", status_code=404)
