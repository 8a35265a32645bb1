"""Bitbucket Cloud REST API (2.0) client."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from gitpulse.config import settings
from gitpulse.integrations.bitbucket.rate_limit import RateLimitState
from gitpulse.integrations.bitbucket.schemas import (
    ActivityPayload,
    CommitPayload,
    Page,
    PullRequestPayload,
    RepositoryPayload,
    WorkspaceMembership,
)

logger = structlog.get_logger()

PULL_REQUEST_STATES = ("OPEN", "MERGED", "DECLINED", "SUPERSEDED")


class BitbucketAPIError(Exception):
    """A Bitbucket request failed."""

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class BitbucketNotFoundError(BitbucketAPIError):
    """The requested resource does not exist (HTTP 404)."""


class BitbucketAuthError(BitbucketAPIError):
    """Credentials were rejected or could not be exchanged for a token."""


class BitbucketRateLimitError(BitbucketAPIError):
    """Still rate limited after all retries."""


def _format_query_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class BitbucketClient:
    """Async Bitbucket client with OAuth, retries and a shared rate-limit pause.

    Next-page URLs returned by the API are absolute and are requested as-is.
    """

    def __init__(
        self,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        access_token: str | None = None,
        rate_limit: RateLimitState | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url or settings.bitbucket_api_base_url
        self.oauth_url = settings.bitbucket_oauth_url
        self.consumer_key = consumer_key if consumer_key is not None else settings.bitbucket_consumer_key
        self.consumer_secret = (
            consumer_secret
            if consumer_secret is not None
            else settings.bitbucket_consumer_secret.get_secret_value()
        )
        self._static_token = access_token if access_token is not None else settings.bitbucket_access_token.get_secret_value()
        self._access_token: str | None = self._static_token or None
        self.rate_limit = rate_limit or RateLimitState()
        self.max_retries = settings.bitbucket_max_retries if max_retries is None else max_retries
        self.timeout = timeout or settings.bitbucket_timeout
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    @property
    def can_reauthenticate(self) -> bool:
        return bool(self.consumer_key and self.consumer_secret)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _authenticate(self) -> str:
        """Exchange consumer credentials for an access token."""
        if not self.can_reauthenticate:
            raise BitbucketAuthError("Bitbucket consumer key and secret are not configured")

        response = await self._http().post(
            self.oauth_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.consumer_key,
                "client_secret": self.consumer_secret,
            },
        )
        if response.status_code != 200:
            raise BitbucketAuthError(
                "Failed to obtain Bitbucket access token",
                status_code=response.status_code,
                url=self.oauth_url,
            )
        token = response.json().get("access_token")
        if not token:
            raise BitbucketAuthError("Token response did not contain an access token", url=self.oauth_url)
        logger.info("Authenticated with Bitbucket")
        return token

    async def _request(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        attempt = 0
        reauthenticated = False

        while True:
            if not self._access_token:
                self._access_token = await self._authenticate()
            await self.rate_limit.wait()

            try:
                response = await self._http().get(
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                )
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise BitbucketAPIError(f"Request to {url} failed: {e}", url=url) from e
                logger.warning("Bitbucket request failed, retrying", url=url, attempt=attempt, error=str(e))
                await self._sleep(2**attempt)
                attempt += 1
                continue

            status = response.status_code
            if response.is_success:
                return response

            if status == 429:
                if attempt >= self.max_retries:
                    raise BitbucketRateLimitError("Rate limited by Bitbucket", status_code=status, url=url)
                delay = _retry_after(response)
                if delay is None:
                    delay = max(60, 2 ** (attempt + 4))
                self.rate_limit.set_limit(delay)
                logger.warning("Bitbucket rate limit hit", url=url, delay_seconds=delay, attempt=attempt)
                attempt += 1
                continue

            if status == 401:
                if reauthenticated or not self.can_reauthenticate:
                    raise BitbucketAuthError("Bitbucket rejected the access token", status_code=status, url=url)
                logger.warning("Bitbucket returned 401, re-authenticating", url=url)
                self._access_token = None
                reauthenticated = True
                continue

            if status == 404:
                raise BitbucketNotFoundError(f"Resource not found: {url}", status_code=status, url=url)

            if status >= 500 and attempt < self.max_retries:
                logger.warning("Bitbucket server error, retrying", url=url, status_code=status, attempt=attempt)
                await self._sleep(2**attempt)
                attempt += 1
                continue

            raise BitbucketAPIError(
                f"Bitbucket request failed with HTTP {status}",
                status_code=status,
                url=url,
            )

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._request(url, params=params)
        return response.json()

    # ========== Workspace ==========

    async def get_users(self, workspace: str, next_url: str | None = None) -> Page[WorkspaceMembership]:
        """Workspace members."""
        data = await self._get_json(next_url or f"workspaces/{workspace}/members")
        return Page[WorkspaceMembership].model_validate(data)

    async def get_repositories(self, workspace: str, next_url: str | None = None) -> Page[RepositoryPayload]:
        data = await self._get_json(next_url or f"repositories/{workspace}")
        return Page[RepositoryPayload].model_validate(data)

    # ========== Commits ==========

    async def get_commits(self, workspace: str, repo_slug: str, next_url: str | None = None) -> Page[CommitPayload]:
        """Repository commits, newest first."""
        data = await self._get_json(next_url or f"repositories/{workspace}/{repo_slug}/commits")
        return Page[CommitPayload].model_validate(data)

    async def get_commit_diff(self, workspace: str, repo_slug: str, commit_hash: str) -> str:
        """Raw unified diff of a commit against its first parent."""
        response = await self._request(f"repositories/{workspace}/{repo_slug}/diff/{commit_hash}")
        return response.text

    # ========== Pull requests ==========

    async def get_pull_requests(
        self,
        workspace: str,
        repo_slug: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        next_url: str | None = None,
    ) -> Page[PullRequestPayload]:
        """Pull requests in every state, filtered by ``updated_on`` when both dates are given."""
        if next_url:
            data = await self._get_json(next_url)
        else:
            params: dict[str, Any] = {"state": list(PULL_REQUEST_STATES)}
            if start_date and end_date:
                params["q"] = (
                    f"updated_on >= {_format_query_date(start_date)} "
                    f"AND updated_on <= {_format_query_date(end_date)}"
                )
            data = await self._get_json(f"repositories/{workspace}/{repo_slug}/pullrequests", params=params)
        return Page[PullRequestPayload].model_validate(data)

    async def get_pull_request_commits(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: int,
        next_url: str | None = None,
    ) -> Page[CommitPayload]:
        data = await self._get_json(
            next_url or f"repositories/{workspace}/{repo_slug}/pullrequests/{pull_request_id}/commits"
        )
        return Page[CommitPayload].model_validate(data)

    async def get_pull_request_activity(
        self,
        workspace: str,
        repo_slug: str,
        pull_request_id: int,
        next_url: str | None = None,
    ) -> Page[ActivityPayload]:
        data = await self._get_json(
            next_url or f"repositories/{workspace}/{repo_slug}/pullrequests/{pull_request_id}/activity"
        )
        return Page[ActivityPayload].model_validate(data)


# Singleton instance
bitbucket_client = BitbucketClient()
