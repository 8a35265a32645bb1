"""Bitbucket Cloud integration."""

from gitpulse.integrations.bitbucket.client import (
    BitbucketAPIError,
    BitbucketAuthError,
    BitbucketClient,
    BitbucketNotFoundError,
    BitbucketRateLimitError,
    bitbucket_client,
)
from gitpulse.integrations.bitbucket.rate_limit import RateLimitState
from gitpulse.integrations.bitbucket.schemas import (
    ActivityPayload,
    CommitPayload,
    Page,
    PullRequestPayload,
    RepositoryPayload,
    UserPayload,
)

__all__ = [
    "ActivityPayload",
    "BitbucketAPIError",
    "BitbucketAuthError",
    "BitbucketClient",
    "BitbucketNotFoundError",
    "BitbucketRateLimitError",
    "CommitPayload",
    "Page",
    "PullRequestPayload",
    "RateLimitState",
    "RepositoryPayload",
    "UserPayload",
    "bitbucket_client",
]
