"""Bitbucket Cloud API payload schemas."""

from datetime import datetime, timezone
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")

# Oldest timestamp the reporting database accepts
MIN_STORABLE_YEAR = 1753


def safe_datetime(value: datetime | None) -> datetime | None:
    """Drop placeholder timestamps and normalize to UTC."""
    if value is None or value.year < MIN_STORABLE_YEAR:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BitbucketModel(BaseModel):
    """Base model ignoring the many fields we do not use."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Page(BitbucketModel, Generic[T]):
    """One page of a paginated collection."""

    values: list[T] = Field(default_factory=list)
    next: str | None = None
    page: int | None = None
    pagelen: int | None = None


class Link(BitbucketModel):
    href: str | None = None


class UserLinks(BitbucketModel):
    avatar: Link | None = None


class UserPayload(BitbucketModel):
    """Account reference as embedded in commits, PRs and activity."""

    uuid: str | None = None
    display_name: str | None = None
    nickname: str | None = None
    created_on: datetime | None = None
    links: UserLinks | None = None

    @property
    def avatar_url(self) -> str | None:
        if self.links and self.links.avatar:
            return self.links.avatar.href
        return None


class WorkspaceMembership(BitbucketModel):
    user: UserPayload | None = None


class CommitAuthor(BitbucketModel):
    raw: str | None = None
    user: UserPayload | None = None


class ParentRef(BitbucketModel):
    hash: str


class CommitPayload(BitbucketModel):
    """Commit as returned by the commits and PR commits endpoints."""

    hash: str
    date: datetime
    message: str | None = None
    author: CommitAuthor | None = None
    parents: list[ParentRef] = Field(default_factory=list)

    @field_validator("date")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return safe_datetime(value) or value

    @property
    def is_merge(self) -> bool:
        return len(self.parents) >= 2


class MergeCommitRef(BitbucketModel):
    hash: str | None = None
    date: datetime | None = None


class PullRequestPayload(BitbucketModel):
    id: int
    title: str = ""
    state: str
    author: UserPayload | None = None
    created_on: datetime
    updated_on: datetime | None = None
    closed_on: datetime | None = None
    merge_commit: MergeCommitRef | None = None

    @field_validator("created_on")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return safe_datetime(value) or value


class ApprovalPayload(BitbucketModel):
    date: datetime | None = None
    user: UserPayload | None = None


class ActivityPayload(BitbucketModel):
    """Single PR activity entry; only approvals are used."""

    approval: ApprovalPayload | None = None


class RepositoryWorkspace(BitbucketModel):
    slug: str | None = None


class RepositoryPayload(BitbucketModel):
    uuid: str
    name: str
    full_name: str | None = None
    slug: str
    workspace: RepositoryWorkspace | None = None
    created_on: datetime | None = None
