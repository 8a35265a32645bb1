"""Author identity resolution.

Commits may carry a Bitbucket account, only a raw ``Name <email>`` string, or
nothing useful at all. The fallback chain is:

1. account uuid (looked up, created when missing)
2. ``synthetic:<email>`` parsed from the raw author string
3. ``synthetic:unknown:<commit hash>``

Only a commit without any of these is unresolvable.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.integrations.bitbucket.schemas import CommitAuthor, UserPayload
from gitpulse.models.database import insert_for
from gitpulse.models.user import User

logger = structlog.get_logger()

RAW_AUTHOR = re.compile(r"^(.*?)\s*<(.+?)>$")
UNKNOWN_NAME = "Unknown"


class IdentitySource(str, Enum):
    """How an author identity was obtained."""

    RESOLVED = "resolved"
    SYNTHESIZED = "synthesized"
    UNRESOLVABLE = "unresolvable"


@dataclass(frozen=True)
class AuthorIdentity:
    source: IdentitySource
    external_id: str | None = None
    display_name: str = UNKNOWN_NAME
    email: str | None = None
    avatar_url: str | None = None

    @property
    def resolvable(self) -> bool:
        return self.source != IdentitySource.UNRESOLVABLE


def parse_raw_author(raw: str | None) -> tuple[str | None, str | None]:
    """Split ``Name <email>`` into its parts; unparseable input is all name."""
    if not raw:
        return None, None
    match = RAW_AUTHOR.match(raw.strip())
    if not match:
        return raw.strip() or None, None
    return match.group(1).strip() or None, match.group(2).strip()


def resolve_identity(author: CommitAuthor | None, commit_hash: str | None) -> AuthorIdentity:
    """Pick the identity a commit should be attributed to."""
    user = author.user if author else None
    display_name, email = parse_raw_author(author.raw if author else None)

    if user and user.uuid:
        return AuthorIdentity(
            source=IdentitySource.RESOLVED,
            external_id=user.uuid,
            display_name=user.display_name or display_name or UNKNOWN_NAME,
            email=email,
            avatar_url=user.avatar_url,
        )
    if email:
        return AuthorIdentity(
            source=IdentitySource.SYNTHESIZED,
            external_id=f"synthetic:{email}",
            display_name=display_name or UNKNOWN_NAME,
            email=email,
        )
    if commit_hash:
        return AuthorIdentity(
            source=IdentitySource.SYNTHESIZED,
            external_id=f"synthetic:unknown:{commit_hash}",
            display_name=display_name or UNKNOWN_NAME,
        )
    return AuthorIdentity(source=IdentitySource.UNRESOLVABLE, display_name=display_name or UNKNOWN_NAME)


def identity_for_account(user: UserPayload | None) -> AuthorIdentity:
    """Identity of a Bitbucket account reference (PR authors, approvers)."""
    if not user or not user.uuid:
        return AuthorIdentity(source=IdentitySource.UNRESOLVABLE)
    return AuthorIdentity(
        source=IdentitySource.RESOLVED,
        external_id=user.uuid,
        display_name=user.display_name or user.nickname or UNKNOWN_NAME,
        avatar_url=user.avatar_url,
    )


class AuthorResolver:
    """Maps identities to ``users`` rows, creating them on first sight."""

    async def get_or_create(
        self,
        session: AsyncSession,
        identity: AuthorIdentity,
        created_on: datetime | None = None,
    ) -> int | None:
        if not identity.resolvable:
            return None

        user_id = await self._find(session, identity.external_id)
        if user_id is not None:
            return user_id

        stmt = insert_for(session, User).values(
            external_id=identity.external_id,
            display_name=identity.display_name,
            avatar_url=identity.avatar_url,
            created_on=created_on,
            exclude_from_reporting=False,
        )
        await session.execute(stmt.on_conflict_do_nothing(index_elements=["external_id"]))

        user_id = await self._find(session, identity.external_id)
        if user_id is None:
            logger.warning(
                "Author could not be created",
                external_id=identity.external_id,
                display_name=identity.display_name,
            )
        else:
            logger.debug("Created author", external_id=identity.external_id, source=identity.source.value)
        return user_id

    @staticmethod
    async def _find(session: AsyncSession, external_id: str | None) -> int | None:
        return await session.scalar(select(User.id).where(User.external_id == external_id))


# Singleton instance
author_resolver = AuthorResolver()
