"""Idempotent commit and file-change persistence."""

from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.integrations.bitbucket.schemas import CommitPayload
from gitpulse.models.base import utcnow
from gitpulse.models.commit import Commit, CommitFile
from gitpulse.pipelines.diff_parser import DiffParser, DiffSummary, diff_parser
from gitpulse.pipelines.ingestion.authors import AuthorResolver, author_resolver, resolve_identity

logger = structlog.get_logger()

REVERT_MARKER = 'revert "'


def is_revert_message(message: str | None) -> bool:
    """Commits created by ``git revert`` carry ``Revert "<subject>"``."""
    return bool(message) and REVERT_MARKER in message.lower()


def line_count_values(summary: DiffSummary) -> dict[str, Any]:
    """Commit column values for a parsed diff."""
    return {
        "lines_added": summary.total_added,
        "lines_removed": summary.total_removed,
        "code_lines_added": summary.code_added,
        "code_lines_removed": summary.code_removed,
        "data_lines_added": summary.data_added,
        "data_lines_removed": summary.data_removed,
        "config_lines_added": summary.config_added,
        "config_lines_removed": summary.config_removed,
        "docs_lines_added": summary.docs_added,
        "docs_lines_removed": summary.docs_removed,
    }


class CommitUpsertEngine:
    """Inserts new commits with their files, completes partial ones, skips the rest.

    Every merge commit (two or more parents) is also flagged as a PR merge
    commit. This over-counts direct merges on purpose and matches how the
    reporting side has always interpreted the flag.
    """

    def __init__(
        self,
        session: AsyncSession,
        parser: DiffParser | None = None,
        resolver: AuthorResolver | None = None,
    ):
        self.session = session
        self.parser = parser or diff_parser
        self.resolver = resolver or author_resolver

    async def find_complete_commit_id(self, commit_hash: str) -> int | None:
        """Id of a fully synced commit, or None when it is absent or incomplete."""
        return await self.session.scalar(
            select(Commit.id).where(
                Commit.hash == commit_hash,
                Commit.code_lines_added.is_not(None),
            )
        )

    async def upsert_commit(
        self,
        commit: CommitPayload,
        repository_id: int,
        diff_text: str | None,
    ) -> int | None:
        """Persist one commit and return its id.

        Returns None when the author cannot be resolved; the commit is then
        skipped and nothing is written.
        """
        summary = self.parser.parse(diff_text)
        is_merge = commit.is_merge
        is_pr_merge_commit = is_merge

        try:
            existing = (
                await self.session.execute(
                    select(Commit.id, Commit.code_lines_added).where(Commit.hash == commit.hash)
                )
            ).first()

            if existing is not None and existing.code_lines_added is not None:
                return existing.id

            if existing is not None:
                await self.session.execute(
                    update(Commit)
                    .where(Commit.id == existing.id)
                    .values(
                        **line_count_values(summary),
                        is_merge=is_merge,
                        is_pr_merge_commit=is_pr_merge_commit,
                    )
                )
                await self.session.commit()
                logger.info(
                    "Updated commit",
                    commit=commit.hash,
                    is_merge=is_merge,
                    is_pr_merge_commit=is_pr_merge_commit,
                )
                return existing.id

            identity = resolve_identity(commit.author, commit.hash)
            author_id = await self.resolver.get_or_create(self.session, identity, created_on=commit.date)
            if author_id is None:
                logger.warning(
                    "Author for commit not found and could not be created, skipping commit",
                    commit=commit.hash,
                    raw=commit.author.raw if commit.author else None,
                    external_id=identity.external_id,
                )
                await self.session.rollback()
                return None

            row = Commit(
                hash=commit.hash,
                repository_id=repository_id,
                author_id=author_id,
                date=commit.date,
                message=commit.message,
                is_merge=is_merge,
                is_revert=is_revert_message(commit.message),
                is_pr_merge_commit=is_pr_merge_commit,
                **line_count_values(summary),
            )
            now = utcnow()
            row.files = [
                CommitFile(
                    file_path=change.file_path[:500],
                    file_type=change.file_type.value,
                    change_status=change.change_status,
                    lines_added=change.lines_added,
                    lines_removed=change.lines_removed,
                    file_extension=change.file_extension[:50] or None,
                    created_on=now,
                    exclude_from_reporting=False,
                )
                for change in summary.file_changes
            ]
            self.session.add(row)
            await self.session.flush()
            commit_id = row.id
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Added commit",
            commit=commit.hash,
            files=len(summary.file_changes),
            is_merge=is_merge,
            is_pr_merge_commit=is_pr_merge_commit,
        )
        return commit_id
