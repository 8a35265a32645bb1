"""Maintenance jobs over already ingested commits."""

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.classification.classifier import FileClassifier, file_classifier
from gitpulse.classification.rules import FileType
from gitpulse.models.commit import Commit, CommitFile
from gitpulse.models.pull_request import PullRequestCommit
from gitpulse.models.repository import Repository
from gitpulse.pipelines.ingestion.upsert import is_revert_message

logger = structlog.get_logger()

CATEGORY_COLUMNS = {
    FileType.CODE: ("code_lines_added", "code_lines_removed"),
    FileType.DATA: ("data_lines_added", "data_lines_removed"),
    FileType.CONFIG: ("config_lines_added", "config_lines_removed"),
    FileType.DOCS: ("docs_lines_added", "docs_lines_removed"),
}


@dataclass
class RefreshResult:
    files_scanned: int = 0
    files_reclassified: int = 0
    commits_updated: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_scanned": self.files_scanned,
            "files_reclassified": self.files_reclassified,
            "commits_updated": self.commits_updated,
            "errors": self.errors,
        }


async def refresh_line_counts(
    session: AsyncSession,
    classifier: FileClassifier | None = None,
) -> RefreshResult:
    """Re-classify stored file changes and re-aggregate commit category counts.

    Category sums are rebuilt from whole file line counts of rows not
    excluded from reporting.
    """
    classifier = classifier or file_classifier
    result = RefreshResult()
    logger.info("Starting refresh of commit line counts")

    rows = (await session.execute(select(CommitFile.id, CommitFile.file_path, CommitFile.file_type))).all()
    result.files_scanned = len(rows)
    for row in rows:
        try:
            new_type = classifier.classify(row.file_path).value
        except Exception as e:
            logger.error("Error re-classifying file", file_path=row.file_path, error=str(e))
            result.errors += 1
            continue
        if (row.file_type or "").lower() != new_type:
            await session.execute(update(CommitFile).where(CommitFile.id == row.id).values(file_type=new_type))
            result.files_reclassified += 1
            logger.debug("Re-classified file", file_path=row.file_path, old_type=row.file_type, new_type=new_type)
    await session.commit()
    logger.info("Re-classified files", updated=result.files_reclassified, total=result.files_scanned)

    included = CommitFile.exclude_from_reporting.is_(False)
    sums = []
    for file_type, (added, removed) in CATEGORY_COLUMNS.items():
        matches = and_(CommitFile.file_type == file_type.value, included)
        sums.append(func.coalesce(func.sum(case((matches, CommitFile.lines_added), else_=0)), 0).label(added))
        sums.append(func.coalesce(func.sum(case((matches, CommitFile.lines_removed), else_=0)), 0).label(removed))

    aggregates = (await session.execute(select(CommitFile.commit_id, *sums).group_by(CommitFile.commit_id))).all()
    for aggregate in aggregates:
        values = {name: getattr(aggregate, name) for pair in CATEGORY_COLUMNS.values() for name in pair}
        await session.execute(update(Commit).where(Commit.id == aggregate.commit_id).values(**values))
        result.commits_updated += 1
    await session.commit()

    logger.info("Finished refresh of commit line counts", **result.to_dict())
    return result


async def mark_revert_commits(session: AsyncSession, workspace: str) -> int:
    """Flag revert commits of a workspace that are not flagged yet."""
    rows = (
        await session.execute(
            select(Commit.id, Commit.message)
            .join(Repository, Commit.repository_id == Repository.id)
            .where(Repository.workspace == workspace, Commit.is_revert.is_(False))
        )
    ).all()

    revert_ids = [row.id for row in rows if is_revert_message(row.message)]
    if revert_ids:
        await session.execute(update(Commit).where(Commit.id.in_(revert_ids)).values(is_revert=True))
        await session.commit()

    logger.info("Marked revert commits", workspace=workspace, marked=len(revert_ids))
    return len(revert_ids)


async def fix_pr_merge_flags(session: AsyncSession, repo_slug: str | None = None) -> int:
    """Flag merge commits linked to a pull request as PR merge commits."""
    linked = select(PullRequestCommit.commit_id)
    stmt = update(Commit).where(
        Commit.is_merge.is_(True),
        Commit.is_pr_merge_commit.is_(False),
        Commit.id.in_(linked),
    )
    if repo_slug:
        stmt = stmt.where(
            Commit.repository_id.in_(select(Repository.id).where(Repository.slug == repo_slug))
        )

    result = await session.execute(stmt.values(is_pr_merge_commit=True).execution_options(synchronize_session=False))
    await session.commit()

    logger.info("Fixed PR merge flags", repo=repo_slug, updated=result.rowcount)
    return result.rowcount
