"""Unified diff parsing with per-category line counts."""

import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from gitpulse.classification.classifier import FileClassifier, file_classifier, file_extension
from gitpulse.classification.rules import FileType

logger = structlog.get_logger()

DIFF_HEADER = re.compile(r"^diff --git a/(.*?) b/(.*)$")
# File header lines that can also show up inside a hunk
FILE_HEADER = re.compile(r"^(---|\+\+\+) (a/|b/|/dev/null)")

COMMENT_PREFIXES = ("//", "/*", "*", "*/", "#", "<!--", "-->")
COUNTED_TYPES = (FileType.CODE, FileType.DATA, FileType.CONFIG, FileType.DOCS)

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"


@dataclass
class FileChangeDetail:
    """Line changes of a single file in a diff."""

    file_path: str
    file_type: FileType
    change_status: str = MODIFIED
    lines_added: int = 0
    lines_removed: int = 0
    file_extension: str = ""


@dataclass
class DiffSummary:
    """Totals and per-category sums for one diff."""

    total_added: int = 0
    total_removed: int = 0
    added_by_type: dict[FileType, int] = field(default_factory=lambda: dict.fromkeys(COUNTED_TYPES, 0))
    removed_by_type: dict[FileType, int] = field(default_factory=lambda: dict.fromkeys(COUNTED_TYPES, 0))
    file_changes: list[FileChangeDetail] = field(default_factory=list)

    @property
    def code_added(self) -> int:
        return self.added_by_type[FileType.CODE]

    @property
    def code_removed(self) -> int:
        return self.removed_by_type[FileType.CODE]

    @property
    def data_added(self) -> int:
        return self.added_by_type[FileType.DATA]

    @property
    def data_removed(self) -> int:
        return self.removed_by_type[FileType.DATA]

    @property
    def config_added(self) -> int:
        return self.added_by_type[FileType.CONFIG]

    @property
    def config_removed(self) -> int:
        return self.removed_by_type[FileType.CONFIG]

    @property
    def docs_added(self) -> int:
        return self.added_by_type[FileType.DOCS]

    @property
    def docs_removed(self) -> int:
        return self.removed_by_type[FileType.DOCS]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_added": self.total_added,
            "total_removed": self.total_removed,
            "added_by_type": {k.value: v for k, v in self.added_by_type.items()},
            "removed_by_type": {k.value: v for k, v in self.removed_by_type.items()},
            "files": len(self.file_changes),
        }


def counts_toward_category(file_type: FileType, content: str) -> bool:
    """Whether a changed line adds to its file's category sum.

    Code lines count only when they are neither blank nor a comment.
    Data, config and docs lines always count. Other files never do.
    """
    if file_type == FileType.CODE:
        stripped = content.strip()
        return bool(stripped) and not stripped.startswith(COMMENT_PREFIXES)
    return file_type in COUNTED_TYPES


class DiffParser:
    """Turns unified diff text into a :class:`DiffSummary`."""

    def __init__(self, classifier: FileClassifier | None = None):
        self.classifier = classifier or file_classifier

    def parse(self, diff_text: str | None) -> DiffSummary:
        summary = DiffSummary()
        if not diff_text:
            return summary

        records: dict[str, FileChangeDetail] = {}
        current: FileChangeDetail | None = None
        # Record opened by the current "diff --git" line that has not seen "+++" yet
        pending: FileChangeDetail | None = None
        old_path: str | None = None
        new_file = False
        in_hunk = False

        for line in diff_text.split("\n"):
            line = line.rstrip("\r")

            match = DIFF_HEADER.match(line)
            if match:
                path = match.group(2)
                pending = None if path in records else self._record(summary, records, path)
                current = records[path]
                old_path = match.group(1)
                new_file = False
                in_hunk = False
                continue

            if line.startswith("@@"):
                in_hunk = current is not None
                continue

            if not in_hunk or FILE_HEADER.match(line):
                in_hunk = False
                if line.startswith("--- "):
                    target = line[4:]
                    if target.startswith("a/"):
                        old_path = target[2:]
                    elif target == "/dev/null":
                        old_path = None
                        new_file = True
                elif line.startswith("+++ "):
                    target = line[4:]
                    if target.startswith("b/"):
                        current = self._resolve(summary, records, pending, target[2:])
                        if new_file:
                            current.change_status = ADDED
                    elif target == "/dev/null":
                        if old_path and (current is None or current.file_path != old_path):
                            current = self._record(summary, records, old_path)
                        if current is not None:
                            current.change_status = REMOVED
                    pending = None
                    new_file = False
                    # Content may follow the file header without a hunk header
                    in_hunk = current is not None
                elif current is not None:
                    if line.startswith("new file mode"):
                        current.change_status = ADDED
                    elif line.startswith("deleted file mode"):
                        current.change_status = REMOVED
                continue

            if line.startswith("+"):
                self._count(summary, current, line[1:], added=True)
            elif line.startswith("-"):
                self._count(summary, current, line[1:], added=False)

        return summary

    def _record(
        self,
        summary: DiffSummary,
        records: dict[str, FileChangeDetail],
        path: str,
    ) -> FileChangeDetail:
        """Return the record for ``path``, opening one on first sight."""
        detail = records.get(path)
        if detail is None:
            detail = FileChangeDetail(
                file_path=path,
                file_type=self.classifier.classify(path),
                file_extension=file_extension(path),
            )
            records[path] = detail
            summary.file_changes.append(detail)
        return detail

    def _resolve(
        self,
        summary: DiffSummary,
        records: dict[str, FileChangeDetail],
        pending: FileChangeDetail | None,
        path: str,
    ) -> FileChangeDetail:
        # Only a record still waiting for its "+++" line may take a new name
        if pending is not None and pending.file_path != path and path not in records:
            del records[pending.file_path]
            pending.file_path = path
            pending.file_type = self.classifier.classify(path)
            pending.file_extension = file_extension(path)
            records[path] = pending
            return pending
        return self._record(summary, records, path)

    @staticmethod
    def _count(summary: DiffSummary, current: FileChangeDetail, content: str, added: bool) -> None:
        counts_category = counts_toward_category(current.file_type, content)
        if added:
            current.lines_added += 1
            summary.total_added += 1
            if counts_category:
                summary.added_by_type[current.file_type] += 1
        else:
            current.lines_removed += 1
            summary.total_removed += 1
            if counts_category:
                summary.removed_by_type[current.file_type] += 1


# Singleton instance
diff_parser = DiffParser()
