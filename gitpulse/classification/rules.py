"""File classification rule sets and their loaders.

A :class:`ClassificationConfig` is an immutable snapshot. Rules can come from
the built-in defaults, a JSON file shaped like::

    {
      "fileClassification": {
        "dataFiles": {"extensions": [".csv"], "pathPatterns": ["data/"]},
        "configFiles": {...},
        "documentationFiles": {...},
        "codeFiles": {...},
        "rules": {"priority": [...], "defaultType": "other", "caseSensitive": false}
      }
    }

or from ``settings`` rows in the ``FileClassification.<Group>`` categories.
"""

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.models.setting import Setting

logger = structlog.get_logger()


class FileType(str, Enum):
    """Category a changed file is counted under."""

    CODE = "code"
    DATA = "data"
    CONFIG = "config"
    DOCS = "docs"
    OTHER = "other"


SPECIFIC_FILES = "specificFiles"
PATH_PATTERNS = "pathPatterns"
FILE_NAME_PATTERNS = "fileNamePatterns"
EXTENSIONS = "extensions"

DEFAULT_PRIORITY: tuple[str, ...] = (SPECIFIC_FILES, PATH_PATTERNS, FILE_NAME_PATTERNS, EXTENSIONS)

# Group names used in JSON files and settings categories, in evaluation order
GROUPS: dict[str, FileType] = {
    "dataFiles": FileType.DATA,
    "configFiles": FileType.CONFIG,
    "documentationFiles": FileType.DOCS,
    "codeFiles": FileType.CODE,
}

SETTINGS_PREFIX = "FileClassification."

Rules = tuple[tuple[FileType, tuple[str, ...]], ...]


@dataclass(frozen=True)
class ClassificationConfig:
    """Prioritized classification rules.

    Each rule category maps file types to match values. Within a category the
    types are tried in the order they were declared.
    """

    specific_files: Rules = ()
    path_patterns: Rules = ()
    file_name_patterns: Rules = ()
    extensions: Rules = ()
    priority: tuple[str, ...] = DEFAULT_PRIORITY
    default_type: FileType = FileType.OTHER
    case_sensitive: bool = False
    enable_logging: bool = True
    source: str = field(default="defaults", compare=False)

    def rules_for(self, category: str) -> Rules:
        """Rules for a priority entry; unknown names yield no rules."""
        return {
            SPECIFIC_FILES: self.specific_files,
            PATH_PATTERNS: self.path_patterns,
            FILE_NAME_PATTERNS: self.file_name_patterns,
            EXTENSIONS: self.extensions,
        }.get(category, ())

    def summary(self) -> dict[str, Any]:
        """Counts of rules per category, for logs and diagnostics."""
        return {
            "source": self.source,
            "priority": list(self.priority),
            "default_type": self.default_type.value,
            "case_sensitive": self.case_sensitive,
            **{
                category: sum(len(values) for _, values in self.rules_for(category))
                for category in DEFAULT_PRIORITY
            },
        }


def parse_file_type(value: Any, fallback: FileType = FileType.OTHER) -> FileType:
    """Parse a file type name leniently (``Documentation`` maps to docs)."""
    if isinstance(value, FileType):
        return value
    text = str(value or "").strip().lower()
    if text in ("documentation", "doc"):
        return FileType.DOCS
    try:
        return FileType(text)
    except ValueError:
        return fallback


def default_config() -> ClassificationConfig:
    """Built-in extension rules."""
    return ClassificationConfig(
        extensions=(
            (FileType.DATA, (".csv", ".json", ".xml", ".sql", ".log")),
            (FileType.CONFIG, (".yaml", ".yml", ".json", ".ini", ".cfg")),
            (FileType.DOCS, (".md", ".txt", ".rst")),
            (FileType.CODE, (".cs", ".js", ".ts", ".py", ".html", ".css")),
        ),
    )


def _values(raw: Any) -> tuple[str, ...]:
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    return tuple(str(v) for v in raw if str(v).strip())


def _build(
    groups: Mapping[FileType, Mapping[str, Any]],
    rules: Mapping[str, Any],
    source: str,
) -> ClassificationConfig:
    def collect(category: str) -> Rules:
        return tuple(
            (file_type, values)
            for file_type, group in groups.items()
            if (values := _values(group.get(category)))
        )

    priority = _values(rules.get("priority")) or DEFAULT_PRIORITY
    case_sensitive = rules.get("caseSensitive", False)
    enable_logging = rules.get("enableLogging", True)
    return ClassificationConfig(
        specific_files=collect(SPECIFIC_FILES),
        path_patterns=collect(PATH_PATTERNS),
        file_name_patterns=collect(FILE_NAME_PATTERNS),
        extensions=collect(EXTENSIONS),
        priority=priority,
        default_type=parse_file_type(rules.get("defaultType"), FileType.OTHER),
        case_sensitive=_as_bool(case_sensitive),
        enable_logging=_as_bool(enable_logging),
        source=source,
    )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def config_from_dict(data: Mapping[str, Any], source: str = "dict") -> ClassificationConfig:
    """Build a config from a ``fileClassification`` section (or a document holding one)."""
    section = data.get("fileClassification", data)
    groups = {
        file_type: section.get(group) or {}
        for group, file_type in GROUPS.items()
    }
    return _build(groups, section.get("rules") or {}, source)


def load_config_file(path: str | Path) -> ClassificationConfig:
    """Load rules from a JSON file."""
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        data = json.load(fh)
    config = config_from_dict(data, source=f"file:{path}")
    logger.info("Loaded file classification rules", path=str(path), **config.summary())
    return config


def config_from_settings(rows: Iterable[Setting]) -> ClassificationConfig:
    """Build a config from ``FileClassification.*`` settings rows.

    Groups without a known file type (for example ``TestFiles``) are ignored.
    """
    by_group: dict[str, dict[str, Any]] = {}
    for row in rows:
        if not row.is_active or not row.category.startswith(SETTINGS_PREFIX):
            continue
        group = row.category[len(SETTINGS_PREFIX):]
        try:
            value = row.typed_value()
        except (ValueError, json.JSONDecodeError) as e:
            logger.warning(
                "Ignoring malformed classification setting",
                category=row.category,
                key=row.key,
                error=str(e),
            )
            continue
        by_group.setdefault(group, {})[row.key] = value

    groups = {
        file_type: by_group.get(group[0].upper() + group[1:], {})
        for group, file_type in GROUPS.items()
    }
    return _build(groups, by_group.get("Rules", {}), "database")


async def load_config_from_db(session: AsyncSession) -> ClassificationConfig:
    """Read classification rules from the settings table."""
    result = await session.execute(
        select(Setting).where(Setting.category.startswith(SETTINGS_PREFIX))
    )
    config = config_from_settings(result.scalars().all())
    logger.info("Loaded file classification rules from database", **config.summary())
    return config
