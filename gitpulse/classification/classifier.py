"""Path based file classifier."""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.classification.rules import (
    DEFAULT_PRIORITY,
    EXTENSIONS,
    FILE_NAME_PATTERNS,
    PATH_PATTERNS,
    SPECIFIC_FILES,
    ClassificationConfig,
    FileType,
    default_config,
    load_config_file,
    load_config_from_db,
)
from gitpulse.config import settings

logger = structlog.get_logger()


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def file_name(path: str) -> str:
    return normalize_path(path).rsplit("/", 1)[-1]


def file_extension(path: str) -> str:
    """Extension including the leading dot, or ``""``.

    Dotfiles are their own extension (``.gitignore``) and a trailing dot
    yields no extension.
    """
    name = file_name(path)
    dot = name.rfind(".")
    if dot < 0 or dot == len(name) - 1:
        return ""
    return name[dot:]


def matches_glob(name: str, pattern: str) -> bool:
    """Match a pattern with at most one ``*`` wildcard; otherwise compare exactly."""
    if pattern.count("*") != 1:
        return name == pattern
    prefix, suffix = pattern.split("*")
    return len(name) >= len(prefix) + len(suffix) and name.startswith(prefix) and name.endswith(suffix)


class FileClassifier:
    """Classifies file paths into :class:`FileType` categories.

    The active :class:`ClassificationConfig` is replaced wholesale by
    :meth:`reload`. ``classify`` reads the reference once so every call sees
    a single consistent snapshot.
    """

    def __init__(self, config: ClassificationConfig | None = None):
        self._config = config or default_config()

    @property
    def config(self) -> ClassificationConfig:
        return self._config

    def reload(self, config: ClassificationConfig) -> None:
        """Swap in a new rule snapshot."""
        self._config = config
        logger.info("File classification rules reloaded", **config.summary())

    def classify(self, path: str | None) -> FileType:
        if not path:
            return FileType.OTHER

        config = self._config
        normalized = normalize_path(path)
        name = file_name(normalized)
        extension = file_extension(normalized)
        if not config.case_sensitive:
            normalized, name, extension = normalized.lower(), name.lower(), extension.lower()

        for category in config.priority:
            for file_type, values in config.rules_for(category):
                for value in values:
                    candidate = value if config.case_sensitive else value.lower()
                    if self._matches(category, candidate, normalized, name, extension):
                        if config.enable_logging:
                            logger.debug(
                                "Classified file",
                                path=path,
                                file_type=file_type.value,
                                rule=category,
                                value=value,
                            )
                        return file_type

        return config.default_type

    @staticmethod
    def _matches(category: str, value: str, path: str, name: str, extension: str) -> bool:
        if category == SPECIFIC_FILES:
            return name == value
        if category == PATH_PATTERNS:
            return normalize_path(value) in path
        if category == FILE_NAME_PATTERNS:
            return matches_glob(name, value)
        if category == EXTENSIONS:
            return bool(extension) and extension == value
        return False

    async def load(self, session: AsyncSession | None = None, source: str | None = None) -> ClassificationConfig:
        """Load rules from the configured source and make them active.

        Any failure keeps the built-in defaults.
        """
        source = source or settings.file_classification_source
        config = default_config()
        try:
            if source == "file":
                config = load_config_file(settings.file_classification_path)
            elif source == "database":
                if session is None:
                    raise ValueError("A database session is required to load rules from the database")
                loaded = await load_config_from_db(session)
                if any(loaded.rules_for(category) for category in DEFAULT_PRIORITY):
                    config = loaded
                else:
                    logger.warning("No file classification rules in database, using defaults")
        except Exception as e:
            logger.error("Failed to load file classification rules", source=source, error=str(e))
        self.reload(config)
        return config


# Singleton instance
file_classifier = FileClassifier()
