"""File classification."""

from gitpulse.classification.classifier import FileClassifier, file_classifier, file_extension
from gitpulse.classification.rules import (
    ClassificationConfig,
    FileType,
    config_from_dict,
    default_config,
)

__all__ = [
    "ClassificationConfig",
    "FileClassifier",
    "FileType",
    "config_from_dict",
    "default_config",
    "file_classifier",
    "file_extension",
]
