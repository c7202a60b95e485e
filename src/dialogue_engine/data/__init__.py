"""Data layer utilities for loading dialogue graphs."""

from .errors import DataError, DataLoadError, DataValidationError
from .paths import get_dialogues_path, get_repo_root

__all__ = [
    "DataError",
    "DataLoadError",
    "DataValidationError",
    "get_dialogues_path",
    "get_repo_root",
]
