"""Base repository implementation for directories of JSON documents."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Generic, TypeVar

from dialogue_engine.core.logging import get_logger
from dialogue_engine.data.errors import DataLoadError, DataValidationError
from dialogue_engine.data.json_loader import load_json
from dialogue_engine.data import paths

logger = get_logger(__name__)

T = TypeVar("T")


class RepositoryBase(Generic[T]):
    """Common caching and loading behavior for repositories.

    Every ``*.json`` file in the directory is one document; documents are built
    lazily on first access and cached until :meth:`reload`. Unreadable files are
    logged and skipped.
    """

    def __init__(self, base_path: Path | str | None = None, pattern: str = "*.json") -> None:
        self._base_path = Path(base_path) if base_path is not None else None
        self._pattern = pattern
        self._definitions: Dict[str, T] | None = None

    def _get_directory(self) -> Path:
        return paths.get_dialogues_path(self._base_path)

    def _load_raw(self) -> dict[Path, object]:
        directory = self._get_directory()
        if not directory.is_dir():
            return {}
        raw: dict[Path, object] = {}
        for file_path in sorted(directory.glob(self._pattern)):
            try:
                raw[file_path] = load_json(file_path)
            except DataLoadError as exc:
                logger.error("Skipping %s: %s", file_path.name, exc)
        return raw

    def _build(self, raw: dict[Path, object]) -> Dict[str, T]:
        """Convert raw documents into typed definitions keyed by id."""
        raise NotImplementedError

    def _ensure_loaded(self) -> Dict[str, T]:
        if self._definitions is None:
            self._definitions = self._build(self._load_raw())
        return self._definitions

    def get(self, def_id: str) -> T:
        """Return a definition by id."""
        definitions = self._ensure_loaded()
        try:
            return definitions[def_id]
        except KeyError as exc:
            raise KeyError(def_id) from exc

    def has(self, def_id: str) -> bool:
        return def_id in self._ensure_loaded()

    def ids(self) -> list[str]:
        return sorted(self._ensure_loaded().keys())

    def all(self) -> list[T]:
        """Return all definitions sorted deterministically by id."""
        definitions = self._ensure_loaded()
        return [definitions[key] for key in sorted(definitions.keys())]

    def reload(self) -> None:
        self._definitions = None

    @staticmethod
    def _require_mapping(value: object, context: str) -> dict[str, object]:
        if not isinstance(value, dict):
            raise DataValidationError(f"{context} must be an object/dict.")
        return value

    @staticmethod
    def _require_list(value: object, context: str) -> list[object]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise DataValidationError(f"{context} must be a list if provided.")
        return value

    @staticmethod
    def _require_str(value: object, context: str) -> str:
        if not isinstance(value, str):
            raise DataValidationError(f"{context} must be a string.")
        return value

    @staticmethod
    def _optional_str(value: object, context: str) -> str | None:
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            raise DataValidationError(f"{context} must be a string if provided.")
        return value
