"""Persistence of per-graph dialogue progress and of global flags."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Protocol

from dialogue_engine.services.errors import ProgressLoadError, ProgressSaveError

PROGRESS_VERSION = 1

GLOBAL_FLAGS_FILENAME = "global.flags"

ProgressPayload = Dict[str, Any]
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True, slots=True)
class DialogueProgress:
    """What survives between runs of one graph: visited nodes and session flags."""

    visited_node_ids: FrozenSet[str] = frozenset()
    flags: Mapping[str, bool] = field(default_factory=dict)


class ProgressStore(Protocol):
    def save(self, graph_id: str, progress: DialogueProgress) -> None: ...

    def load(self, graph_id: str) -> DialogueProgress | None: ...


def serialize_progress(graph_id: str, progress: DialogueProgress) -> ProgressPayload:
    """Return a JSON-serializable payload."""
    return {
        "save_version": PROGRESS_VERSION,
        "metadata": {
            "graph_id": graph_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        },
        "progress": {
            "visited_node_ids": sorted(progress.visited_node_ids),
            "flags": {name: bool(value) for name, value in sorted(progress.flags.items())},
        },
    }


def deserialize_progress(payload: object, graph_id: str | None = None) -> DialogueProgress:
    """Rebuild progress from a payload, raising ProgressLoadError when malformed."""
    if not isinstance(payload, Mapping):
        raise ProgressLoadError("Progress data must be a JSON object.")
    if payload.get("save_version") != PROGRESS_VERSION:
        raise ProgressLoadError(f"Unsupported progress version: {payload.get('save_version')!r}.")
    metadata = payload.get("metadata")
    body = payload.get("progress")
    if not isinstance(metadata, Mapping) or not isinstance(body, Mapping):
        raise ProgressLoadError("Progress data is missing required sections.")
    if graph_id is not None and metadata.get("graph_id") != graph_id:
        raise ProgressLoadError(
            f"Progress belongs to '{metadata.get('graph_id')}', expected '{graph_id}'."
        )

    visited = body.get("visited_node_ids", [])
    if not isinstance(visited, list) or not all(isinstance(node_id, str) for node_id in visited):
        raise ProgressLoadError("progress.visited_node_ids must be a list of strings.")
    flags = body.get("flags", {})
    if not isinstance(flags, Mapping):
        raise ProgressLoadError("progress.flags must be an object.")
    for name, value in flags.items():
        if not isinstance(name, str) or not isinstance(value, bool):
            raise ProgressLoadError("progress.flags must map strings to booleans.")
    return DialogueProgress(visited_node_ids=frozenset(visited), flags=dict(flags))


def serialize_global_flags(flags: Mapping[str, bool]) -> ProgressPayload:
    return {
        "save_version": PROGRESS_VERSION,
        "metadata": {"saved_at": datetime.now(timezone.utc).isoformat()},
        "flags": {name: bool(value) for name, value in sorted(flags.items())},
    }


def deserialize_global_flags(payload: object) -> Dict[str, bool]:
    if not isinstance(payload, Mapping):
        raise ProgressLoadError("Global flag data must be a JSON object.")
    if payload.get("save_version") != PROGRESS_VERSION:
        raise ProgressLoadError(f"Unsupported global flag version: {payload.get('save_version')!r}.")
    flags = payload.get("flags", {})
    if not isinstance(flags, Mapping):
        raise ProgressLoadError("flags must be an object.")
    for name, value in flags.items():
        if not isinstance(name, str) or not isinstance(value, bool):
            raise ProgressLoadError("flags must map strings to booleans.")
    return dict(flags)


class InMemoryProgressStore:
    """Keeps serialized payloads in a dict."""

    def __init__(self) -> None:
        self._payloads: Dict[str, ProgressPayload] = {}
        self.save_count = 0

    def save(self, graph_id: str, progress: DialogueProgress) -> None:
        self._payloads[graph_id] = serialize_progress(graph_id, progress)
        self.save_count += 1

    def load(self, graph_id: str) -> DialogueProgress | None:
        payload = self._payloads.get(graph_id)
        if payload is None:
            return None
        return deserialize_progress(payload, graph_id)

    def clear(self, graph_id: str | None = None) -> None:
        if graph_id is None:
            self._payloads.clear()
        else:
            self._payloads.pop(graph_id, None)


class JsonProgressStore:
    """One JSON file per graph inside ``base_dir``."""

    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir)

    def save(self, graph_id: str, progress: DialogueProgress) -> None:
        payload = serialize_progress(graph_id, progress)
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            self._path_for(graph_id).write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise ProgressSaveError(f"Unable to write progress for '{graph_id}': {exc}") from exc

    def load(self, graph_id: str) -> DialogueProgress | None:
        payload = _read_payload(self._path_for(graph_id))
        if payload is None:
            return None
        return deserialize_progress(payload, graph_id)

    def delete(self, graph_id: str) -> None:
        try:
            self._path_for(graph_id).unlink()
        except FileNotFoundError:
            return

    def _path_for(self, graph_id: str) -> Path:
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", graph_id) or "_"
        return self._base_dir / f"{safe_name}.json"


class JsonGlobalFlagStore:
    """Global flags kept in a single JSON file, shared by every graph."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @classmethod
    def in_dir(cls, base_dir: Path | str) -> "JsonGlobalFlagStore":
        """Place the file beside per-graph progress; graph files always end in ``.json``."""
        return cls(Path(base_dir) / GLOBAL_FLAGS_FILENAME)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, bool]:
        payload = _read_payload(self._path)
        if payload is None:
            return {}
        return deserialize_global_flags(payload)

    def save(self, flags: Mapping[str, bool]) -> None:
        payload = serialize_global_flags(flags)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise ProgressSaveError(f"Unable to write global flags: {exc}") from exc


def _read_payload(path: Path) -> object | None:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise ProgressLoadError(f"Unable to read progress file: {path}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProgressLoadError(f"Invalid JSON in {path}: {exc}") from exc
