"""Engine configuration and per-user file locations."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal

UnknownCustomPolicy = Literal["allow", "deny"]

_DEFAULT_UNKNOWN_CUSTOM: UnknownCustomPolicy = "allow"
_DEFAULT_LOG_LEVEL = "WARNING"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True, slots=True)
class EngineConfig:
    unknown_custom_condition: UnknownCustomPolicy = _DEFAULT_UNKNOWN_CUSTOM
    auto_end_terminal_nodes: bool = False
    log_level: str = _DEFAULT_LOG_LEVEL
    dialogues_dir: Path | None = None
    progress_dir: Path | None = None

    @property
    def unknown_custom_result(self) -> bool:
        return self.unknown_custom_condition == "allow"


def get_user_data_dir() -> Path:
    """Return the per-user data directory."""
    if os.name == "nt":
        base = os.environ.get("APPDATA")
        if base:
            return Path(base) / "DialogueEngine"
        return Path.home() / "DialogueEngine"
    return Path.home() / ".config" / "dialogue_engine"


def get_default_config_path() -> Path:
    """Return the default per-user config path."""
    return get_user_data_dir() / "config.json"


def get_progress_dir(config: EngineConfig | None = None) -> Path:
    """Return the directory holding per-graph progress files."""
    if config is not None and config.progress_dir is not None:
        return config.progress_dir
    return get_user_data_dir() / "progress"


def _normalize_policy(value: object) -> UnknownCustomPolicy:
    return "deny" if value == "deny" else _DEFAULT_UNKNOWN_CUSTOM


def _normalize_log_level(value: object) -> str:
    if isinstance(value, str) and value.upper() in _LOG_LEVELS:
        return value.upper()
    return _DEFAULT_LOG_LEVEL


def _normalize_path(value: object) -> Path | None:
    if isinstance(value, str) and value.strip():
        return Path(value).expanduser()
    return None


def config_from_dict(raw: Dict[str, Any]) -> EngineConfig:
    """Build a config from a decoded JSON object, replacing bad values with defaults."""
    auto_end = raw.get("auto_end_terminal_nodes")
    return EngineConfig(
        unknown_custom_condition=_normalize_policy(raw.get("unknown_custom_condition")),
        auto_end_terminal_nodes=auto_end if isinstance(auto_end, bool) else False,
        log_level=_normalize_log_level(raw.get("log_level")),
        dialogues_dir=_normalize_path(raw.get("dialogues_dir")),
        progress_dir=_normalize_path(raw.get("progress_dir")),
    )


def config_to_dict(config: EngineConfig) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "unknown_custom_condition": _normalize_policy(config.unknown_custom_condition),
        "auto_end_terminal_nodes": bool(config.auto_end_terminal_nodes),
        "log_level": _normalize_log_level(config.log_level),
    }
    if config.dialogues_dir is not None:
        payload["dialogues_dir"] = str(config.dialogues_dir)
    if config.progress_dir is not None:
        payload["progress_dir"] = str(config.progress_dir)
    return payload


def load_config(path: Path | None = None) -> EngineConfig:
    """Load config from disk or return defaults."""
    config_path = path or get_default_config_path()
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return EngineConfig()
    except (OSError, ValueError):
        return EngineConfig()
    if not isinstance(raw, dict):
        return EngineConfig()
    return config_from_dict(raw)


def save_config(config: EngineConfig, path: Path | None = None) -> None:
    """Persist config to disk."""
    config_path = path or get_default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config_to_dict(config), indent=2, sort_keys=True), encoding="utf-8")
