"""Two-scope boolean flag storage."""
from __future__ import annotations

from typing import Dict, Mapping, MutableMapping


class FlagStore:
    """Holds global flags (shared, long-lived) and session flags (one dialogue run).

    The global scope may be a mapping owned by another game system; it is used
    by reference so writes are visible to every holder.
    """

    def __init__(self, global_flags: MutableMapping[str, bool] | None = None) -> None:
        self._global: MutableMapping[str, bool] = global_flags if global_flags is not None else {}
        self._session: Dict[str, bool] = {}

    def get(self, name: str) -> bool:
        """Return the effective value; global wins, absent means False."""
        if name in self._global:
            return self._global[name]
        return self._session.get(name, False)

    def has(self, name: str) -> bool:
        return name in self._global or name in self._session

    def set_global(self, name: str, value: bool) -> None:
        self._global[name] = bool(value)

    def set_session(self, name: str, value: bool) -> None:
        self._session[name] = bool(value)

    def clear_global(self, name: str) -> None:
        self._global.pop(name, None)

    def merge_session(self, flags: Mapping[str, bool]) -> None:
        """Add restored flags without overwriting values already in the session."""
        for name, value in flags.items():
            self._session.setdefault(name, bool(value))

    def reset_session(self) -> None:
        self._session.clear()

    def snapshot_session(self) -> Dict[str, bool]:
        return dict(self._session)

    def restore_session(self, snapshot: Mapping[str, bool]) -> None:
        self._session = dict(snapshot)

    @property
    def global_flags(self) -> Mapping[str, bool]:
        return dict(self._global)

    @property
    def session_flags(self) -> Mapping[str, bool]:
        return dict(self._session)
