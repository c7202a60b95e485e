"""Quest state tracking used by the default condition and effect hosts."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

QUEST_NOT_STARTED = "not_started"


@dataclass(slots=True)
class QuestLog:
    """Quest id to current state string."""

    states: Dict[str, str] = field(default_factory=dict)

    def get_state(self, quest_id: str) -> str:
        return self.states.get(quest_id, QUEST_NOT_STARTED)

    def is_in_state(self, quest_id: str, state: str) -> bool:
        return self.get_state(quest_id) == state

    def set_state(self, quest_id: str, state: str) -> None:
        self.states[quest_id] = state
