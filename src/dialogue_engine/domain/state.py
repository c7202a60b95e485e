"""Mutable runtime state for one dialogue session."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Set, Tuple

from dialogue_engine.core.types import DialoguePhase


@dataclass
class DialogueSessionState:
    """Position and history of the active dialogue."""

    graph_id: str | None = None
    current_node_id: str | None = None
    visited_node_ids: Set[str] = field(default_factory=set)
    phase: DialoguePhase = "idle"
    offered_choice_ids: Tuple[str, ...] = ()

    def reset(self) -> None:
        self.graph_id = None
        self.current_node_id = None
        self.visited_node_ids = set()
        self.phase = "idle"
        self.offered_choice_ids = ()

    def copy(self) -> "DialogueSessionState":
        return DialogueSessionState(
            graph_id=self.graph_id,
            current_node_id=self.current_node_id,
            visited_node_ids=set(self.visited_node_ids),
            phase=self.phase,
            offered_choice_ids=self.offered_choice_ids,
        )
