"""Dialogue graph definition structures used by the runtime."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Mapping, Tuple, Union

StartMatch = Literal["all", "any"]


@dataclass(frozen=True, slots=True)
class FlagCondition:
    """Passes when the named flag equals ``required_value``."""

    name: str
    required_value: bool = True

    def describe(self) -> str:
        return f"Flag '{self.name}' must be {self.required_value}"


@dataclass(frozen=True, slots=True)
class InventoryCondition:
    """Passes when at least ``min_quantity`` of the item is held."""

    item_id: str
    min_quantity: int = 1

    def describe(self) -> str:
        return f"Must have at least {self.min_quantity} of item '{self.item_id}'"


@dataclass(frozen=True, slots=True)
class QuestCondition:
    """Passes when the quest is in ``required_state``."""

    quest_id: str
    required_state: str

    def describe(self) -> str:
        return f"Quest '{self.quest_id}' must be in state '{self.required_state}'"


@dataclass(frozen=True, slots=True)
class CustomCondition:
    """Host-defined predicate identified by ``kind``."""

    kind: str
    params: Tuple[str, ...] = ()

    def describe(self) -> str:
        return f"Custom condition '{self.kind}'"


ConditionDef = Union[FlagCondition, InventoryCondition, QuestCondition, CustomCondition]


@dataclass(frozen=True, slots=True)
class SetFlagEffect:
    name: str
    value: bool = True

    def describe(self) -> str:
        return f"Set flag '{self.name}' to {self.value}"


@dataclass(frozen=True, slots=True)
class AddItemEffect:
    item_id: str
    quantity: int = 1

    def describe(self) -> str:
        return f"Add {self.quantity} of item '{self.item_id}'"


@dataclass(frozen=True, slots=True)
class RemoveItemEffect:
    item_id: str
    quantity: int = 1

    def describe(self) -> str:
        return f"Remove {self.quantity} of item '{self.item_id}'"


@dataclass(frozen=True, slots=True)
class UpdateQuestEffect:
    quest_id: str
    state: str

    def describe(self) -> str:
        return f"Set quest '{self.quest_id}' to state '{self.state}'"


@dataclass(frozen=True, slots=True)
class PlayAnimationEffect:
    name: str

    def describe(self) -> str:
        return f"Play animation '{self.name}'"


@dataclass(frozen=True, slots=True)
class TriggerEventEffect:
    name: str

    def describe(self) -> str:
        return f"Trigger event '{self.name}'"


@dataclass(frozen=True, slots=True)
class CustomEffect:
    kind: str
    params: Tuple[str, ...] = ()

    def describe(self) -> str:
        return f"Execute custom effect '{self.kind}'"


EffectDef = Union[
    SetFlagEffect,
    AddItemEffect,
    RemoveItemEffect,
    UpdateQuestEffect,
    PlayAnimationEffect,
    TriggerEventEffect,
    CustomEffect,
]


@dataclass(frozen=True, slots=True)
class ChoiceDef:
    """A player-selectable branch from a node to a target node."""

    id: str
    text_key: str
    target_node_id: str
    conditions: Tuple[ConditionDef, ...] = ()
    effects: Tuple[EffectDef, ...] = ()


@dataclass(frozen=True, slots=True)
class NodeDef:
    """One conversational beat."""

    id: str
    speaker_id: str
    text_key: str
    choices: Tuple[ChoiceDef, ...] = ()
    next_node_id: str | None = None
    conditions: Tuple[ConditionDef, ...] = ()
    effects: Tuple[EffectDef, ...] = ()
    portrait_ref: str | None = None
    animation_trigger: str | None = None
    auto_advance_delay: float = 0.0
    text_speed: float = 30.0


@dataclass(frozen=True, slots=True)
class StartRuleDef:
    """Selects ``target_node_id`` as the entry point when its conditions match."""

    target_node_id: str
    conditions: Tuple[ConditionDef, ...] = ()
    match: StartMatch = "all"


@dataclass(frozen=True, slots=True)
class DialogueGraphDef:
    """Complete, immutable conversation graph."""

    id: str
    nodes: Mapping[str, NodeDef]
    display_name: str = ""
    start_node_id: str = ""
    start_rules: Tuple[StartRuleDef, ...] = ()
    localization_table: str = "Dialogue"
    source: str = field(default="", compare=False)

    def get_node(self, node_id: str | None) -> NodeDef | None:
        if not node_id:
            return None
        return self.nodes.get(node_id)
