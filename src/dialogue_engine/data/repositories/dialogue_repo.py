"""Repository for dialogue graph definitions."""
from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List

from dialogue_engine.core.logging import get_logger
from dialogue_engine.data.errors import DataError, DataValidationError
from dialogue_engine.data.repositories.base import RepositoryBase
from dialogue_engine.domain.defs import (
    AddItemEffect,
    ChoiceDef,
    ConditionDef,
    CustomCondition,
    CustomEffect,
    DialogueGraphDef,
    EffectDef,
    FlagCondition,
    InventoryCondition,
    NodeDef,
    PlayAnimationEffect,
    QuestCondition,
    RemoveItemEffect,
    SetFlagEffect,
    StartRuleDef,
    TriggerEventEffect,
    UpdateQuestEffect,
)
from dialogue_engine.services.graph_validator import validate_graph

logger = get_logger(__name__)

_CONDITION_KINDS = {"flag", "inventory", "quest", "custom"}
_EFFECT_KINDS = {
    "setflag": "set_flag",
    "additem": "add_item",
    "removeitem": "remove_item",
    "updatequest": "update_quest",
    "playanimation": "play_animation",
    "triggerevent": "trigger_event",
    "custom": "custom",
}


class DialogueRepository(RepositoryBase[DialogueGraphDef]):
    """Loads dialogue graphs, one per JSON file, keyed by graph id."""

    def __init__(self, base_path: Path | str | None = None) -> None:
        super().__init__(base_path)

    @classmethod
    def from_graphs(cls, graphs: Iterable[DialogueGraphDef]) -> "DialogueRepository":
        """Build a repository holding only the given in-memory graphs."""
        repo = cls()
        repo._definitions = {}
        for graph in graphs:
            repo.add(graph)
        return repo

    def add(self, graph: DialogueGraphDef) -> None:
        """Register an in-memory graph."""
        definitions = self._ensure_loaded()
        if graph.id in definitions:
            raise ValueError(f"Dialogue graph '{graph.id}' is already registered.")
        definitions[graph.id] = graph

    def _build(self, raw: dict[Path, object]) -> Dict[str, DialogueGraphDef]:
        graphs: Dict[str, DialogueGraphDef] = {}
        for file_path, payload in raw.items():
            try:
                graph = parse_graph(payload, context=file_path.name, source=str(file_path))
            except DataError as exc:
                logger.error("Skipping %s: %s", file_path.name, exc)
                continue
            if graph.id in graphs:
                logger.warning(
                    "Duplicate dialogue id '%s' in %s, keeping %s",
                    graph.id,
                    file_path.name,
                    graphs[graph.id].source,
                )
                continue
            errors = validate_graph(graph)
            if errors:
                logger.warning("Dialogue '%s' from %s is invalid: %s", graph.id, file_path.name, "; ".join(errors))
            graphs[graph.id] = graph
        logger.info("Loaded %d dialogues", len(graphs))
        return graphs


def parse_graph(payload: object, context: str = "dialogue", source: str = "") -> DialogueGraphDef:
    """Build a graph from a decoded JSON payload, checking structure only."""
    data = RepositoryBase._require_mapping(payload, context)
    graph_id = RepositoryBase._require_str(data.get("id", ""), f"{context} id")
    display_name = RepositoryBase._optional_str(data.get("display_name"), f"{context} display_name")
    start_node_id = RepositoryBase._optional_str(data.get("start_node_id"), f"{context} start_node_id")
    localization_table = RepositoryBase._optional_str(
        data.get("localization_table"), f"{context} localization_table"
    )

    nodes: Dict[str, NodeDef] = {}
    for index, entry in enumerate(RepositoryBase._require_list(data.get("nodes"), f"{context} nodes")):
        node = _parse_node(entry, f"{context} nodes[{index}]")
        if node.id in nodes:
            raise DataValidationError(f"{context} declares node '{node.id}' more than once.")
        nodes[node.id] = node

    start_rules: List[StartRuleDef] = []
    raw_rules = RepositoryBase._require_list(data.get("start_rules"), f"{context} start_rules")
    for index, entry in enumerate(raw_rules):
        start_rules.append(_parse_start_rule(entry, f"{context} start_rules[{index}]"))

    return DialogueGraphDef(
        id=graph_id,
        nodes=MappingProxyType(nodes),
        display_name=display_name or graph_id,
        start_node_id=start_node_id or "",
        start_rules=tuple(start_rules),
        localization_table=localization_table or "Dialogue",
        source=source,
    )


def _parse_start_rule(entry: object, context: str) -> StartRuleDef:
    data = RepositoryBase._require_mapping(entry, context)
    match = data.get("match", "all")
    if match not in ("all", "any"):
        raise DataValidationError(f"{context} match must be 'all' or 'any'.")
    return StartRuleDef(
        target_node_id=RepositoryBase._require_str(data.get("target_node_id", ""), f"{context} target_node_id"),
        conditions=_parse_conditions(data.get("conditions"), f"{context} conditions"),
        match=match,
    )


def _parse_node(entry: object, context: str) -> NodeDef:
    data = RepositoryBase._require_mapping(entry, context)
    choices = tuple(
        _parse_choice(choice, f"{context} choices[{index}]")
        for index, choice in enumerate(RepositoryBase._require_list(data.get("choices"), f"{context} choices"))
    )
    return NodeDef(
        id=RepositoryBase._require_str(data.get("id", ""), f"{context} id"),
        speaker_id=RepositoryBase._require_str(data.get("speaker_id", ""), f"{context} speaker_id"),
        text_key=RepositoryBase._require_str(data.get("text_key", ""), f"{context} text_key"),
        choices=choices,
        next_node_id=RepositoryBase._optional_str(data.get("next_node_id"), f"{context} next_node_id"),
        conditions=_parse_conditions(data.get("conditions"), f"{context} conditions"),
        effects=_parse_effects(data.get("effects"), f"{context} effects"),
        portrait_ref=RepositoryBase._optional_str(data.get("portrait_ref"), f"{context} portrait_ref"),
        animation_trigger=RepositoryBase._optional_str(
            data.get("animation_trigger"), f"{context} animation_trigger"
        ),
        auto_advance_delay=_require_number(data.get("auto_advance_delay", 0.0), f"{context} auto_advance_delay"),
        text_speed=_require_number(data.get("text_speed", 30.0), f"{context} text_speed"),
    )


def _parse_choice(entry: object, context: str) -> ChoiceDef:
    data = RepositoryBase._require_mapping(entry, context)
    return ChoiceDef(
        id=RepositoryBase._require_str(data.get("id", ""), f"{context} id"),
        text_key=RepositoryBase._require_str(data.get("text_key", ""), f"{context} text_key"),
        target_node_id=RepositoryBase._require_str(data.get("target_node_id", ""), f"{context} target_node_id"),
        conditions=_parse_conditions(data.get("conditions"), f"{context} conditions"),
        effects=_parse_effects(data.get("effects"), f"{context} effects"),
    )


def _parse_conditions(raw: object, context: str) -> tuple[ConditionDef, ...]:
    conditions: List[ConditionDef] = []
    for index, entry in enumerate(RepositoryBase._require_list(raw, context)):
        item_ctx = f"{context}[{index}]"
        data = RepositoryBase._require_mapping(entry, item_ctx)
        kind = _normalize_kind(data.get("kind"), item_ctx)
        if kind not in _CONDITION_KINDS:
            raise DataValidationError(f"{item_ctx} has unknown condition kind '{data.get('kind')}'.")
        if kind == "flag":
            conditions.append(
                FlagCondition(
                    name=RepositoryBase._require_str(data.get("name", ""), f"{item_ctx} name"),
                    required_value=_require_bool(data.get("value", True), f"{item_ctx} value"),
                )
            )
        elif kind == "inventory":
            conditions.append(
                InventoryCondition(
                    item_id=RepositoryBase._require_str(data.get("item_id", ""), f"{item_ctx} item_id"),
                    min_quantity=_require_int(data.get("quantity", 1), f"{item_ctx} quantity"),
                )
            )
        elif kind == "quest":
            conditions.append(
                QuestCondition(
                    quest_id=RepositoryBase._require_str(data.get("quest_id", ""), f"{item_ctx} quest_id"),
                    required_state=RepositoryBase._require_str(data.get("state", ""), f"{item_ctx} state"),
                )
            )
        else:
            conditions.append(
                CustomCondition(
                    kind=RepositoryBase._require_str(data.get("type", ""), f"{item_ctx} type"),
                    params=_parse_params(data.get("params"), f"{item_ctx} params"),
                )
            )
    return tuple(conditions)


def _parse_effects(raw: object, context: str) -> tuple[EffectDef, ...]:
    effects: List[EffectDef] = []
    for index, entry in enumerate(RepositoryBase._require_list(raw, context)):
        item_ctx = f"{context}[{index}]"
        data = RepositoryBase._require_mapping(entry, item_ctx)
        kind = _EFFECT_KINDS.get(_normalize_kind(data.get("kind"), item_ctx).replace("_", ""))
        if kind is None:
            raise DataValidationError(f"{item_ctx} has unknown effect kind '{data.get('kind')}'.")
        if kind == "set_flag":
            effects.append(
                SetFlagEffect(
                    name=RepositoryBase._require_str(data.get("name", ""), f"{item_ctx} name"),
                    value=_require_bool(data.get("value", True), f"{item_ctx} value"),
                )
            )
        elif kind in ("add_item", "remove_item"):
            effect_cls = AddItemEffect if kind == "add_item" else RemoveItemEffect
            effects.append(
                effect_cls(
                    item_id=RepositoryBase._require_str(data.get("item_id", ""), f"{item_ctx} item_id"),
                    quantity=_require_int(data.get("quantity", 1), f"{item_ctx} quantity"),
                )
            )
        elif kind == "update_quest":
            effects.append(
                UpdateQuestEffect(
                    quest_id=RepositoryBase._require_str(data.get("quest_id", ""), f"{item_ctx} quest_id"),
                    state=RepositoryBase._require_str(data.get("state", ""), f"{item_ctx} state"),
                )
            )
        elif kind == "play_animation":
            effects.append(
                PlayAnimationEffect(name=RepositoryBase._require_str(data.get("name", ""), f"{item_ctx} name"))
            )
        elif kind == "trigger_event":
            effects.append(
                TriggerEventEffect(name=RepositoryBase._require_str(data.get("name", ""), f"{item_ctx} name"))
            )
        else:
            effects.append(
                CustomEffect(
                    kind=RepositoryBase._require_str(data.get("type", ""), f"{item_ctx} type"),
                    params=_parse_params(data.get("params"), f"{item_ctx} params"),
                )
            )
    return tuple(effects)


def _normalize_kind(value: object, context: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DataValidationError(f"{context} kind must be a non-empty string.")
    return value.strip().lower()


def _parse_params(raw: object, context: str) -> tuple[str, ...]:
    return tuple(
        RepositoryBase._require_str(value, f"{context}[{index}]")
        for index, value in enumerate(RepositoryBase._require_list(raw, context))
    )


def _require_bool(value: object, context: str) -> bool:
    if not isinstance(value, bool):
        raise DataValidationError(f"{context} must be a boolean.")
    return value


def _require_int(value: object, context: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise DataValidationError(f"{context} must be an integer.")
    return value


def _require_number(value: object, context: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DataValidationError(f"{context} must be a number.")
    return float(value)
