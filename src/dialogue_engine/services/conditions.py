"""Condition evaluation contract and the default flag-backed evaluator."""
from __future__ import annotations

from typing import Callable, Dict, Iterable, Protocol, Sequence

from dialogue_engine.core.logging import get_logger
from dialogue_engine.domain.defs import (
    ConditionDef,
    CustomCondition,
    FlagCondition,
    InventoryCondition,
    QuestCondition,
)
from dialogue_engine.domain.flags import FlagStore

logger = get_logger(__name__)

CustomPredicate = Callable[[Sequence[str]], bool]


class ConditionEvaluator(Protocol):
    """Answers yes/no questions about game state for the runtime."""

    def evaluate_flag(self, name: str, required: bool) -> bool: ...

    def evaluate_inventory(self, item_id: str, min_quantity: int) -> bool: ...

    def evaluate_quest(self, quest_id: str, state: str) -> bool: ...

    def evaluate_custom(self, kind: str, params: Sequence[str]) -> bool: ...


class InventoryLookup(Protocol):
    def has_item(self, item_id: str, quantity: int = 1) -> bool: ...


class QuestLookup(Protocol):
    def is_in_state(self, quest_id: str, state: str) -> bool: ...


def evaluate_condition(condition: ConditionDef, evaluator: ConditionEvaluator) -> bool:
    """Dispatch one condition to the matching evaluator method."""
    if isinstance(condition, FlagCondition):
        return evaluator.evaluate_flag(condition.name, condition.required_value)
    if isinstance(condition, InventoryCondition):
        return evaluator.evaluate_inventory(condition.item_id, condition.min_quantity)
    if isinstance(condition, QuestCondition):
        return evaluator.evaluate_quest(condition.quest_id, condition.required_state)
    if isinstance(condition, CustomCondition):
        return evaluator.evaluate_custom(condition.kind, condition.params)
    logger.warning("Unknown condition type %r, allowing", type(condition).__name__)
    return True


def all_conditions_met(conditions: Iterable[ConditionDef], evaluator: ConditionEvaluator) -> bool:
    """AND over the conditions; an empty list passes."""
    return all(evaluate_condition(condition, evaluator) for condition in conditions)


def any_condition_met(conditions: Sequence[ConditionDef], evaluator: ConditionEvaluator) -> bool:
    """OR over the conditions; an empty list passes."""
    if not conditions:
        return True
    return any(evaluate_condition(condition, evaluator) for condition in conditions)


class FlagConditionEvaluator:
    """Default evaluator reading flags from a FlagStore and delegating the rest to hosts.

    Missing inventory or quest hosts make those conditions fail. Custom kinds are
    looked up in ``custom_predicates``; unregistered kinds return
    ``unknown_custom_result``.
    """

    def __init__(
        self,
        flags: FlagStore,
        *,
        inventory: InventoryLookup | None = None,
        quests: QuestLookup | None = None,
        custom_predicates: Dict[str, CustomPredicate] | None = None,
        unknown_custom_result: bool = True,
    ) -> None:
        self._flags = flags
        self._inventory = inventory
        self._quests = quests
        self._custom_predicates: Dict[str, CustomPredicate] = dict(custom_predicates or {})
        self._unknown_custom_result = unknown_custom_result

    def register_custom(self, kind: str, predicate: CustomPredicate) -> None:
        self._custom_predicates[kind] = predicate

    def evaluate_flag(self, name: str, required: bool) -> bool:
        return self._flags.get(name) == required

    def evaluate_inventory(self, item_id: str, min_quantity: int) -> bool:
        if self._inventory is None:
            logger.warning("No inventory host; inventory condition on '%s' fails", item_id)
            return False
        return self._inventory.has_item(item_id, min_quantity)

    def evaluate_quest(self, quest_id: str, state: str) -> bool:
        if self._quests is None:
            logger.warning("No quest host; quest condition on '%s' fails", quest_id)
            return False
        return self._quests.is_in_state(quest_id, state)

    def evaluate_custom(self, kind: str, params: Sequence[str]) -> bool:
        predicate = self._custom_predicates.get(kind)
        if predicate is None:
            logger.warning(
                "Unknown custom condition '%s', returning %s", kind, self._unknown_custom_result
            )
            return self._unknown_custom_result
        return bool(predicate(tuple(params)))
