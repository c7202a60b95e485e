"""Start-node resolution for dialogue graphs."""
from __future__ import annotations

from dialogue_engine.domain.defs import DialogueGraphDef, StartRuleDef
from dialogue_engine.services.conditions import (
    ConditionEvaluator,
    all_conditions_met,
    any_condition_met,
)


def rule_matches(rule: StartRuleDef, evaluator: ConditionEvaluator) -> bool:
    if rule.match == "any":
        return any_condition_met(rule.conditions, evaluator)
    return all_conditions_met(rule.conditions, evaluator)


def resolve_start_node(graph: DialogueGraphDef, evaluator: ConditionEvaluator) -> str | None:
    """Return the entry node id, or None when the graph cannot be started.

    Rules are tried in declared order; the first matching rule with a non-empty
    target wins. Otherwise the legacy ``start_node_id`` is used.
    """
    for rule in graph.start_rules:
        if rule.target_node_id and rule_matches(rule, evaluator):
            return rule.target_node_id
    return graph.start_node_id or None


def has_valid_start(graph: DialogueGraphDef, evaluator: ConditionEvaluator) -> bool:
    return resolve_start_node(graph, evaluator) is not None
