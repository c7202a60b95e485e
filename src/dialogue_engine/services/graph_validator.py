"""Static dialogue graph validation utilities."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from dialogue_engine.domain.defs import (
    ChoiceDef,
    ConditionDef,
    DialogueGraphDef,
    FlagCondition,
    InventoryCondition,
    NodeDef,
)

Severity = str


@dataclass(frozen=True, slots=True)
class Issue:
    severity: Severity
    code: str
    message: str
    context: dict[str, str]


def format_issue(issue: Issue) -> str:
    context = " ".join(f"{key}={value}" for key, value in issue.context.items())
    suffix = f" ({context})" if context else ""
    return f"[{issue.severity}] {issue.code}: {issue.message}{suffix}"


def validate_graph(graph: DialogueGraphDef) -> list[str]:
    """Return one readable message per violated structural invariant."""
    return [format_issue(issue) for issue in collect_issues(graph) if issue.severity == "ERROR"]


def is_valid(graph: DialogueGraphDef) -> bool:
    return not validate_graph(graph)


def collect_issues(graph: DialogueGraphDef) -> list[Issue]:
    """Return errors and warnings for the graph."""
    issues: list[Issue] = []
    if not graph.id:
        issues.append(_error("EMPTY_GRAPH_ID", "Dialogue id is empty.", {}))

    node_ids = set(graph.nodes.keys())
    if not node_ids:
        issues.append(_error("NO_NODES", "Dialogue has no nodes.", {"graph_id": graph.id}))

    _validate_start(graph, node_ids, issues)
    for key, node in graph.nodes.items():
        _validate_node(key, node, node_ids, issues)

    if node_ids:
        _validate_reachability(graph, issues)
    return issues


def _validate_start(graph: DialogueGraphDef, node_ids: set[str], issues: list[Issue]) -> None:
    for index, rule in enumerate(graph.start_rules):
        field_path = f"start_rules[{index}]"
        if not rule.target_node_id:
            issues.append(
                _error("EMPTY_START_TARGET", "Start rule has an empty target node id.", {"field_path": field_path})
            )
        elif rule.target_node_id not in node_ids:
            issues.append(
                _error(
                    "MISSING_NODE_REF",
                    "Start rule references missing node.",
                    {"field_path": field_path, "referenced_id": rule.target_node_id},
                )
            )
        _validate_conditions(rule.conditions, f"{field_path}.conditions", {}, issues)

    if not graph.start_rules and not graph.start_node_id:
        issues.append(
            _error(
                "NO_START",
                "Start node id is empty and no start rules are defined.",
                {"graph_id": graph.id},
            )
        )
    elif graph.start_node_id and graph.start_node_id not in node_ids:
        issues.append(
            _error(
                "MISSING_NODE_REF",
                "Start node does not exist.",
                {"field_path": "start_node_id", "referenced_id": graph.start_node_id},
            )
        )


def _validate_node(key: str, node: NodeDef, node_ids: set[str], issues: list[Issue]) -> None:
    where = {"node_id": node.id or key}
    if not node.id:
        issues.append(_error("EMPTY_NODE_ID", "Node id is empty.", {"node_key": key}))
    elif node.id != key:
        issues.append(
            _error("NODE_KEY_MISMATCH", "Node is stored under a different key.", {"node_id": node.id, "node_key": key})
        )
    if not node.text_key:
        issues.append(_error("EMPTY_TEXT_KEY", "Node text key is empty.", where))
    if node.next_node_id and node.next_node_id not in node_ids:
        issues.append(
            _error(
                "MISSING_NODE_REF",
                "Node references missing next node.",
                {**where, "field_path": "next_node_id", "referenced_id": node.next_node_id},
            )
        )
    if node.auto_advance_delay < 0:
        issues.append(_error("NEGATIVE_TIMING", "auto_advance_delay must be >= 0.", where))
    if node.text_speed < 0:
        issues.append(_error("NEGATIVE_TIMING", "text_speed must be >= 0.", where))
    if node.choices and node.next_node_id:
        issues.append(
            Issue(
                severity="WARN",
                code="NEXT_WITH_CHOICES",
                message="next_node_id is only used when no choice is visible.",
                context=dict(where),
            )
        )
    _validate_conditions(node.conditions, "conditions", where, issues)

    seen_choice_ids: set[str] = set()
    for index, choice in enumerate(node.choices):
        _validate_choice(index, choice, node_ids, where, issues)
        if choice.id and choice.id in seen_choice_ids:
            issues.append(
                _error(
                    "DUPLICATE_CHOICE_ID",
                    "Choice id is used more than once in the node.",
                    {**where, "choice_id": choice.id},
                )
            )
        seen_choice_ids.add(choice.id)


def _validate_choice(
    index: int,
    choice: ChoiceDef,
    node_ids: set[str],
    where: dict[str, str],
    issues: list[Issue],
) -> None:
    field_path = f"choices[{index}]"
    if not choice.id:
        issues.append(_error("EMPTY_CHOICE_ID", "Choice id is empty.", {**where, "field_path": field_path}))
    if not choice.text_key:
        issues.append(_error("EMPTY_TEXT_KEY", "Choice text key is empty.", {**where, "field_path": field_path}))
    if not choice.target_node_id:
        issues.append(
            _error("EMPTY_CHOICE_TARGET", "Choice target node id is empty.", {**where, "field_path": field_path})
        )
    elif choice.target_node_id not in node_ids:
        issues.append(
            _error(
                "MISSING_NODE_REF",
                "Choice references missing node.",
                {**where, "field_path": f"{field_path}.target_node_id", "referenced_id": choice.target_node_id},
            )
        )
    _validate_conditions(choice.conditions, f"{field_path}.conditions", where, issues)


def _validate_conditions(
    conditions: Sequence[ConditionDef],
    field_path: str,
    where: dict[str, str],
    issues: list[Issue],
) -> None:
    for index, condition in enumerate(conditions):
        path = f"{field_path}[{index}]"
        if isinstance(condition, FlagCondition) and not condition.name:
            issues.append(_error("EMPTY_FLAG_NAME", "Flag condition has an empty name.", {**where, "field_path": path}))
        elif isinstance(condition, InventoryCondition) and condition.min_quantity < 0:
            issues.append(
                _error("NEGATIVE_QUANTITY", "Inventory quantity must be >= 0.", {**where, "field_path": path})
            )


def _validate_reachability(graph: DialogueGraphDef, issues: list[Issue]) -> None:
    node_ids = set(graph.nodes.keys())
    stack = [rule.target_node_id for rule in graph.start_rules]
    if graph.start_node_id:
        stack.append(graph.start_node_id)
    reachable: set[str] = set()
    while stack:
        node_id = stack.pop()
        if node_id in reachable or node_id not in node_ids:
            continue
        reachable.add(node_id)
        node = graph.nodes[node_id]
        if node.next_node_id:
            stack.append(node.next_node_id)
        stack.extend(choice.target_node_id for choice in node.choices)
    for node_id in sorted(node_ids - reachable):
        issues.append(
            Issue(
                severity="WARN",
                code="UNREACHABLE_NODE",
                message="Node is unreachable from any start target.",
                context={"node_id": node_id},
            )
        )


def _error(code: str, message: str, context: dict[str, str]) -> Issue:
    return Issue(severity="ERROR", code=code, message=message, context=context)
