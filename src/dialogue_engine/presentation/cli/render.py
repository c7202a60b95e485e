"""Shared CLI rendering helpers."""
from __future__ import annotations

import os
from typing import Iterable, Sequence

from dialogue_engine.domain.defs import NodeDef
from dialogue_engine.services.dialogue_runtime import DialogueNodeView


def debug_enabled() -> bool:
    """Return True only when DIALOGUE_ENGINE_DEBUG is explicitly set to '1'."""
    return os.getenv("DIALOGUE_ENGINE_DEBUG") == "1"


def render_heading(title: str) -> None:
    """Print a consistent section heading."""
    print(f"\n=== {title} ===")


def render_node(view: DialogueNodeView) -> None:
    """Print the speaker line for a node; text keys stand in for localized text."""
    if debug_enabled():
        print(f"[{view.graph_id}:{view.node_id}]")
    speaker = view.speaker_id or "Narrator"
    print(f"{speaker}: {view.text_key}")


def render_node_details(node: NodeDef) -> None:
    """Print the node's gates and effects in plain words."""
    render_bullet_lines(condition.describe() for condition in node.conditions)
    render_bullet_lines(effect.describe() for effect in node.effects)


def render_choices(labels: Sequence[str]) -> None:
    """Display numbered choices."""
    if not labels:
        return
    for idx, label in enumerate(labels, start=1):
        print(f"  {idx}. {label}")


def render_bullet_lines(lines: Iterable[str]) -> None:
    """Print bullet-prefixed lines."""
    for line in lines:
        print(f"- {line}")
