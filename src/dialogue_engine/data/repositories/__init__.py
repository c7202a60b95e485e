"""Repository exports."""

from .dialogue_repo import DialogueRepository, parse_graph

__all__ = [
    "DialogueRepository",
    "parse_graph",
]
