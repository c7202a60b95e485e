"""Service layer exports."""

from .errors import ProgressLoadError, ProgressSaveError
from .conditions import ConditionEvaluator, FlagConditionEvaluator
from .effects import EffectExecutor, FlagEffectExecutor
from .graph_validator import Issue, collect_issues, format_issue, validate_graph
from .progress_store import (
    DialogueProgress,
    InMemoryProgressStore,
    JsonGlobalFlagStore,
    JsonProgressStore,
    ProgressStore,
)
from .start_resolver import has_valid_start, resolve_start_node
from .dialogue_runtime import (
    ChoiceSelectedEvent,
    ChoicesOfferedEvent,
    ChoiceView,
    DialogueEndedEvent,
    DialogueError,
    DialogueErrorEvent,
    DialogueEvent,
    DialogueNodeView,
    DialogueRuntime,
    DialogueStartedEvent,
    NodeEnteredEvent,
    StepResult,
    create_runtime,
)

__all__ = [
    "ProgressLoadError",
    "ProgressSaveError",
    "ConditionEvaluator",
    "FlagConditionEvaluator",
    "EffectExecutor",
    "FlagEffectExecutor",
    "Issue",
    "collect_issues",
    "format_issue",
    "validate_graph",
    "DialogueProgress",
    "InMemoryProgressStore",
    "JsonGlobalFlagStore",
    "JsonProgressStore",
    "ProgressStore",
    "has_valid_start",
    "resolve_start_node",
    "ChoiceSelectedEvent",
    "ChoicesOfferedEvent",
    "ChoiceView",
    "DialogueEndedEvent",
    "DialogueError",
    "DialogueErrorEvent",
    "DialogueEvent",
    "DialogueNodeView",
    "DialogueRuntime",
    "DialogueStartedEvent",
    "NodeEnteredEvent",
    "StepResult",
    "create_runtime",
]
