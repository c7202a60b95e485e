"""Dialogue runtime: the state machine that drives a conversation graph."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Literal, Protocol, Tuple

from dialogue_engine.core.logging import get_logger
from dialogue_engine.core.types import DialoguePhase, EndReason
from dialogue_engine.domain.defs import ChoiceDef, DialogueGraphDef, NodeDef
from dialogue_engine.domain.flags import FlagStore
from dialogue_engine.domain.inventory import Inventory
from dialogue_engine.domain.quest_log import QuestLog
from dialogue_engine.domain.state import DialogueSessionState
from dialogue_engine.services.conditions import (
    ConditionEvaluator,
    CustomPredicate,
    FlagConditionEvaluator,
    all_conditions_met,
)
from dialogue_engine.services.effects import (
    EffectExecutor,
    FlagEffectExecutor,
    execute_effects,
)
from dialogue_engine.services.errors import ProgressLoadError, ProgressSaveError
from dialogue_engine.services.graph_validator import validate_graph
from dialogue_engine.services.progress_store import (
    DialogueProgress,
    InMemoryProgressStore,
    ProgressStore,
)
from dialogue_engine.services.start_resolver import has_valid_start, resolve_start_node

logger = get_logger(__name__)

ErrorKind = Literal["validation", "resolution", "traversal", "invalid_call", "persistence"]


class GraphSource(Protocol):
    """Anything that returns a graph by id and raises KeyError when unknown."""

    def get(self, graph_id: str) -> DialogueGraphDef: ...


@dataclass(frozen=True, slots=True)
class DialogueError:
    """A failure reported by the runtime instead of raised."""

    kind: ErrorKind
    message: str


@dataclass(slots=True)
class DialogueEvent:
    """Base class for runtime notifications."""


@dataclass(slots=True)
class DialogueStartedEvent(DialogueEvent):
    graph_id: str
    start_node_id: str


@dataclass(slots=True)
class NodeEnteredEvent(DialogueEvent):
    graph_id: str
    node_id: str


@dataclass(slots=True)
class ChoicesOfferedEvent(DialogueEvent):
    node_id: str
    choice_ids: Tuple[str, ...]


@dataclass(slots=True)
class ChoiceSelectedEvent(DialogueEvent):
    node_id: str
    choice_id: str


@dataclass(slots=True)
class DialogueEndedEvent(DialogueEvent):
    graph_id: str
    reason: EndReason
    visited_node_ids: Tuple[str, ...]


@dataclass(slots=True)
class DialogueErrorEvent(DialogueEvent):
    error: DialogueError


@dataclass(slots=True)
class ChoiceView:
    choice_id: str
    text_key: str
    target_node_id: str


@dataclass(slots=True)
class DialogueNodeView:
    """Data returned to the presentation layer for rendering."""

    graph_id: str
    node_id: str
    speaker_id: str
    text_key: str
    phase: DialoguePhase
    choices: List[ChoiceView]
    portrait_ref: str | None = None
    animation_trigger: str | None = None
    auto_advance_delay: float = 0.0
    text_speed: float = 30.0
    has_next: bool = False


@dataclass(slots=True)
class StepResult:
    """Outcome of one public runtime call."""

    events: List[DialogueEvent] = field(default_factory=list)
    node_view: DialogueNodeView | None = None
    error: DialogueError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


DialogueListener = Callable[[DialogueEvent], None]


class DialogueRuntime:
    """Holds the current position in a graph and advances it on host calls.

    Public methods never raise; they return a :class:`StepResult` and record
    :attr:`last_error`. A host callback that raises ends the dialogue with
    reason ``aborted``. Listeners may call back into the runtime; a nested
    call folds its events into the outer step. Observable phases are
    ``idle``, ``choices_offered`` and ``linear_pending``.
    """

    def __init__(
        self,
        graphs: GraphSource,
        evaluator: ConditionEvaluator,
        executor: EffectExecutor,
        progress_store: ProgressStore,
        flags: FlagStore,
        *,
        auto_end_terminal_nodes: bool = False,
    ) -> None:
        self._graphs = graphs
        self._evaluator = evaluator
        self._executor = executor
        self._progress_store = progress_store
        self._flags = flags
        self._auto_end_terminal_nodes = auto_end_terminal_nodes
        self._state = DialogueSessionState()
        self._graph: DialogueGraphDef | None = None
        self._listeners: List[DialogueListener] = []
        self._step_events: List[DialogueEvent] = []
        self._step_error: DialogueError | None = None
        self._outer_steps: List[Tuple[List[DialogueEvent], DialogueError | None]] = []
        self._session_serial = 0
        self.last_error: DialogueError | None = None

    # Host-facing transitions

    def start_dialogue(self, graph_id: str) -> StepResult:
        """Start the graph registered under ``graph_id``."""
        self._begin_step()
        if not graph_id:
            self._report("invalid_call", "Cannot start dialogue: dialogue id is empty")
            return self._end_step()
        graph = self._lookup(graph_id)
        if graph is None:
            self._report("invalid_call", f"Cannot start dialogue: dialogue '{graph_id}' not found")
            return self._end_step()
        self._start(graph)
        return self._end_step()

    def start_graph(self, graph: DialogueGraphDef) -> StepResult:
        """Start a graph object directly, for callers that hold one instead of an id."""
        self._begin_step()
        self._start(graph)
        return self._end_step()

    def continue_dialogue(self) -> StepResult:
        """Advance past a node without visible choices."""
        self._begin_step()
        if self._state.phase != "linear_pending":
            self._report("invalid_call", f"Cannot continue while {self._state.phase}")
            return self._end_step()
        node = self.current_node()
        if node is not None and node.next_node_id:
            self._enter_node(node.next_node_id)
        else:
            self._finish("completed")
        return self._end_step()

    def select_choice(self, choice_id: str) -> StepResult:
        """Pick one of the currently visible choices."""
        self._begin_step()
        if self._state.phase != "choices_offered":
            self._report("invalid_call", f"Cannot select choice '{choice_id}' while {self._state.phase}")
            return self._end_step()
        if choice_id not in self._state.offered_choice_ids:
            self._report(
                "invalid_call",
                f"Choice '{choice_id}' is not available at node '{self._state.current_node_id}'",
            )
            return self._end_step()
        node = self.current_node()
        assert node is not None
        choice = next(choice for choice in node.choices if choice.id == choice_id)
        session = self._session_serial
        try:
            execute_effects(choice.effects, self._executor)
        except Exception as exc:
            self._abort(f"running effects of choice '{choice.id}'", exc, session)
            return self._end_step()
        if self._session_serial != session:
            return self._end_step()
        self._emit(ChoiceSelectedEvent(node_id=node.id, choice_id=choice.id))
        if self._session_serial == session:
            self._enter_node(choice.target_node_id)
        return self._end_step()

    def end_dialogue(self) -> StepResult:
        """Persist progress and return to idle; a no-op when no dialogue is running."""
        self._begin_step()
        if self._state.phase not in ("idle", "ended"):
            self._finish("cancelled")
        return self._end_step()

    # Queries

    def is_active(self) -> bool:
        return self._state.phase != "idle"

    @property
    def phase(self) -> DialoguePhase:
        return self._state.phase

    @property
    def current_graph_id(self) -> str | None:
        return self._state.graph_id

    @property
    def visited_node_ids(self) -> frozenset[str]:
        return frozenset(self._state.visited_node_ids)

    @property
    def flags(self) -> FlagStore:
        return self._flags

    def current_node(self) -> NodeDef | None:
        if self._graph is None:
            return None
        return self._graph.get_node(self._state.current_node_id)

    def visible_choices(self) -> List[ChoiceDef]:
        node = self.current_node()
        if node is None or self._state.phase != "choices_offered":
            return []
        offered = set(self._state.offered_choice_ids)
        return [choice for choice in node.choices if choice.id in offered]

    def current_view(self) -> DialogueNodeView | None:
        node = self.current_node()
        if node is None or self._graph is None:
            return None
        return DialogueNodeView(
            graph_id=self._graph.id,
            node_id=node.id,
            speaker_id=node.speaker_id,
            text_key=node.text_key,
            phase=self._state.phase,
            choices=[
                ChoiceView(choice_id=choice.id, text_key=choice.text_key, target_node_id=choice.target_node_id)
                for choice in self.visible_choices()
            ],
            portrait_ref=node.portrait_ref,
            animation_trigger=node.animation_trigger,
            auto_advance_delay=node.auto_advance_delay,
            text_speed=node.text_speed,
            has_next=bool(node.next_node_id),
        )

    def has_valid_start(self, graph_id: str) -> bool:
        """Return True when ``start_dialogue(graph_id)`` would resolve a start node.

        Uses the same progress merge and resolver as a real start, then rolls the
        session flags back. Always False while a dialogue is active.
        """
        if self.is_active():
            return False
        graph = self._lookup(graph_id) if graph_id else None
        if graph is None or validate_graph(graph):
            return False
        snapshot = self._flags.snapshot_session()
        try:
            progress = self._load_progress(graph.id)
            if progress is not None:
                self._flags.merge_session(progress.flags)
            return has_valid_start(graph, self._evaluator)
        except Exception:
            logger.exception("Start check for '%s' failed", graph.id)
            return False
        finally:
            self._flags.restore_session(snapshot)

    # Listeners

    def add_listener(self, listener: DialogueListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DialogueListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            logger.warning("Listener %r was not registered", listener)

    # Internals

    def _lookup(self, graph_id: str) -> DialogueGraphDef | None:
        try:
            return self._graphs.get(graph_id)
        except KeyError:
            return None
        except Exception:
            logger.exception("Graph lookup for '%s' failed", graph_id)
            return None

    def _start(self, graph: DialogueGraphDef) -> None:
        if self.is_active():
            self._report(
                "invalid_call",
                f"Cannot start dialogue '{graph.id}': dialogue '{self._state.graph_id}' is active",
            )
            return
        errors = validate_graph(graph)
        if errors:
            self._report("validation", f"Cannot start dialogue '{graph.id}': {'; '.join(errors)}")
            return

        previous_state = self._state.copy()
        previous_flags = self._flags.snapshot_session()
        self._state.reset()
        self._state.graph_id = graph.id
        self._graph = graph

        progress = self._load_progress(graph.id)
        if progress is not None:
            self._state.visited_node_ids.update(progress.visited_node_ids)
            self._flags.merge_session(progress.flags)

        try:
            start_node_id = resolve_start_node(graph, self._evaluator)
        except Exception as exc:
            self._state = previous_state
            self._graph = None
            self._flags.restore_session(previous_flags)
            self._report(
                "resolution",
                f"Cannot start dialogue '{graph.id}': start rule check failed: {exc!r}",
                exc_info=True,
            )
            return
        if start_node_id is None:
            self._state = previous_state
            self._graph = None
            self._flags.restore_session(previous_flags)
            self._report("resolution", f"Cannot start dialogue: no valid start node for '{graph.id}'")
            return

        self._state.phase = "node_active"
        self._session_serial += 1
        session = self._session_serial
        logger.info("Starting dialogue '%s' at node '%s'", graph.id, start_node_id)
        self._emit(DialogueStartedEvent(graph_id=graph.id, start_node_id=start_node_id))
        if self._session_serial != session:
            return
        self._enter_node(start_node_id)

    def _load_progress(self, graph_id: str) -> DialogueProgress | None:
        try:
            return self._progress_store.load(graph_id)
        except ProgressLoadError as exc:
            logger.warning("Ignoring stored progress for '%s': %s", graph_id, exc)
            return None
        except Exception:
            logger.exception("Progress store failed to load '%s'", graph_id)
            return None

    def _enter_node(self, node_id: str) -> None:
        graph = self._graph
        if graph is None:
            return
        session = self._session_serial
        node = graph.get_node(node_id)
        if node is None:
            self._fail(f"Dialogue node '{node_id}' not found in '{graph.id}'", "missing_node", session)
            return

        self._state.phase = "node_active"
        self._state.current_node_id = node.id
        self._state.visited_node_ids.add(node.id)
        self._state.offered_choice_ids = ()

        try:
            conditions_met = all_conditions_met(node.conditions, self._evaluator)
        except Exception as exc:
            self._abort(f"checking conditions of node '{node.id}'", exc, session)
            return
        if not conditions_met:
            self._fail(f"Node '{node.id}' conditions not met, ending dialogue", "condition_failed", session)
            return

        try:
            execute_effects(node.effects, self._executor)
        except Exception as exc:
            self._abort(f"running effects of node '{node.id}'", exc, session)
            return
        if self._session_serial != session:
            return

        try:
            visible = tuple(
                choice.id for choice in node.choices if all_conditions_met(choice.conditions, self._evaluator)
            )
        except Exception as exc:
            self._abort(f"checking choices of node '{node.id}'", exc, session)
            return
        self._state.offered_choice_ids = visible
        self._state.phase = "choices_offered" if visible else "linear_pending"
        self._emit(NodeEnteredEvent(graph_id=graph.id, node_id=node.id))
        if self._session_serial != session:
            return
        if visible:
            self._emit(ChoicesOfferedEvent(node_id=node.id, choice_ids=visible))
        elif self._auto_end_terminal_nodes and not node.next_node_id:
            self._finish("completed")

    def _abort(self, action: str, exc: Exception, session: int) -> None:
        """End the dialogue after a host callback raised while ``action``."""
        self._fail(f"Host callback failed while {action}: {exc!r}", "aborted", session, exc_info=True)

    def _fail(self, message: str, reason: EndReason, session: int, *, exc_info: bool = False) -> None:
        self._report("traversal", message, exc_info=exc_info)
        # A listener may already have ended the session while handling the error.
        if self._session_serial == session:
            self._finish(reason)

    def _finish(self, reason: EndReason) -> None:
        if self._state.phase in ("idle", "ended"):
            return
        graph_id = self._state.graph_id or ""
        self._state.phase = "ended"
        visited = tuple(sorted(self._state.visited_node_ids))
        progress = DialogueProgress(
            visited_node_ids=frozenset(visited),
            flags=dict(self._flags.session_flags),
        )
        try:
            self._progress_store.save(graph_id, progress)
        except ProgressSaveError as exc:
            self._report("persistence", f"Could not save progress for '{graph_id}': {exc}")
        except Exception as exc:
            self._report("persistence", f"Could not save progress for '{graph_id}': {exc!r}", exc_info=True)

        self._state.reset()
        self._graph = None
        self._flags.reset_session()
        self._session_serial += 1
        logger.info("Dialogue '%s' ended (%s)", graph_id, reason)
        self._emit(DialogueEndedEvent(graph_id=graph_id, reason=reason, visited_node_ids=visited))

    def _report(self, kind: ErrorKind, message: str, *, exc_info: bool = False) -> None:
        error = DialogueError(kind=kind, message=message)
        if kind == "invalid_call":
            logger.warning(message)
        else:
            logger.error(message, exc_info=exc_info)
        self.last_error = error
        if self._step_error is None:
            self._step_error = error
        self._emit(DialogueErrorEvent(error=error))

    def _emit(self, event: DialogueEvent) -> None:
        self._step_events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Dialogue listener %r failed on %s", listener, type(event).__name__)

    def _begin_step(self) -> None:
        # Calls made from listeners nest inside the outer step.
        self._outer_steps.append((self._step_events, self._step_error))
        self._step_events = []
        self._step_error = None

    def _end_step(self) -> StepResult:
        result = StepResult(events=self._step_events, node_view=self.current_view(), error=self._step_error)
        outer_events, outer_error = self._outer_steps.pop()
        if self._outer_steps:
            outer_events.extend(result.events)
            if outer_error is None:
                outer_error = result.error
        self._step_events = outer_events
        self._step_error = outer_error
        return result


def create_runtime(
    graphs: GraphSource,
    *,
    flags: FlagStore | None = None,
    progress_store: ProgressStore | None = None,
    inventory: Inventory | None = None,
    quests: QuestLog | None = None,
    custom_predicates: dict[str, CustomPredicate] | None = None,
    unknown_custom_result: bool = True,
    auto_end_terminal_nodes: bool = False,
) -> DialogueRuntime:
    """Wire a runtime with the flag-backed evaluator and executor."""
    flag_store = flags if flags is not None else FlagStore()
    evaluator = FlagConditionEvaluator(
        flag_store,
        inventory=inventory,
        quests=quests,
        custom_predicates=custom_predicates,
        unknown_custom_result=unknown_custom_result,
    )
    executor = FlagEffectExecutor(flag_store, inventory=inventory, quests=quests)
    return DialogueRuntime(
        graphs,
        evaluator,
        executor,
        progress_store if progress_store is not None else InMemoryProgressStore(),
        flag_store,
        auto_end_terminal_nodes=auto_end_terminal_nodes,
    )
