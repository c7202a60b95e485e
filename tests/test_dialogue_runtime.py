from __future__ import annotations

import logging
from typing import Sequence

from dialogue_engine.data.repositories import DialogueRepository
from dialogue_engine.domain.defs import (
    AddItemEffect,
    ChoiceDef,
    CustomCondition,
    CustomEffect,
    DialogueGraphDef,
    FlagCondition,
    NodeDef,
    PlayAnimationEffect,
    SetFlagEffect,
    StartRuleDef,
)
from dialogue_engine.domain.flags import FlagStore
from dialogue_engine.domain.inventory import Inventory
from dialogue_engine.services.conditions import FlagConditionEvaluator
from dialogue_engine.services.dialogue_runtime import (
    ChoiceSelectedEvent,
    ChoicesOfferedEvent,
    DialogueEndedEvent,
    DialogueErrorEvent,
    DialogueRuntime,
    DialogueStartedEvent,
    NodeEnteredEvent,
    create_runtime,
)
from dialogue_engine.services.errors import ProgressLoadError, ProgressSaveError
from dialogue_engine.services.progress_store import DialogueProgress, InMemoryProgressStore


def _make_graph(*nodes: NodeDef, graph_id: str = "g1", start_node_id: str = "start", start_rules=()) -> DialogueGraphDef:
    return DialogueGraphDef(
        id=graph_id,
        nodes={node.id: node for node in nodes},
        start_node_id=start_node_id,
        start_rules=tuple(start_rules),
    )


def _make_node(node_id: str, *choices: ChoiceDef, **kwargs) -> NodeDef:
    return NodeDef(id=node_id, speaker_id="npc", text_key=f"text.{node_id}", choices=tuple(choices), **kwargs)


def _make_choice(choice_id: str, target: str, **kwargs) -> ChoiceDef:
    return ChoiceDef(id=choice_id, text_key=f"choice.{choice_id}", target_node_id=target, **kwargs)


def _make_intro_graph() -> DialogueGraphDef:
    return _make_graph(
        _make_node(
            "start",
            _make_choice("A", "nodeA"),
            _make_choice("B", "nodeB", conditions=(FlagCondition("metOnce", True),)),
        ),
        _make_node("nodeA"),
        _make_node("nodeB"),
        graph_id="intro",
    )


def _make_runtime(*graphs: DialogueGraphDef, flags: FlagStore | None = None, store=None, **kwargs):
    flags = flags if flags is not None else FlagStore()
    store = store if store is not None else InMemoryProgressStore()
    runtime = create_runtime(
        DialogueRepository.from_graphs(graphs), flags=flags, progress_store=store, **kwargs
    )
    return runtime, flags, store


class _RecordingExecutor:
    def __init__(self, flags: FlagStore) -> None:
        self.flags = flags
        self.calls: list[tuple[str, object]] = []

    def set_flag(self, name: str, value: bool) -> None:
        self.calls.append(("set_flag", name))
        self.flags.set_session(name, value)

    def add_item(self, item_id: str, quantity: int) -> None:
        self.calls.append(("add_item", item_id))

    def remove_item(self, item_id: str, quantity: int) -> None:
        self.calls.append(("remove_item", item_id))

    def update_quest(self, quest_id: str, state: str) -> None:
        self.calls.append(("update_quest", quest_id))

    def play_animation(self, name: str) -> None:
        self.calls.append(("play_animation", name))

    def trigger_event(self, name: str) -> None:
        self.calls.append(("trigger_event", name))

    def execute_custom(self, kind: str, params: Sequence[str]) -> None:
        self.calls.append(("custom", kind))


class _FailingSaveStore(InMemoryProgressStore):
    def save(self, graph_id: str, progress: DialogueProgress) -> None:
        raise ProgressSaveError("disk full")


class _CorruptLoadStore(InMemoryProgressStore):
    def load(self, graph_id: str) -> DialogueProgress | None:
        raise ProgressLoadError("bad payload")


def test_intro_scenario_shows_unlocked_choices_and_persists_visited() -> None:
    runtime, flags, store = _make_runtime(_make_intro_graph())

    result = runtime.start_dialogue("intro")

    assert result.ok
    assert runtime.is_active()
    assert runtime.phase == "choices_offered"
    assert [choice.id for choice in runtime.visible_choices()] == ["A"]
    assert [choice.choice_id for choice in result.node_view.choices] == ["A"]

    runtime.select_choice("A")
    assert runtime.current_node().id == "nodeA"
    assert runtime.phase == "linear_pending"
    assert runtime.visible_choices() == []

    result = runtime.continue_dialogue()

    assert result.ok
    assert not runtime.is_active()
    assert runtime.current_node() is None
    ended = [event for event in result.events if isinstance(event, DialogueEndedEvent)]
    assert ended[0].reason == "completed"
    assert store.load("intro").visited_node_ids == {"start", "nodeA"}


def test_auto_end_terminal_nodes_ends_on_entry() -> None:
    runtime, _, store = _make_runtime(_make_intro_graph(), auto_end_terminal_nodes=True)
    runtime.start_dialogue("intro")

    result = runtime.select_choice("A")

    assert not runtime.is_active()
    assert any(isinstance(event, DialogueEndedEvent) for event in result.events)
    assert store.load("intro").visited_node_ids == {"start", "nodeA"}


def test_start_emits_events_in_order() -> None:
    runtime, _, _ = _make_runtime(_make_intro_graph())
    seen = []
    runtime.add_listener(seen.append)

    result = runtime.start_dialogue("intro")

    assert [type(event) for event in result.events] == [
        DialogueStartedEvent,
        NodeEnteredEvent,
        ChoicesOfferedEvent,
    ]
    assert seen == result.events
    assert result.events[0].start_node_id == "start"
    assert result.events[2].choice_ids == ("A",)


def test_invisible_choice_cannot_be_selected() -> None:
    graph = _make_graph(
        _make_node(
            "n1",
            _make_choice("c1", "a"),
            _make_choice("c2", "b", conditions=(FlagCondition("met", True),)),
        ),
        _make_node("a"),
        _make_node("b"),
        start_node_id="n1",
    )
    runtime, _, _ = _make_runtime(graph)
    runtime.start_dialogue("g1")

    assert [choice.id for choice in runtime.visible_choices()] == ["c1"]

    rejected = runtime.select_choice("c2")
    assert rejected.error is not None
    assert rejected.error.kind == "invalid_call"
    assert runtime.last_error == rejected.error
    assert runtime.current_node().id == "n1"
    assert runtime.phase == "choices_offered"

    accepted = runtime.select_choice("c1")
    assert accepted.ok
    assert runtime.current_node().id == "a"
    assert isinstance(accepted.events[0], ChoiceSelectedEvent)


def test_unknown_choice_id_is_rejected() -> None:
    runtime, _, _ = _make_runtime(_make_intro_graph())
    runtime.start_dialogue("intro")

    result = runtime.select_choice("missing")

    assert result.error.kind == "invalid_call"
    assert runtime.current_node().id == "start"


def test_continue_and_select_rejected_in_wrong_phase() -> None:
    runtime, _, _ = _make_runtime(_make_intro_graph())

    assert runtime.continue_dialogue().error.kind == "invalid_call"
    assert runtime.select_choice("A").error.kind == "invalid_call"

    runtime.start_dialogue("intro")
    assert runtime.continue_dialogue().error.kind == "invalid_call"
    assert runtime.phase == "choices_offered"

    runtime.select_choice("A")
    assert runtime.select_choice("A").error.kind == "invalid_call"
    assert runtime.phase == "linear_pending"


def test_linear_next_advances_to_next_node() -> None:
    graph = _make_graph(_make_node("start", next_node_id="middle"), _make_node("middle"))
    runtime, _, _ = _make_runtime(graph)
    runtime.start_dialogue("g1")

    result = runtime.continue_dialogue()

    assert result.node_view.node_id == "middle"
    assert result.node_view.has_next is False
    assert runtime.visited_node_ids == {"start", "middle"}


def test_gated_node_aborts_dialogue() -> None:
    graph = _make_graph(
        _make_node("start", _make_choice("open", "gated")),
        _make_node("gated", conditions=(FlagCondition("hasKey", True),)),
    )
    runtime, _, store = _make_runtime(graph)
    runtime.start_dialogue("g1")

    result = runtime.select_choice("open")

    assert not runtime.is_active()
    assert result.error.kind == "traversal"
    ended = [event for event in result.events if isinstance(event, DialogueEndedEvent)]
    assert ended[0].reason == "condition_failed"
    assert store.load("g1").visited_node_ids == {"start", "gated"}


def test_gated_start_node_ends_immediately() -> None:
    graph = _make_graph(_make_node("start", conditions=(FlagCondition("hasKey", True),)))
    runtime, _, _ = _make_runtime(graph)

    result = runtime.start_dialogue("g1")

    assert result.error.kind == "traversal"
    assert not runtime.is_active()


def test_node_effects_rerun_on_reentry() -> None:
    graph = _make_graph(
        _make_node(
            "start",
            _make_choice("loop", "start"),
            _make_choice("leave", "end"),
            effects=(PlayAnimationEffect("wave"),),
        ),
        _make_node("end"),
    )
    flags = FlagStore()
    executor = _RecordingExecutor(flags)
    runtime = DialogueRuntime(
        DialogueRepository.from_graphs([graph]),
        FlagConditionEvaluator(flags),
        executor,
        InMemoryProgressStore(),
        flags,
    )

    runtime.start_dialogue("g1")
    assert executor.calls == [("play_animation", "wave")]

    runtime.select_choice("loop")
    assert executor.calls == [("play_animation", "wave"), ("play_animation", "wave")]


def test_choice_effects_run_before_target_entry() -> None:
    graph = _make_graph(
        _make_node("start", _make_choice("go", "next", effects=(SetFlagEffect("picked", True),))),
        _make_node("next", conditions=(FlagCondition("picked", True),)),
    )
    runtime, flags, _ = _make_runtime(graph)
    runtime.start_dialogue("g1")

    runtime.select_choice("go")

    assert runtime.current_node().id == "next"
    assert flags.get("picked") is True


def test_end_persists_and_restart_replays_from_start() -> None:
    graph = _make_graph(
        _make_node("start", _make_choice("go", "a")),
        _make_node("a", effects=(SetFlagEffect("x", True),)),
    )
    runtime, flags, store = _make_runtime(graph)
    runtime.start_dialogue("g1")
    runtime.select_choice("go")

    runtime.end_dialogue()

    assert store.load("g1") == DialogueProgress(visited_node_ids=frozenset({"start", "a"}), flags={"x": True})
    assert flags.session_flags == {}

    result = runtime.start_dialogue("g1")

    assert result.node_view.node_id == "start"
    assert runtime.visited_node_ids == {"start", "a"}
    assert flags.get("x") is True


def test_end_dialogue_is_idempotent() -> None:
    runtime, _, store = _make_runtime(_make_intro_graph())
    runtime.start_dialogue("intro")

    first = runtime.end_dialogue()
    second = runtime.end_dialogue()

    assert store.save_count == 1
    assert first.events[-1].reason == "cancelled"
    assert second.ok
    assert second.events == []
    assert not runtime.is_active()


def test_failed_start_leaves_state_untouched() -> None:
    graph = _make_graph(
        _make_node("start"),
        start_node_id="",
        start_rules=[StartRuleDef("start", conditions=(FlagCondition("never", True),))],
    )
    store = InMemoryProgressStore()
    store.save("g1", DialogueProgress(visited_node_ids=frozenset({"start"}), flags={"y": True}))
    flags = FlagStore()
    flags.set_session("pre", True)
    runtime, _, _ = _make_runtime(graph, flags=flags, store=store)

    result = runtime.start_dialogue("g1")

    assert result.error.kind == "resolution"
    assert not runtime.is_active()
    assert runtime.current_graph_id is None
    assert runtime.visited_node_ids == frozenset()
    assert flags.session_flags == {"pre": True}
    assert isinstance(result.events[-1], DialogueErrorEvent)


def test_has_valid_start_uses_persisted_flags() -> None:
    graph = _make_graph(
        _make_node("start"),
        _make_node("nodeB"),
        start_node_id="",
        start_rules=[StartRuleDef("nodeB", conditions=(FlagCondition("seenIntro", True),))],
    )
    runtime, flags, store = _make_runtime(graph)

    assert runtime.has_valid_start("g1") is False
    assert runtime.start_dialogue("g1").error.kind == "resolution"

    store.save("g1", DialogueProgress(flags={"seenIntro": True}))

    assert runtime.has_valid_start("g1") is True
    assert flags.session_flags == {}
    result = runtime.start_dialogue("g1")
    assert result.ok
    assert result.node_view.node_id == "nodeB"


def test_has_valid_start_false_for_unknown_or_invalid_graph() -> None:
    broken = _make_graph(_make_node("start", _make_choice("go", "nowhere")), graph_id="broken")
    runtime, _, _ = _make_runtime(broken)

    assert runtime.has_valid_start("missing") is False
    assert runtime.has_valid_start("") is False
    assert runtime.has_valid_start("broken") is False


def test_start_unknown_graph_reports_invalid_call() -> None:
    runtime, _, _ = _make_runtime(_make_intro_graph())

    result = runtime.start_dialogue("missing")

    assert result.error.kind == "invalid_call"
    assert not runtime.is_active()


def test_start_invalid_graph_reports_validation(caplog) -> None:
    broken = _make_graph(_make_node("start", _make_choice("go", "nowhere")))
    runtime, _, _ = _make_runtime(broken)

    with caplog.at_level(logging.ERROR):
        result = runtime.start_dialogue("g1")

    assert result.error.kind == "validation"
    assert "nowhere" in result.error.message
    assert not runtime.is_active()
    assert "nowhere" in caplog.text


def test_start_while_active_is_rejected() -> None:
    other = _make_graph(_make_node("start"), graph_id="other")
    runtime, _, _ = _make_runtime(_make_intro_graph(), other)
    runtime.start_dialogue("intro")

    result = runtime.start_dialogue("other")

    assert result.error.kind == "invalid_call"
    assert runtime.current_graph_id == "intro"
    assert runtime.current_node().id == "start"


def test_start_graph_accepts_graph_object() -> None:
    runtime, _, store = _make_runtime()
    graph = _make_intro_graph()

    result = runtime.start_graph(graph)

    assert result.ok
    assert runtime.current_graph_id == "intro"
    runtime.end_dialogue()
    assert store.load("intro") is not None


def test_dangling_reference_ends_with_missing_node() -> None:
    nodes = {
        "start": _make_node("start", _make_choice("go", "gone")),
        "gone": _make_node("gone"),
    }
    graph = DialogueGraphDef(id="g1", nodes=nodes, start_node_id="start")
    runtime, _, _ = _make_runtime(graph)
    runtime.start_dialogue("g1")
    del nodes["gone"]

    result = runtime.select_choice("go")

    assert result.error.kind == "traversal"
    assert not runtime.is_active()
    assert result.events[-1].reason == "missing_node"


def test_save_failure_reports_persistence_error_and_ends() -> None:
    runtime, _, _ = _make_runtime(_make_intro_graph(), store=_FailingSaveStore())
    runtime.start_dialogue("intro")

    result = runtime.end_dialogue()

    assert result.error.kind == "persistence"
    assert not runtime.is_active()
    assert isinstance(result.events[-1], DialogueEndedEvent)


def test_corrupt_progress_is_ignored(caplog) -> None:
    runtime, _, _ = _make_runtime(_make_intro_graph(), store=_CorruptLoadStore())

    with caplog.at_level(logging.WARNING):
        result = runtime.start_dialogue("intro")

    assert result.ok
    assert "bad payload" in caplog.text


def test_failing_listener_is_logged_and_others_still_run(caplog) -> None:
    runtime, _, _ = _make_runtime(_make_intro_graph())
    received = []

    def _broken(event) -> None:
        raise RuntimeError("boom")

    runtime.add_listener(_broken)
    runtime.add_listener(received.append)

    with caplog.at_level(logging.ERROR):
        result = runtime.start_dialogue("intro")

    assert result.ok
    assert len(received) == 3
    assert "boom" in caplog.text

    runtime.remove_listener(received.append)
    runtime.end_dialogue()
    assert len(received) == 3


def test_global_flag_effect_survives_end() -> None:
    graph = _make_graph(
        _make_node("start", effects=(CustomEffect("set_global_flag", ("questDone",)), SetFlagEffect("local"))),
    )
    runtime, flags, _ = _make_runtime(graph)
    runtime.start_dialogue("g1")
    runtime.end_dialogue()

    assert flags.get("questDone") is True
    assert flags.get("local") is False


def test_unknown_custom_condition_policy() -> None:
    graph = _make_graph(
        _make_node(
            "start",
            _make_choice("odd", "end", conditions=(CustomCondition("mystery"),)),
            _make_choice("plain", "end"),
        ),
        _make_node("end"),
    )
    allow, _, _ = _make_runtime(graph)
    deny, _, _ = _make_runtime(graph, unknown_custom_result=False)

    allow.start_dialogue("g1")
    deny.start_dialogue("g1")

    assert [choice.id for choice in allow.visible_choices()] == ["odd", "plain"]
    assert [choice.id for choice in deny.visible_choices()] == ["plain"]


def test_node_view_carries_presentation_fields() -> None:
    graph = _make_graph(
        _make_node(
            "start",
            portrait_ref="portraits/elder",
            animation_trigger="wave",
            auto_advance_delay=1.5,
            text_speed=45.0,
        )
    )
    runtime, _, _ = _make_runtime(graph)

    view = runtime.start_dialogue("g1").node_view

    assert view.graph_id == "g1"
    assert view.speaker_id == "npc"
    assert view.text_key == "text.start"
    assert view.portrait_ref == "portraits/elder"
    assert view.animation_trigger == "wave"
    assert view.auto_advance_delay == 1.5
    assert view.text_speed == 45.0
    assert view.phase == "linear_pending"
    assert view.choices == []


class _BrokenInventory(Inventory):
    def add_item(self, item_id: str, quantity: int = 1) -> None:
        raise RuntimeError("inventory offline")


class _RecordingStore(InMemoryProgressStore):
    def __init__(self) -> None:
        super().__init__()
        self.saved_ids: list[str] = []

    def save(self, graph_id: str, progress: DialogueProgress) -> None:
        self.saved_ids.append(graph_id)
        super().save(graph_id, progress)


def _raise_value_error(params):
    raise ValueError("predicate exploded")


def test_raising_predicate_aborts_dialogue(caplog) -> None:
    graph = _make_graph(
        _make_node("start", _make_choice("go", "gated")),
        _make_node("gated", conditions=(CustomCondition("weather", ("rain",)),)),
    )
    runtime, _, store = _make_runtime(graph, custom_predicates={"weather": _raise_value_error})
    runtime.start_dialogue("g1")

    with caplog.at_level(logging.ERROR):
        result = runtime.select_choice("go")

    assert result.error.kind == "traversal"
    assert "predicate exploded" in result.error.message
    assert not runtime.is_active()
    assert runtime.phase == "idle"
    ended = [event for event in result.events if isinstance(event, DialogueEndedEvent)]
    assert ended[-1].reason == "aborted"
    assert store.load("g1").visited_node_ids == {"start", "gated"}
    assert any(record.exc_info for record in caplog.records)


def test_raising_inventory_host_aborts_choice() -> None:
    graph = _make_graph(
        _make_node("start", _make_choice("buy", "after", effects=(AddItemEffect("gold", 5),))),
        _make_node("after"),
    )
    runtime, _, _ = _make_runtime(graph, inventory=_BrokenInventory())
    runtime.start_dialogue("g1")

    result = runtime.select_choice("buy")

    assert result.error.kind == "traversal"
    assert not runtime.is_active()
    assert [event.reason for event in result.events if isinstance(event, DialogueEndedEvent)] == ["aborted"]
    assert not any(isinstance(event, ChoiceSelectedEvent) for event in result.events)
    assert runtime.start_dialogue("g1").ok


def test_raising_start_rule_predicate_fails_start() -> None:
    graph = _make_graph(
        _make_node("start"),
        _make_node("other"),
        start_rules=(StartRuleDef(target_node_id="other", conditions=(CustomCondition("weather"),)),),
    )
    runtime, _, store = _make_runtime(graph, custom_predicates={"weather": _raise_value_error})

    result = runtime.start_dialogue("g1")

    assert result.error.kind == "resolution"
    assert not runtime.is_active()
    assert store.save_count == 0


def test_listener_ending_on_start_stops_entry() -> None:
    runtime, _, store = _make_runtime(_make_intro_graph())

    def end_on_start(event) -> None:
        if isinstance(event, DialogueStartedEvent):
            runtime.end_dialogue()

    runtime.add_listener(end_on_start)
    result = runtime.start_dialogue("intro")

    assert result.ok
    assert not runtime.is_active()
    assert store.save_count == 1
    assert not any(isinstance(event, NodeEnteredEvent) for event in result.events)
    assert [event.reason for event in result.events if isinstance(event, DialogueEndedEvent)] == ["cancelled"]


def test_listener_ending_on_node_entry_saves_once_with_auto_end() -> None:
    store = _RecordingStore()
    runtime, _, _ = _make_runtime(_make_graph(_make_node("start")), store=store, auto_end_terminal_nodes=True)
    ended: list[DialogueEndedEvent] = []

    def end_on_entry(event) -> None:
        if isinstance(event, NodeEnteredEvent):
            runtime.end_dialogue()
        elif isinstance(event, DialogueEndedEvent):
            ended.append(event)

    runtime.add_listener(end_on_entry)
    result = runtime.start_dialogue("g1")

    assert result.ok
    assert store.saved_ids == ["g1"]
    assert [event.reason for event in ended] == ["cancelled"]
    assert not runtime.is_active()


def test_has_valid_start_false_while_another_dialogue_runs() -> None:
    other = _make_graph(_make_node("start"), graph_id="other")
    runtime, _, _ = _make_runtime(_make_intro_graph(), other)
    assert runtime.has_valid_start("other")

    runtime.start_dialogue("intro")

    assert not runtime.has_valid_start("other")
    assert not runtime.has_valid_start("intro")
    runtime.end_dialogue()
    assert runtime.has_valid_start("other")
