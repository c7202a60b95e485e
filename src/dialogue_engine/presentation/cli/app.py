"""Console front end: list, validate and play dialogue graphs."""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

from dialogue_engine.core.logging import get_logger, setup_logging
from dialogue_engine.data.repositories import DialogueRepository
from dialogue_engine.domain.flags import FlagStore
from dialogue_engine.domain.inventory import Inventory
from dialogue_engine.domain.quest_log import QuestLog
from dialogue_engine.presentation.cli.config import EngineConfig, get_progress_dir, load_config
from dialogue_engine.presentation.cli.render import (
    debug_enabled,
    render_bullet_lines,
    render_choices,
    render_heading,
    render_node,
    render_node_details,
)
from dialogue_engine.services.dialogue_runtime import (
    DialogueEndedEvent,
    DialogueErrorEvent,
    DialogueEvent,
    DialogueRuntime,
    create_runtime,
)
from dialogue_engine.services.errors import ProgressLoadError, ProgressSaveError
from dialogue_engine.services.graph_validator import collect_issues, format_issue
from dialogue_engine.services.progress_store import JsonGlobalFlagStore, JsonProgressStore

logger = get_logger(__name__)

_QUIT = "q"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dialogue-engine", description="Run branching dialogue graphs.")
    parser.add_argument("--config", type=Path, default=None, help="Path to a config JSON file.")
    parser.add_argument("--data-dir", type=Path, default=None, help="Directory of dialogue JSON files.")
    parser.add_argument("--progress-dir", type=Path, default=None, help="Directory for saved progress.")
    parser.add_argument("--log-level", default=None, help="Override the configured log level.")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("list", help="List available dialogues.")
    subparsers.add_parser("validate", help="Report problems in every dialogue.")
    play = subparsers.add_parser("play", help="Play a dialogue interactively.")
    play.add_argument("graph_id", help="Dialogue id to start.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Start the CLI and return the process exit code."""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    setup_logging(args.log_level or config.log_level)
    repo = DialogueRepository(args.data_dir or config.dialogues_dir)
    if args.command == "list":
        return _list_dialogues(repo)
    if args.command == "validate":
        return _validate_dialogues(repo)
    progress_dir = args.progress_dir or get_progress_dir(config)
    return _play(repo, args.graph_id, config, progress_dir)


def _list_dialogues(repo: DialogueRepository) -> int:
    graphs = repo.all()
    if not graphs:
        print("No dialogues found.")
        return 0
    render_heading("Dialogues")
    for graph in sorted(graphs, key=lambda item: item.id):
        print(f"{graph.id}: {graph.display_name}")
    return 0


def _validate_dialogues(repo: DialogueRepository) -> int:
    error_count = 0
    for graph in sorted(repo.all(), key=lambda item: item.id):
        issues = collect_issues(graph)
        if not issues:
            print(f"{graph.id}: OK")
            continue
        print(f"{graph.id}:")
        render_bullet_lines(format_issue(issue) for issue in issues)
        error_count += sum(1 for issue in issues if issue.severity == "ERROR")
    if error_count:
        print(f"{error_count} error(s) found.")
        return 1
    return 0


def _build_runtime(repo: DialogueRepository, config: EngineConfig, progress_dir: Path) -> DialogueRuntime:
    global_store = JsonGlobalFlagStore.in_dir(progress_dir)
    runtime = create_runtime(
        repo,
        flags=FlagStore(_load_global_flags(global_store)),
        progress_store=JsonProgressStore(progress_dir),
        inventory=Inventory(),
        quests=QuestLog(),
        unknown_custom_result=config.unknown_custom_result,
        auto_end_terminal_nodes=config.auto_end_terminal_nodes,
    )

    def save_global_flags(event: DialogueEvent) -> None:
        if isinstance(event, DialogueEndedEvent):
            _save_global_flags(global_store, runtime.flags.global_flags)

    runtime.add_listener(save_global_flags)
    return runtime


def _load_global_flags(store: JsonGlobalFlagStore) -> Dict[str, bool]:
    try:
        return store.load()
    except ProgressLoadError as exc:
        logger.warning("Ignoring global flags in %s: %s", store.path, exc)
        return {}


def _save_global_flags(store: JsonGlobalFlagStore, flags: Mapping[str, bool]) -> None:
    try:
        store.save(flags)
    except ProgressSaveError as exc:
        logger.error("Could not save global flags: %s", exc)
        print(f"Error: {exc}")


def _play(repo: DialogueRepository, graph_id: str, config: EngineConfig, progress_dir: Path) -> int:
    runtime = _build_runtime(repo, config, progress_dir)
    result = runtime.start_dialogue(graph_id)
    if result.error is not None:
        print(f"Error: {result.error.message}")
        return 1
    render_heading(repo.get(graph_id).display_name)
    while runtime.is_active():
        view = runtime.current_view()
        if view is None:
            break
        print()
        render_node(view)
        node = runtime.current_node()
        if debug_enabled() and node is not None:
            render_node_details(node)
        if view.choices:
            render_choices([choice.text_key for choice in view.choices])
            index = _prompt_choice(len(view.choices))
            if index is None:
                result = runtime.end_dialogue()
            else:
                result = runtime.select_choice(view.choices[index].choice_id)
        else:
            raw = _read_input("[Enter] to continue, q to quit: ")
            if raw is None or raw.lower() == _QUIT:
                result = runtime.end_dialogue()
            else:
                result = runtime.continue_dialogue()
        _render_events(result.events)
    return 0


def _prompt_choice(choice_count: int) -> int | None:
    while True:
        raw = _read_input("Select an option (q to quit): ")
        if raw is None or raw.lower() == _QUIT:
            return None
        try:
            index = int(raw) - 1
        except ValueError:
            print("Please enter a number.")
            continue
        if 0 <= index < choice_count:
            return index
        print(f"Please enter a value between 1 and {choice_count}.")


def _read_input(prompt: str) -> str | None:
    try:
        return input(prompt).strip()
    except EOFError:
        return None


def _render_events(events: List[DialogueEvent]) -> None:
    for event in events:
        if isinstance(event, DialogueErrorEvent):
            print(f"Error: {event.error.message}")
        elif isinstance(event, DialogueEndedEvent):
            print(f"\nDialogue ended ({event.reason}).")
