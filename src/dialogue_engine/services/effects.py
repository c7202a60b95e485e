"""Effect execution contract and the default flag-backed executor."""
from __future__ import annotations

from typing import Callable, Dict, Protocol, Sequence

from dialogue_engine.core.logging import get_logger
from dialogue_engine.domain.defs import (
    AddItemEffect,
    CustomEffect,
    EffectDef,
    PlayAnimationEffect,
    RemoveItemEffect,
    SetFlagEffect,
    TriggerEventEffect,
    UpdateQuestEffect,
)
from dialogue_engine.domain.flags import FlagStore

logger = get_logger(__name__)

SET_GLOBAL_FLAG = "set_global_flag"

NamedHandler = Callable[[str], None]
CustomHandler = Callable[[Sequence[str]], None]


class EffectExecutor(Protocol):
    """Performs the mutations requested by nodes and choices."""

    def set_flag(self, name: str, value: bool) -> None: ...

    def add_item(self, item_id: str, quantity: int) -> None: ...

    def remove_item(self, item_id: str, quantity: int) -> None: ...

    def update_quest(self, quest_id: str, state: str) -> None: ...

    def play_animation(self, name: str) -> None: ...

    def trigger_event(self, name: str) -> None: ...

    def execute_custom(self, kind: str, params: Sequence[str]) -> None: ...


class InventoryHost(Protocol):
    def add_item(self, item_id: str, quantity: int = 1) -> None: ...

    def remove_item(self, item_id: str, quantity: int = 1) -> bool: ...


class QuestHost(Protocol):
    def set_state(self, quest_id: str, state: str) -> None: ...


def execute_effect(effect: EffectDef, executor: EffectExecutor) -> None:
    """Dispatch one effect to the matching executor method."""
    if isinstance(effect, SetFlagEffect):
        executor.set_flag(effect.name, effect.value)
    elif isinstance(effect, AddItemEffect):
        executor.add_item(effect.item_id, effect.quantity)
    elif isinstance(effect, RemoveItemEffect):
        executor.remove_item(effect.item_id, effect.quantity)
    elif isinstance(effect, UpdateQuestEffect):
        executor.update_quest(effect.quest_id, effect.state)
    elif isinstance(effect, PlayAnimationEffect):
        executor.play_animation(effect.name)
    elif isinstance(effect, TriggerEventEffect):
        executor.trigger_event(effect.name)
    elif isinstance(effect, CustomEffect):
        executor.execute_custom(effect.kind, effect.params)
    else:
        logger.warning("Unknown effect type %r, ignoring", type(effect).__name__)


def execute_effects(effects: Sequence[EffectDef], executor: EffectExecutor) -> None:
    for effect in effects:
        execute_effect(effect, executor)


class FlagEffectExecutor:
    """Default executor.

    ``set_flag`` writes the session scope of the FlagStore; the custom kind
    ``set_global_flag`` (params: name, optional "true"/"false") writes the
    global scope. Inventory and quest changes go to the optional hosts.
    Animations, events and other custom kinds are forwarded to registered
    handlers. Handler failures are logged and never propagate.
    """

    def __init__(
        self,
        flags: FlagStore,
        *,
        inventory: InventoryHost | None = None,
        quests: QuestHost | None = None,
        animation_handler: NamedHandler | None = None,
        event_handlers: Dict[str, NamedHandler] | None = None,
        custom_handlers: Dict[str, CustomHandler] | None = None,
    ) -> None:
        self._flags = flags
        self._inventory = inventory
        self._quests = quests
        self._animation_handler = animation_handler
        self._event_handlers: Dict[str, NamedHandler] = dict(event_handlers or {})
        self._custom_handlers: Dict[str, CustomHandler] = dict(custom_handlers or {})

    def on_event(self, name: str, handler: NamedHandler) -> None:
        self._event_handlers[name] = handler

    def on_custom(self, kind: str, handler: CustomHandler) -> None:
        self._custom_handlers[kind] = handler

    def set_flag(self, name: str, value: bool) -> None:
        self._flags.set_session(name, value)

    def add_item(self, item_id: str, quantity: int) -> None:
        if self._inventory is None:
            logger.warning("Cannot add item '%s': no inventory host", item_id)
            return
        self._inventory.add_item(item_id, quantity)

    def remove_item(self, item_id: str, quantity: int) -> None:
        if self._inventory is None:
            logger.warning("Cannot remove item '%s': no inventory host", item_id)
            return
        if not self._inventory.remove_item(item_id, quantity):
            logger.warning("Could not remove %d of item '%s'", quantity, item_id)

    def update_quest(self, quest_id: str, state: str) -> None:
        if self._quests is None:
            logger.warning("Cannot update quest '%s': no quest host", quest_id)
            return
        self._quests.set_state(quest_id, state)

    def play_animation(self, name: str) -> None:
        if self._animation_handler is None:
            logger.debug("Animation '%s' requested with no handler", name)
            return
        self._call(self._animation_handler, name, f"animation '{name}'")

    def trigger_event(self, name: str) -> None:
        handler = self._event_handlers.get(name)
        if handler is None:
            logger.debug("Event '%s' triggered with no handler", name)
            return
        self._call(handler, name, f"event '{name}'")

    def execute_custom(self, kind: str, params: Sequence[str]) -> None:
        if kind == SET_GLOBAL_FLAG:
            self._set_global_flag(params)
            return
        handler = self._custom_handlers.get(kind)
        if handler is None:
            logger.warning("Unknown custom effect '%s', ignoring", kind)
            return
        self._call(handler, tuple(params), f"custom effect '{kind}'")

    def _set_global_flag(self, params: Sequence[str]) -> None:
        if not params or not params[0]:
            logger.warning("%s requires a flag name", SET_GLOBAL_FLAG)
            return
        value = True
        if len(params) > 1:
            value = params[1].strip().lower() not in ("false", "0", "no")
        self._flags.set_global(params[0], value)

    @staticmethod
    def _call(handler: Callable[[object], None], argument: object, label: str) -> None:
        try:
            handler(argument)
        except Exception:
            logger.exception("Handler for %s failed", label)
