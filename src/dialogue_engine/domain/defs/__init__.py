"""Domain definition exports."""

from .dialogue_def import (
    AddItemEffect,
    ChoiceDef,
    ConditionDef,
    CustomCondition,
    CustomEffect,
    DialogueGraphDef,
    EffectDef,
    FlagCondition,
    InventoryCondition,
    NodeDef,
    PlayAnimationEffect,
    QuestCondition,
    RemoveItemEffect,
    SetFlagEffect,
    StartMatch,
    StartRuleDef,
    TriggerEventEffect,
    UpdateQuestEffect,
)

__all__ = [
    "AddItemEffect",
    "ChoiceDef",
    "ConditionDef",
    "CustomCondition",
    "CustomEffect",
    "DialogueGraphDef",
    "EffectDef",
    "FlagCondition",
    "InventoryCondition",
    "NodeDef",
    "PlayAnimationEffect",
    "QuestCondition",
    "RemoveItemEffect",
    "SetFlagEffect",
    "StartMatch",
    "StartRuleDef",
    "TriggerEventEffect",
    "UpdateQuestEffect",
]
