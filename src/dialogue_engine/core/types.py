"""Shared type aliases for the core and domain layers."""
from typing import Literal

DialoguePhase = Literal["idle", "node_active", "choices_offered", "linear_pending", "ended"]
EndReason = Literal["completed", "cancelled", "condition_failed", "missing_node", "aborted"]

__all__ = ["DialoguePhase", "EndReason"]
