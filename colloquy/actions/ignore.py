"""IGNORE action: stay silent for this turn."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from ..logging_utils import log_deterministic
from ..schemas import HandlerCallback, Memory, State
from .registry import Action

if TYPE_CHECKING:
    from ..runtime import AgentContext


class IgnoreAction(Action):
    """Terminal no-op. Never calls back, so nothing is sent."""

    name = "IGNORE"
    similes = ("STOP_TALKING", "SILENT", "NO_RESPONSE", "NONE")
    description = (
        "Call this action if ignoring the user is the most appropriate response, for example "
        "when the conversation has ended or the message was not meant for the agent."
    )

    async def handler(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
        options: Dict[str, Any],
        callback: HandlerCallback,
    ) -> Optional[bool]:
        log_deterministic(f"Ignoring message {message.id}")
        return True
