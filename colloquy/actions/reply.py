"""REPLY action: the canonical default response."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..errors import StructuredOutputError
from ..llm_utils import parse_json_object
from ..logging_utils import log_warning
from ..model_client import ModelType
from ..prompts import DEFAULT_PROMPTS
from ..renderers import compose_prompt_from_state
from ..schemas import Content, HandlerCallback, Memory, State
from .registry import Action

if TYPE_CHECKING:
    from ..runtime import AgentContext


class ReplyAction(Action):
    """Replies to the current conversation with a generated message.

    Used at the start of a chain as an acknowledgement or at the end as the
    final response. When the decision step already wrote the reply text it
    is sent as-is; otherwise the large model writes it from a fresh state
    that always includes RECENT_MESSAGES.
    """

    name = "REPLY"
    similes = ("GREET", "REPLY_TO_MESSAGE", "SEND_REPLY", "RESPOND", "RESPONSE")
    description = (
        "Replies to the current conversation with the text from the generated message. "
        "Default if the agent is responding with a message and no other action. Use REPLY "
        "at the beginning of a chain of actions as an acknowledgement, and at the end of a "
        "chain of actions as a final response."
    )

    async def handler(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
        options: Dict[str, Any],
        callback: HandlerCallback,
    ) -> Optional[bool]:
        thought = options.get("thought") or None
        text = (options.get("text") or "").strip()

        if not text:
            thought, text = await self._generate(context, message, options)

        if not text:
            log_warning("REPLY produced no text; nothing sent")
            return False

        await callback(Content(thought=thought, text=text, actions=[self.name]))
        return True

    async def _generate(
        self,
        context: "AgentContext",
        message: Memory,
        options: Dict[str, Any],
    ) -> Tuple[Optional[str], str]:
        requested: List[str] = list(message.content.providers)
        requested.extend(options.get("providers") or [])
        requested.append("RECENT_MESSAGES")
        # De-duplicate while keeping order
        requested = list(dict.fromkeys(requested))

        state = await context.compose_state(message, requested)
        template = DEFAULT_PROMPTS.resolve("reply", context.character.templates)
        prompt = compose_prompt_from_state(
            state,
            template,
            extra={"actionNames": ", ".join(context.actions.names())},
        )

        try:
            response = await context.use_model(ModelType.OBJECT_LARGE, prompt=prompt)
        except StructuredOutputError as exc:
            log_warning(f"Reply was not valid JSON; sending raw text: {exc.reason}")
            return None, exc.raw_text.strip()

        parsed = parse_json_object(response)
        if parsed is None:
            return None, str(response or "").strip()

        body = parsed.get("message") or parsed.get("text") or ""
        return parsed.get("thought"), str(body).strip()
