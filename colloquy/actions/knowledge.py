"""KNOWLEDGE_BASE action: answer a question from stored documents."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from ..model_client import ModelType
from ..prompts import DEFAULT_PROMPTS
from ..renderers import compose_prompt_from_state
from ..schemas import Content, HandlerCallback, Memory, State
from .registry import Action

if TYPE_CHECKING:
    from ..runtime import AgentContext


NOTHING_FOUND_TEXT = "I couldn't find anything about that in my knowledge base."


class KnowledgeBaseAction(Action):
    name = "KNOWLEDGE_BASE"
    similes = (
        "KNOWLEDGE",
        "DOCUMENT_DATABASE",
        "KNOWLEDGEBASE",
        "KNOWLEDGE_BASE_ACTION",
        "KNOWLEDGE_BASE_RESPONSE",
        "KNOWLEDGE_BASE_SEARCH",
        "KNOWLEDGE_BASE_SEARCH_RESPONSE",
    )
    description = "Search the agent's knowledge base and document database for relevant information."

    async def handler(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
        options: Dict[str, Any],
        callback: HandlerCallback,
    ) -> Optional[bool]:
        knowledge_state = await context.compose_state(message, ["KNOWLEDGE"], only_requested=True)
        knowledge = knowledge_state.values.get("knowledge", "")
        if not knowledge:
            await callback(Content(text=NOTHING_FOUND_TEXT, actions=[self.name]))
            return False

        template = DEFAULT_PROMPTS.resolve("knowledge_answer", context.character.templates)
        prompt = compose_prompt_from_state(
            knowledge_state,
            template,
            extra={
                "agentName": context.character.name,
                "messageText": message.content.text,
            },
        )
        answer = await context.use_model(ModelType.TEXT_LARGE, prompt=prompt)
        await callback(Content(text=str(answer).strip(), actions=[self.name]))
        return True
