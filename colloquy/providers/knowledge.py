"""KNOWLEDGE provider: retrieval-augmented context from stored documents.

Pipeline for one message:

1. Ask the small text model to rewrite the message into a retrieval query
   (``{"queryString": "..."}``). Any malformed answer or failed call falls
   back to the literal message text; retrieval degrades, it never fails.
2. Embed the query.
3. Similarity-search the ``documents`` table for this agent.
4. Render hits as a ``# Knowledge`` bulleted list. No hits means an empty
   contribution.

The provider is dynamic: it only runs when a turn names it explicitly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from ..errors import ModelInvocationError
from ..llm_utils import parse_json_object
from ..logging_utils import log_deterministic, log_llm, log_warning
from ..model_client import ModelType
from ..prompts import DEFAULT_PROMPTS
from ..renderers import add_header, render_template
from ..schemas import Memory, ProviderResult, State
from .registry import Provider

if TYPE_CHECKING:
    from ..runtime import AgentContext


DOCUMENTS_TABLE = "documents"


def format_knowledge(documents: List[Memory]) -> str:
    """Headered bullet list of document snippets, or "" when there are none."""
    bullets = "\n".join(f"- {doc.content.text}" for doc in documents if doc.content.text)
    return add_header("# Knowledge", bullets)


class KnowledgeProvider(Provider):
    name = "KNOWLEDGE"
    description = "Knowledge from the knowledge base that the agent knows"
    dynamic = True

    def __init__(self, *, rewrite_query: bool = True, scope_to_room: bool = False) -> None:
        self.rewrite_query = rewrite_query
        self.scope_to_room = scope_to_room

    async def build_query(self, context: "AgentContext", message: Memory) -> str:
        raw_text = message.content.text
        if not self.rewrite_query:
            return raw_text

        template = DEFAULT_PROMPTS.resolve("knowledge_query", context.character.templates)
        prompt = render_template(template, {"messageText": raw_text})
        try:
            response = await context.use_model(ModelType.TEXT_SMALL, prompt=prompt)
        except ModelInvocationError as exc:
            log_warning(f"Knowledge query rewrite failed, using raw message text: {exc.reason}")
            return raw_text
        except Exception as exc:
            log_warning(f"Knowledge query rewrite failed, using raw message text: {exc}")
            return raw_text

        parsed = parse_json_object(response)
        query: Optional[object] = parsed.get("queryString") if parsed else None
        if not isinstance(query, str) or not query.strip():
            log_warning("Knowledge query rewrite returned no queryString; using raw message text")
            return raw_text
        log_llm(f"Knowledge query: {query}")
        return query.strip()

    async def get(self, context: "AgentContext", message: Memory, state: State) -> ProviderResult:
        query = await self.build_query(context, message)
        if not query.strip():
            return ProviderResult()

        embedding = await context.use_model(ModelType.TEXT_EMBEDDING, prompt=query)
        documents = await context.store.search_memories_by_embedding(
            embedding,
            table_name=DOCUMENTS_TABLE,
            match_threshold=context.knowledge_match_threshold,
            count=context.knowledge_match_count,
            agent_id=context.agent_id,
            room_id=message.room_id if self.scope_to_room else None,
        )
        log_deterministic(f"Knowledge search returned {len(documents)} document(s)")

        knowledge = format_knowledge(documents)
        if not knowledge:
            return ProviderResult(data={"knowledge": "", "documents": [], "query": query})

        return ProviderResult(
            values={"knowledge": knowledge},
            data={"knowledge": knowledge, "documents": documents, "query": query},
            text=knowledge,
        )
