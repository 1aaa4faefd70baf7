"""CURRENT_NEWS action: summarize current headlines for a search term."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from urllib import error, parse, request

from ..config import Config
from ..logging_utils import log_deterministic, log_llm
from ..model_client import ModelType
from ..prompts import DEFAULT_PROMPTS
from ..renderers import render_template
from ..schemas import Content, HandlerCallback, Memory, State
from .registry import Action

if TYPE_CHECKING:
    from ..runtime import AgentContext


NEWS_API_URL = "https://newsapi.org/v2/everything"
NEWS_PAGE_SIZE = 10
NEWS_MEMORY_TAG = "CURRENT_NEWS_RESPONSE"


class NewsFetchError(RuntimeError):
    """Raised when the news API cannot be reached or answers with an error."""


def _perform_news_request(search_term: str, api_key: str, timeout: float) -> Dict[str, Any]:
    """Execute the blocking HTTP request against the news API."""

    query = parse.urlencode({"q": search_term, "apiKey": api_key, "pageSize": NEWS_PAGE_SIZE})
    req = request.Request(f"{NEWS_API_URL}?{query}", method="GET")
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise NewsFetchError(f"News API failed with status {exc.code}: {body or exc.reason}") from exc
    except error.URLError as exc:
        raise NewsFetchError(f"Could not reach news API: {exc.reason}") from exc

    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise NewsFetchError("News API returned non-JSON response.") from exc


async def fetch_articles(search_term: str, api_key: str, timeout: float = 30.0) -> List[Dict[str, Any]]:
    payload = await asyncio.to_thread(_perform_news_request, search_term, api_key, timeout)
    articles = payload.get("articles") or []
    return list(articles)[:NEWS_PAGE_SIZE]


def format_articles(articles: List[Dict[str, Any]]) -> str:
    return "\n".join(
        f"{article.get('title') or ''}\n{article.get('description') or ''}\n" for article in articles
    )


class CurrentNewsAction(Action):
    name = "CURRENT_NEWS"
    similes = ("NEWS", "GET_NEWS", "GET_CURRENT_NEWS")
    description = "Get current news for a search term, if asked by the user."

    def __init__(self, api_key: Optional[str] = None) -> None:
        self._api_key = api_key

    def api_key(self, context: "AgentContext") -> Optional[str]:
        return (
            self._api_key
            or context.character.settings.get("NEWS_API_KEY")
            or Config.NEWS_API_KEY
        )

    async def validate(self, context: "AgentContext", message: Memory) -> bool:
        return bool(self.api_key(context))

    async def handler(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
        options: Dict[str, Any],
        callback: HandlerCallback,
    ) -> Optional[bool]:
        templates = context.character.templates
        term_prompt = render_template(
            DEFAULT_PROMPTS.resolve("news_search_term", templates),
            {"messageText": message.content.text},
        )
        raw_term = await context.use_model(ModelType.TEXT_SMALL, prompt=term_prompt)
        search_term = str(raw_term).strip().splitlines()[0].strip() if str(raw_term).strip() else ""
        if not search_term:
            search_term = message.content.text
        log_llm(f"CURRENT_NEWS search term: {search_term}")

        articles = await fetch_articles(search_term, self.api_key(context) or "")
        news = format_articles(articles)
        log_deterministic(f"CURRENT_NEWS fetched {len(articles)} article(s)")

        await context.store.create_memory(
            Memory(
                room_id=message.room_id,
                entity_id=context.agent_id,
                agent_id=context.agent_id,
                content=Content(
                    text=f"The current news for {search_term} is:\n{news}",
                    actions=[NEWS_MEMORY_TAG],
                    source=message.content.source,
                ),
            ),
            "messages",
        )

        summary_prompt = render_template(
            DEFAULT_PROMPTS.resolve("news_summary", templates),
            {"searchTerm": search_term, "news": news},
        )
        summary = await context.use_model(ModelType.TEXT_SMALL, prompt=summary_prompt)
        await callback(Content(text=str(summary).strip(), actions=[self.name]))
        return True
