"""Prompt template library for the message pipeline.

Templates use ``{{double_brace}}`` placeholders filled from ``State.values``
(see ``colloquy.renderers``). A character may override any template by name
through ``Character.templates``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass
class PromptTemplate:
    """Represents a templated prompt with placeholders."""

    name: str
    template: str
    description: str = ""


class PromptLibrary:
    """Container for named prompt templates used by providers and actions."""

    def __init__(self) -> None:
        self.templates: Dict[str, PromptTemplate] = {}

    def register(self, template: PromptTemplate) -> None:
        self.templates[template.name] = template

    def get(self, name: str) -> PromptTemplate:
        return self.templates[name]

    def resolve(self, name: str, overrides: Optional[Mapping[str, str]] = None) -> str:
        """Return the template text for ``name``, preferring a character override."""
        if overrides and overrides.get(name):
            return overrides[name]
        return self.get(name).template


_JSON_RULES = (
    "When JSON output is requested it will be parsed, so it must be accurate.\n"
    "Only respond with a single ```json block. If you add more than one, the response will be rejected.\n"
    "Example patterns use string templates like \"<string>\". Never repeat the template; "
    "replace it with the best choice or null."
)


DEFAULT_PROMPTS = PromptLibrary()

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="should_respond",
        template=(
            "# Task: Decide on behalf of {{agentName}} whether they should respond to the message.\n"
            "{{providers}}\n\n"
            "# Instructions: Decide if {{agentName}} should respond to or interact with the conversation.\n"
            "If the message is directed at or relevant to {{agentName}}, respond with RESPOND.\n"
            "If a user asks {{agentName}} to be quiet, respond with STOP.\n"
            "If {{agentName}} should stay out of the conversation, respond with IGNORE.\n"
            "List any extra context providers needed to answer in \"providers\".\n\n"
            f"{_JSON_RULES}\n\n"
            "Response format should be formatted in a valid JSON block like this:\n"
            "```json\n"
            "{\n"
            "    \"action\": \"RESPOND\" | \"IGNORE\" | \"STOP\",\n"
            "    \"providers\": [\"<string>\"],\n"
            "    \"reasoning\": \"<string>\"\n"
            "}\n"
            "```\n\n"
            "Your response should include the valid JSON block and nothing else."
        ),
        description="Gate deciding whether the agent takes part in this turn.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="message_handler",
        template=(
            "# Task: Generate dialog and actions for the character {{agentName}}.\n"
            "{{providers}}\n\n"
            "# Available Actions\n"
            "{{actionDescriptions}}\n\n"
            "# Instructions: Write a thought and plan for {{agentName}} and decide what actions to take.\n"
            "\"thought\" is a short description of what the agent is thinking about and planning.\n"
            "\"actions\" is the ordered list of actions to take, chosen from: {{actionNames}}.\n"
            "Use REPLY to answer, IGNORE to stay silent.\n"
            "\"providers\" lists extra context providers the actions need (for example KNOWLEDGE).\n"
            "\"text\" is the reply {{agentName}} will send when REPLY is chosen.\n\n"
            f"{_JSON_RULES}\n\n"
            "Response format should be formatted in a valid JSON block like this:\n"
            "```json\n"
            "{\n"
            "    \"thought\": \"<string>\",\n"
            "    \"actions\": [\"<string>\"],\n"
            "    \"providers\": [\"<string>\"],\n"
            "    \"text\": \"<string>\"\n"
            "}\n"
            "```\n\n"
            "Your response should include the valid JSON block and nothing else."
        ),
        description="Action decision for a turn.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="reply",
        template=(
            "# Task: Generate dialog for the character {{agentName}}.\n"
            "{{providers}}\n\n"
            "# Instructions: Write the next message for {{agentName}}.\n"
            "First, think about what you want to do next. Then, write the next message.\n"
            "\"thought\" should be a short description of what the agent is thinking about and planning.\n"
            "\"message\" should be the next message for {{agentName}} which they will send to the conversation.\n\n"
            "Reply guidelines:\n"
            "- Never embellish with step-by-step explanation. Just give one answer in the requested format.\n"
            "- Do not prefix the message with your own name.\n"
            f"{_JSON_RULES}\n\n"
            "These are the available valid actions: {{actionNames}}\n\n"
            "Response format should be formatted in a valid JSON block like this:\n"
            "```json\n"
            "{\n"
            "    \"thought\": \"<string>\",\n"
            "    \"message\": \"<string>\"\n"
            "}\n"
            "```\n\n"
            "Your response should include the valid JSON block and nothing else."
        ),
        description="Generates the reply text for the REPLY action.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="knowledge_query",
        template=(
            "# Instructions:\n"
            "Below is a message from a user. Extract the essential keywords from the message\n"
            "to create a query string that will be used for retrieval from a document database.\n"
            "Format the query string to optimize retrieval success.\n\n"
            "Here is the user's message:\n"
            "{{messageText}}\n\n"
            "Response format should be formatted in a valid JSON block like this:\n"
            "```json\n"
            "{\n"
            "  \"queryString\": \"<string>\"\n"
            "}\n"
            "```\n\n"
            "Your response should include the valid JSON block and nothing else."
        ),
        description="Rewrites a user message into a retrieval query.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="knowledge_answer",
        template=(
            "# Task: Answer the user's question as {{agentName}} using the knowledge below.\n"
            "{{knowledge}}\n\n"
            "# Question:\n"
            "{{messageText}}\n\n"
            "Answer only from the knowledge above. If it does not contain the answer, say so briefly.\n"
            "Respond with the answer text only."
        ),
        description="Answers a question from retrieved documents (KNOWLEDGE_BASE action).",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="news_search_term",
        template=(
            "Extract the search term from the message provided by the user. The message is:\n"
            "{{messageText}}\n"
            "Only respond with the search term. Do not include any other text."
        ),
        description="Extracts a news search term (CURRENT_NEWS action).",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="news_summary",
        template=(
            "Summarize the news for {{searchTerm}} in a few sentences. The news is:\n"
            "{{news}}"
        ),
        description="Summarizes fetched headlines (CURRENT_NEWS action).",
    )
)
