"""CHARACTER provider: personality, style directions and examples."""

from __future__ import annotations

import string
from typing import TYPE_CHECKING, List

from ..renderers import add_header
from ..schemas import Character, ExampleMessage, Memory, ProviderResult, State
from .registry import Provider

if TYPE_CHECKING:
    from random import Random

    from ..runtime import AgentContext


MAX_BIO_LINES = 10
MAX_OTHER_TOPICS = 5
MAX_POST_EXAMPLES = 50
MAX_MESSAGE_EXAMPLES = 5
_EXAMPLE_NAME_COUNT = 5


def _shuffled(rng: "Random", items: List) -> List:
    copy = list(items)
    rng.shuffle(copy)
    return copy


def _join_topics(topics: List[str]) -> str:
    if len(topics) <= 1:
        return "".join(topics)
    return ", ".join(topics[:-1]) + " and " + topics[-1]


def _random_name(rng: "Random") -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(rng.choice(alphabet) for _ in range(6))


def _format_example_line(line: ExampleMessage, names: List[str]) -> str:
    rendered = f"{line.name}: {line.content.text}"
    if line.content.actions:
        rendered += f" (actions: {', '.join(line.content.actions)})"
    for index, name in enumerate(names, start=1):
        rendered = rendered.replace(f"{{{{name{index}}}}}", name)
    return rendered


class CharacterProvider(Provider):
    name = "CHARACTER"
    description = "Character information"

    async def get(self, context: "AgentContext", message: Memory, state: State) -> ProviderResult:
        character: Character = context.character
        rng = context.rng
        agent_name = character.name

        if isinstance(character.bio, list):
            bio_text = " ".join(_shuffled(rng, character.bio)[:MAX_BIO_LINES])
        else:
            bio_text = character.bio or ""
        bio = add_header(f"# About {agent_name}", bio_text)

        topic_choice = rng.choice(character.topics) if character.topics else None
        topic = f"{agent_name} is currently interested in {topic_choice}" if topic_choice else ""
        others = [t for t in character.topics if t != topic_choice]
        others = _shuffled(rng, others)[:MAX_OTHER_TOPICS]
        topics = f"{agent_name} is also interested in {_join_topics(others)}" if others else ""

        adjective_choice = rng.choice(character.adjectives) if character.adjectives else ""
        adjective = f"{agent_name} is {adjective_choice}" if adjective_choice else ""

        posts = _shuffled(rng, character.post_examples)[:MAX_POST_EXAMPLES]
        post_block = "\n".join(posts)
        character_post_examples = (
            add_header(f"# Example Posts for {agent_name}", post_block)
            if post_block.replace("\n", "")
            else ""
        )

        conversations = _shuffled(rng, character.message_examples)[:MAX_MESSAGE_EXAMPLES]
        rendered_conversations = []
        for conversation in conversations:
            names = [_random_name(rng) for _ in range(_EXAMPLE_NAME_COUNT)]
            rendered_conversations.append(
                "\n".join(_format_example_line(line, names) for line in conversation)
            )
        message_block = "\n\n".join(rendered_conversations)
        character_message_examples = (
            add_header(f"# Example Conversations for {agent_name}", message_block)
            if message_block.replace("\n", "")
            else ""
        )

        style = character.style
        post_directions = (
            add_header(f"# Post Directions for {agent_name}", "\n".join(style.all + style.post))
            if style.all or style.post
            else ""
        )
        message_directions = (
            add_header(f"# Message Directions for {agent_name}", "\n".join(style.all + style.chat))
            if style.all or style.chat
            else ""
        )

        room = state.data.get("room") or await context.store.get_room(message.room_id)
        is_post_format = bool(room is not None and room.type.is_post_format)
        directions = post_directions if is_post_format else message_directions
        examples = character_post_examples if is_post_format else character_message_examples

        system = character.system or ""

        values = {
            "agentName": agent_name,
            "bio": bio,
            "system": system,
            "topic": topic,
            "topics": topics,
            "adjective": adjective,
            "messageDirections": message_directions,
            "postDirections": post_directions,
            "directions": directions,
            "examples": examples,
            "characterPostExamples": character_post_examples,
            "characterMessageExamples": character_message_examples,
        }
        data = {
            "bio": bio,
            "adjective": adjective,
            "topic": topic,
            "topics": topics,
            "character": character,
            "directions": directions,
            "examples": examples,
            "system": system,
        }
        text = "\n\n".join(
            part.strip("\n")
            for part in (bio, adjective, topic, topics, directions, examples, system)
            if part
        )
        return ProviderResult(values=values, data=data, text=text)
