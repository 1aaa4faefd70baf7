"""RECENT_MESSAGES provider: conversation history for the current room."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Dict, List, Sequence
from uuid import UUID

from ..renderers import add_header
from ..schemas import Entity, Memory, ProviderResult, State
from .registry import Provider

if TYPE_CHECKING:
    from ..runtime import AgentContext


RECENT_INTERACTIONS_LIMIT = 20
MESSAGES_TABLE = "messages"


def _sender_name(context: "AgentContext", memory: Memory, entities: Dict[UUID, Entity]) -> str:
    if memory.entity_id == context.agent_id:
        return context.character.name
    entity = entities.get(memory.entity_id)
    if entity is not None:
        return entity.display_name
    return str(memory.metadata.get("entityName") or "unknown")


def format_messages(
    context: "AgentContext",
    messages: Sequence[Memory],
    entities: Dict[UUID, Entity],
) -> str:
    """Render messages oldest first as ``name: text`` chat lines."""
    lines = []
    for memory in reversed(list(messages)):
        if not memory.content.text:
            continue
        line = f"{_sender_name(context, memory, entities)}: {memory.content.text}"
        if memory.content.actions:
            line += f" ({', '.join(memory.content.actions)})"
        if memory.content.reaction:
            line += " (reaction)"
        lines.append(line)
    return "\n".join(lines)


def format_posts(
    context: "AgentContext",
    messages: Sequence[Memory],
    entities: Dict[UUID, Entity],
    *,
    conversation_header: bool,
) -> str:
    """Render messages oldest first as posts, grouped by room."""
    by_room: Dict[UUID, List[Memory]] = {}
    for memory in reversed(list(messages)):
        if memory.content.text:
            by_room.setdefault(memory.room_id, []).append(memory)

    blocks = []
    for room_id, memories in by_room.items():
        posts = []
        for memory in memories:
            entity = entities.get(memory.entity_id)
            username = entity.metadata.get("username") if entity else None
            name = _sender_name(context, memory, entities)
            handle = f" (@{username})" if username else ""
            posts.append(f"Name: {name}{handle}\nDate: {memory.created_at.isoformat()}\nText:\n{memory.content.text}")
        body = "\n\n".join(posts)
        if conversation_header:
            body = f"Conversation: {str(room_id)[-5:]}\n{body}"
        blocks.append(body)
    return "\n\n".join(blocks)


class RecentMessagesProvider(Provider):
    name = "RECENT_MESSAGES"
    description = "Recent messages, interactions and other memories"
    position = 100

    async def _recent_interactions(self, context: "AgentContext", message: Memory) -> List[Memory]:
        if message.entity_id == context.agent_id:
            return []
        rooms = await context.store.get_rooms_for_participants([message.entity_id, context.agent_id])
        other_rooms = [room_id for room_id in rooms if room_id != message.room_id]
        if not other_rooms:
            return []
        return await context.store.get_memories_by_room_ids(
            table_name=MESSAGES_TABLE,
            room_ids=other_rooms,
            limit=RECENT_INTERACTIONS_LIMIT,
        )

    async def get(self, context: "AgentContext", message: Memory, state: State) -> ProviderResult:
        store = context.store
        room_entities, room, recent, interactions = await asyncio.gather(
            store.get_entities_for_room(message.room_id),
            store.get_room(message.room_id),
            store.get_memories(
                table_name=MESSAGES_TABLE,
                room_id=message.room_id,
                count=context.conversation_length,
            ),
            self._recent_interactions(context, message),
        )

        entities: Dict[UUID, Entity] = {entity.id: entity for entity in room_entities}
        missing = {
            memory.entity_id
            for memory in interactions
            if memory.entity_id != context.agent_id and memory.entity_id not in entities
        }
        if missing:
            fetched = await asyncio.gather(*(store.get_entity_by_id(entity_id) for entity_id in missing))
            for entity in fetched:
                if entity is not None:
                    entities[entity.id] = entity

        is_post_format = bool(room is not None and room.type.is_post_format)

        formatted_messages = format_messages(context, recent, entities)
        formatted_posts = format_posts(context, recent, entities, conversation_header=False)
        recent_posts = add_header("# Posts in Thread", formatted_posts)
        recent_messages = add_header("# Conversation Messages", formatted_messages)

        sender = message.metadata.get("entityName") or _sender_name(context, message, entities)
        received_message = add_header("# Received Message:", f"{sender}: {message.content.text}")

        recent_message_interactions = format_messages(context, interactions, entities)
        recent_post_interactions = format_posts(
            context, interactions, entities, conversation_header=True
        )

        values = {
            "recentPosts": recent_posts,
            "recentMessages": recent_messages,
            "recentMessageInteractions": recent_message_interactions,
            "recentPostInteractions": recent_post_interactions,
            "recentInteractions": (
                recent_post_interactions if is_post_format else recent_message_interactions
            ),
        }
        data = {
            "recentMessages": recent,
            "recentInteractions": interactions,
            "room": room,
        }

        if is_post_format:
            text = recent_posts
        else:
            text = "\n".join(part for part in (recent_messages, received_message) if part)
        return ProviderResult(values=values, data=data, text=text)
