"""Tests for the RECENT_MESSAGES and TIME providers."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from colloquy.providers import RecentMessagesProvider, TimeProvider
from colloquy.schemas import ChannelType, Content, Entity, Memory, Room, State

BASE_TIME = datetime(2025, 3, 3, 16, 5, 9, tzinfo=timezone.utc)


async def _say(context, room_id, entity_id, text, minute, **content):
    memory = Memory(
        room_id=room_id,
        entity_id=entity_id,
        agent_id=context.agent_id,
        content=Content(text=text, **content),
        created_at=BASE_TIME + timedelta(minutes=minute),
    )
    await context.store.create_memory(memory, "messages")
    return memory


@pytest.mark.asyncio
async def test_chat_history_renders_oldest_first(context, store, make_message):
    room = Room(type=ChannelType.GROUP)
    await store.create_room(room)
    chris = Entity(names=["chris"], metadata={"username": "chris"})
    await store.create_entity(chris)
    await store.add_participant(room.id, chris.id)

    await _say(context, room.id, chris.id, "hi eliza", 0)
    await _say(context, room.id, context.agent_id, "hello!", 1, actions=["REPLY"])
    message = make_message("how are you?", room_id=room.id, entity_id=chris.id)

    result = await RecentMessagesProvider().get(context, message, State())

    assert result.values["recentMessages"] == (
        "# Conversation Messages\nchris: hi eliza\nEliza: hello! (REPLY)\n"
    )
    assert result.text.endswith("# Received Message:\nChris: how are you?\n")
    assert result.data["room"].id == room.id


@pytest.mark.asyncio
async def test_history_is_bounded_by_conversation_length(context, store, make_message):
    room_id = uuid4()
    sender = uuid4()
    for minute in range(5):
        await _say(context, room_id, sender, f"line {minute}", minute)
    context.conversation_length = 2

    result = await RecentMessagesProvider().get(context, make_message("x", room_id=room_id), State())

    assert [m.content.text for m in result.data["recentMessages"]] == ["line 4", "line 3"]


@pytest.mark.asyncio
async def test_feed_rooms_render_posts(context, store, make_message):
    room = Room(type=ChannelType.FEED)
    await store.create_room(room)
    await _say(context, room.id, context.agent_id, "Databases are just spicy files.", 0)

    result = await RecentMessagesProvider().get(context, make_message("lol", room_id=room.id), State())

    assert result.text.startswith("# Posts in Thread\nName: Eliza\n")
    assert "Text:\nDatabases are just spicy files." in result.text
    assert "# Received Message:" not in result.text


@pytest.mark.asyncio
async def test_interactions_come_from_other_shared_rooms(context, store, make_message):
    chris = Entity(names=["chris"])
    await store.create_entity(chris)
    await context.ensure_agent_entity()
    current, other = Room(), Room()
    for room in (current, other):
        await store.create_room(room)
        await store.add_participant(room.id, chris.id)
        await store.add_participant(room.id, context.agent_id)
    await _say(context, other.id, chris.id, "remember me?", 0)
    await _say(context, current.id, chris.id, "same room", 1)

    result = await RecentMessagesProvider().get(
        context, make_message("hey", room_id=current.id, entity_id=chris.id), State()
    )

    assert [m.content.text for m in result.data["recentInteractions"]] == ["remember me?"]
    assert result.values["recentInteractions"] == "chris: remember me?"


@pytest.mark.asyncio
async def test_time_provider_renders_utc_and_local(context, make_message):
    provider = TimeProvider(clock=lambda: BASE_TIME)

    result = await provider.get(context, make_message("what time is it?", room_id=uuid4()), State())

    assert result.values["time"] == "Monday, March 3, 2025 at 4:05:09 PM UTC"
    assert result.values["localTime"] == "Monday, March 3, 2025 at 8:05:09 AM PST"
    assert result.text.startswith("The current date and time is Monday, March 3, 2025")
    assert result.data["time"] == BASE_TIME
