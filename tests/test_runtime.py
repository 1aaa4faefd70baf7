"""Tests for AgentContext assembly and connection bootstrapping."""

import asyncio
from uuid import uuid4

import pytest

from colloquy.errors import DuplicateRecordError
from colloquy.persistence import InMemoryStore
from colloquy.runtime import agent_id_for, build_agent_context
from colloquy.schemas import ChannelType, EntityStatus, EventType


def test_agent_id_is_stable_per_character(character):
    assert agent_id_for(character) == agent_id_for(character.model_copy())
    assert agent_id_for(character) != agent_id_for(character.model_copy(update={"name": "Ben"}))


def test_default_context_wires_registries_and_handlers(context):
    assert context.providers.names() == ["CHARACTER", "RECENT_MESSAGES", "TIME", "KNOWLEDGE"]
    assert context.actions.names() == ["REPLY", "IGNORE", "KNOWLEDGE_BASE", "CURRENT_NEWS"]
    assert context.bus.handlers(EventType.MESSAGE_RECEIVED)
    assert context.composer.registry is context.providers


def test_handlers_can_be_left_unregistered(character, model):
    context = build_agent_context(character, model=model, register_handlers=False)
    assert context.bus.handlers(EventType.MESSAGE_RECEIVED) == []
    assert isinstance(context.store, InMemoryStore)


@pytest.mark.asyncio
async def test_room_lock_serializes_one_room_only(context):
    room_a, room_b = uuid4(), uuid4()
    order = []

    async def turn(room_id, label):
        async with context.room_lock(room_id):
            order.append(f"{label}:start")
            await asyncio.sleep(0.01)
            order.append(f"{label}:end")

    async with context.room_lock(room_a):
        waiting = asyncio.create_task(turn(room_a, "a2"))
        await turn(room_b, "b")
        order.append("a1:end")
    await waiting

    assert order == ["b:start", "b:end", "a1:end", "a2:start", "a2:end"]


@pytest.mark.asyncio
async def test_room_locks_are_released_when_idle(context):
    for _ in range(1000):
        async with context.room_lock(uuid4()):
            pass

    assert context._room_locks == {}
    assert context._room_lock_holders == {}


@pytest.mark.asyncio
async def test_ensure_connection_is_idempotent(context, store):
    entity_id, room_id, world_id = uuid4(), uuid4(), uuid4()
    kwargs = dict(
        entity_id=entity_id,
        room_id=room_id,
        world_id=world_id,
        names=["chris"],
        channel_type=ChannelType.DIRECT,
        source="discord",
    )

    await context.ensure_connection(**kwargs)
    await context.ensure_connection(**kwargs)

    room = await store.get_room(room_id)
    assert room.type == ChannelType.DIRECT
    assert room.world_id == world_id
    assert room.participant_ids == [entity_id, context.agent_id]
    assert (await store.get_entity_by_id(entity_id)).status == EntityStatus.ACTIVE


@pytest.mark.asyncio
async def test_ensure_connection_tolerates_creation_races(context, store, monkeypatch):
    room_id = uuid4()
    original_create_room = store.create_room

    async def racing_create_room(room):
        await original_create_room(room)
        raise DuplicateRecordError("rooms", room.id)

    monkeypatch.setattr(store, "create_room", racing_create_room)

    await context.ensure_connection(entity_id=uuid4(), room_id=room_id)

    assert len((await store.get_room(room_id)).participant_ids) == 2


@pytest.mark.asyncio
async def test_ensure_connection_skips_room_when_world_missing(context, store, monkeypatch):
    async def no_world(world):
        return None

    monkeypatch.setattr(store, "create_world", no_world)
    room_id = uuid4()

    await context.ensure_connection(entity_id=uuid4(), room_id=room_id, world_id=uuid4())

    assert await store.get_room(room_id) is None
