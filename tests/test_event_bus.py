"""Tests for ordered, failure-isolated event delivery."""

import asyncio
from uuid import uuid4

import pytest

from colloquy.events import EventBus
from colloquy.schemas import EventPayload, EventType, Memory, MessagePayload


@pytest.mark.asyncio
async def test_handlers_run_in_registration_order_including_duplicates():
    bus = EventBus()
    calls: list[str] = []

    async def store_message(payload):
        calls.append("store")

    async def consider_reply(payload):
        calls.append("reply")

    bus.register(EventType.MESSAGE_RECEIVED, store_message)
    bus.register(EventType.MESSAGE_RECEIVED, consider_reply)
    bus.register(EventType.MESSAGE_RECEIVED, store_message)

    await bus.emit(EventType.MESSAGE_RECEIVED, EventPayload())

    assert calls == ["store", "reply", "store"]


@pytest.mark.asyncio
async def test_emit_without_handlers_is_noop():
    bus = EventBus()
    await bus.emit(EventType.WORLD_JOINED, EventPayload())


@pytest.mark.asyncio
async def test_handler_awaited_before_next_starts():
    bus = EventBus()
    timeline: list[str] = []

    async def slow(payload):
        timeline.append("slow:start")
        await asyncio.sleep(0.01)
        timeline.append("slow:end")

    async def fast(payload):
        timeline.append("fast")

    bus.register(EventType.MESSAGE_RECEIVED, slow)
    bus.register(EventType.MESSAGE_RECEIVED, fast)
    await bus.emit(EventType.MESSAGE_RECEIVED, EventPayload())

    assert timeline == ["slow:start", "slow:end", "fast"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_next_and_emits_run_ended():
    bus = EventBus()
    delivered: list[str] = []
    run_ended: list = []

    async def broken(payload):
        raise RuntimeError("store offline")

    async def after(payload):
        delivered.append("after")

    async def on_run_ended(payload):
        run_ended.append(payload)

    bus.register(EventType.MESSAGE_RECEIVED, broken)
    bus.register(EventType.MESSAGE_RECEIVED, after)
    bus.register(EventType.RUN_ENDED, on_run_ended)

    message = Memory(room_id=uuid4(), entity_id=uuid4(), agent_id=uuid4())
    await bus.emit(EventType.MESSAGE_RECEIVED, MessagePayload(message=message, source="test"))

    assert delivered == ["after"]
    assert len(run_ended) == 1
    assert run_ended[0].status == "error"
    assert run_ended[0].error == "store offline"
    assert run_ended[0].message_id == message.id
    assert run_ended[0].room_id == message.room_id


@pytest.mark.asyncio
async def test_failing_run_ended_handler_does_not_recurse():
    bus = EventBus()
    calls: list[str] = []

    async def broken(payload):
        calls.append("broken")
        raise ValueError("boom")

    async def next_handler(payload):
        calls.append("next")

    bus.register(EventType.RUN_ENDED, broken)
    bus.register(EventType.RUN_ENDED, next_handler)

    await bus.emit(EventType.RUN_ENDED, EventPayload())

    assert calls == ["broken", "next"]
