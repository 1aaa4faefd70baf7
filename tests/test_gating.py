from uuid import uuid4

import pytest

from colloquy.gating import ParticipantGate
from colloquy.schemas import Content, Entity, EntityStatus, Memory

from conftest import RecordingStore


def _message(entity_id, room_id=None):
    return Memory(room_id=room_id or uuid4(), entity_id=entity_id, agent_id=uuid4(), content=Content(text="hi"))


@pytest.fixture
def gate(store):
    return ParticipantGate(store, uuid4())


@pytest.mark.asyncio
async def test_unknown_entity_counts_as_active(gate):
    entity_id = uuid4()
    assert await gate.status(entity_id) == EntityStatus.ACTIVE
    assert await gate.should_dispatch(_message(entity_id)) is True


@pytest.mark.asyncio
async def test_first_join_creates_active_entity(gate, store):
    entity_id = uuid4()

    entity = await gate.mark_joined(entity_id, names=["chris"], metadata={"username": "chris"})

    assert entity.status == EntityStatus.ACTIVE
    stored = await store.get_entity_by_id(entity_id)
    assert stored.names == ["chris"]
    assert stored.metadata["username"] == "chris"


@pytest.mark.asyncio
async def test_muted_sender_is_not_dispatched(gate):
    entity_id = uuid4()
    await gate.mute(entity_id)

    assert await gate.should_dispatch(_message(entity_id)) is False

    await gate.unmute(entity_id)
    assert await gate.should_dispatch(_message(entity_id)) is True


@pytest.mark.asyncio
async def test_join_does_not_lift_mute(gate):
    entity_id = uuid4()
    await gate.mark_joined(entity_id, names=["chris"])
    await gate.mute(entity_id)

    entity = await gate.mark_joined(entity_id, names=["chris", "Chris P."])

    assert entity.status == EntityStatus.MUTED
    assert entity.names == ["chris", "Chris P."]


@pytest.mark.asyncio
async def test_leave_then_rejoin_clears_left_at(gate, store):
    entity_id = uuid4()
    await gate.mark_joined(entity_id, names=["chris"])

    left = await gate.mark_left(entity_id)
    assert left.status == EntityStatus.INACTIVE
    assert isinstance(left.metadata["leftAt"], int)
    assert await gate.should_dispatch(_message(entity_id)) is False

    rejoined = await gate.mark_joined(entity_id)
    assert rejoined.status == EntityStatus.ACTIVE
    assert "leftAt" not in rejoined.metadata


@pytest.mark.asyncio
async def test_mark_left_unknown_entity_writes_nothing():
    store = RecordingStore()
    gate = ParticipantGate(store, uuid4())

    assert await gate.mark_left(uuid4()) is None
    assert store.updated_entities == []


@pytest.mark.asyncio
async def test_mark_left_is_idempotent(gate, store):
    entity_id = uuid4()
    await store.create_entity(Entity(id=entity_id, names=["chris"]))

    await gate.mark_left(entity_id)
    again = await gate.mark_left(entity_id)

    assert again.status == EntityStatus.INACTIVE
    assert len(store.updated_entities) == 2


@pytest.mark.asyncio
async def test_agent_muted_in_room(gate):
    room_id = uuid4()
    message = _message(uuid4(), room_id)

    await gate.mute_room(room_id)
    assert await gate.should_dispatch(message) is False

    await gate.unmute_room(room_id)
    assert await gate.should_dispatch(message) is True
