"""Tests for the default message-turn and lifecycle handlers."""

import random
from uuid import uuid4

import pytest

from colloquy.actions import Action, ReplyAction
from colloquy.errors import ModelInvocationError
from colloquy.handlers import MESSAGES_TABLE
from colloquy.model_client import ModelType
from colloquy.runtime import build_agent_context
from colloquy.schemas import (
    ChannelType,
    Content,
    Entity,
    EntityPayload,
    EntityStatus,
    EventType,
    MessagePayload,
    Room,
    World,
    WorldPayload,
)

from conftest import DECIDE, REPLY, SHOULD_RESPOND, EventRecorder, json_block


class ExplodingAction(Action):
    name = "EXPLODE"
    description = "Always fails"

    async def handler(self, context, message, state, options, callback):
        raise RuntimeError("kaboom")


def _sink():
    sent = []

    async def callback(content):
        sent.append(content)

    return sent, callback


async def _emit_message(context, message, callback=None, event_type=EventType.MESSAGE_RECEIVED):
    await context.bus.emit(
        event_type,
        MessagePayload(context=context, message=message, callback=callback, source="test"),
    )


async def _direct_room(context):
    room = Room(type=ChannelType.DIRECT)
    await context.store.create_room(room)
    return room.id


async def _group_room(context):
    room = Room(type=ChannelType.GROUP)
    await context.store.create_room(room)
    return room.id


def _stored(store, table=MESSAGES_TABLE):
    return [memory for name, memory in store.created if name == table]


@pytest.mark.asyncio
async def test_direct_message_reply_is_stored_and_sent(context, model, store, make_message):
    model.on(DECIDE, json_block('{"thought": "greet", "actions": ["REPLY"], "text": "Hello Chris!"}'))
    recorder = EventRecorder().attach(context.bus, EventType.MESSAGE_SENT, EventType.RUN_ENDED)
    sent, callback = _sink()
    message = make_message("hello", room_id=await _direct_room(context), source="discord")

    await _emit_message(context, message, callback)

    assert model.prompts(SHOULD_RESPOND) == []
    assert [content.text for content in sent] == ["Hello Chris!"]
    assert sent[0].referenced_message_id == message.id
    assert sent[0].source == "discord"

    stored = _stored(store)
    assert stored[0].id == message.id
    assert stored[1].entity_id == context.agent_id
    assert stored[1].content.text == "Hello Chris!"
    assert stored[1].content.actions == ["REPLY"]

    assert len(recorder.of(EventType.MESSAGE_SENT)) == 1
    run_ended = recorder.of(EventType.RUN_ENDED)
    assert [(run.status, run.error) for run in run_ended] == [("success", None)]
    assert run_ended[0].message_id == message.id


@pytest.mark.asyncio
async def test_direct_channel_hint_without_room_skips_should_respond(context, model, make_message):
    model.on(DECIDE, json_block('{"actions": ["REPLY"], "text": "Hi"}'))
    sent, callback = _sink()
    message = make_message("hello", room_id=uuid4(), channel_type=ChannelType.DIRECT)

    await _emit_message(context, message, callback)

    assert model.prompts(SHOULD_RESPOND) == []
    assert [content.text for content in sent] == ["Hi"]


@pytest.mark.asyncio
async def test_mention_skips_should_respond(context, model, make_message):
    model.on(DECIDE, json_block('{"actions": ["REPLY"], "text": "Yes?"}'))
    sent, callback = _sink()
    message = make_message("hey @eliza, you there?", room_id=await _group_room(context))

    await _emit_message(context, message, callback)

    assert model.prompts(SHOULD_RESPOND) == []
    assert [content.text for content in sent] == ["Yes?"]


@pytest.mark.asyncio
async def test_should_respond_ignore_ends_turn_without_decision(context, model, store, make_message):
    model.on(SHOULD_RESPOND, json_block('{"action": "IGNORE", "reasoning": "not for me"}'))
    recorder = EventRecorder().attach(context.bus, EventType.RUN_ENDED)
    sent, callback = _sink()
    message = make_message("anyone seen my keys?", room_id=await _group_room(context))

    await _emit_message(context, message, callback)

    assert len(model.prompts(SHOULD_RESPOND)) == 1
    assert model.prompts(DECIDE) == []
    assert sent == []
    assert [memory.id for memory in _stored(store)] == [message.id]
    assert recorder.of(EventType.RUN_ENDED)[0].status == "success"


@pytest.mark.asyncio
async def test_malformed_should_respond_output_means_respond(context, model, make_message):
    model.on(SHOULD_RESPOND, "I think so?")
    model.on(DECIDE, json_block('{"actions": ["REPLY"], "text": "Hi all"}'))
    sent, callback = _sink()
    message = make_message("what's up", room_id=await _group_room(context))

    await _emit_message(context, message, callback)

    assert [content.text for content in sent] == ["Hi all"]


@pytest.mark.asyncio
async def test_should_respond_providers_are_composed(context, model, store, make_message):
    model.on(
        SHOULD_RESPOND,
        json_block('{"action": "RESPOND", "providers": ["KNOWLEDGE"], "reasoning": "question"}'),
    )
    model.on(DECIDE, json_block('{"actions": ["IGNORE"]}'))
    message = make_message("What does UTXO mean?", room_id=await _group_room(context))

    await _emit_message(context, message)

    assert len(store.searches) == 1


@pytest.mark.asyncio
async def test_malformed_decision_falls_back_to_generated_reply(context, model, make_message):
    model.on(DECIDE, "REPLY please")
    model.on(REPLY, {"thought": "fallback", "message": "Generated reply"})
    sent, callback = _sink()
    message = make_message("hello", room_id=await _direct_room(context))

    await _emit_message(context, message, callback)

    assert [content.text for content in sent] == ["Generated reply"]
    assert ModelType.OBJECT_LARGE in model.kinds()


@pytest.mark.asyncio
async def test_muted_sender_is_stored_but_not_answered(context, model, store, make_message):
    sender = uuid4()
    await context.gate.mute(sender)
    recorder = EventRecorder().attach(context.bus, EventType.RUN_ENDED)
    sent, callback = _sink()
    message = make_message("hello?", room_id=await _direct_room(context), entity_id=sender)

    await _emit_message(context, message, callback)

    assert [memory.id for memory in _stored(store)] == [message.id]
    assert model.calls == []
    assert sent == []
    assert recorder.of(EventType.RUN_ENDED)[0].status == "success"


@pytest.mark.asyncio
async def test_model_transport_failure_ends_run_with_error(context, model, make_message):
    model.on(DECIDE, ModelInvocationError("TEXT_SMALL", "request timed out"))
    recorder = EventRecorder().attach(context.bus, EventType.RUN_STARTED, EventType.RUN_ENDED)
    sent, callback = _sink()
    message = make_message("hello", room_id=await _direct_room(context))

    await _emit_message(context, message, callback)

    assert sent == []
    assert recorder.types() == [EventType.RUN_STARTED, EventType.RUN_ENDED]
    ended = recorder.of(EventType.RUN_ENDED)[0]
    assert ended.status == "error"
    assert "request timed out" in ended.error
    assert ended.end_time >= ended.start_time


@pytest.mark.asyncio
async def test_failing_action_marks_run_error_but_chain_continues(character, store, model, make_message):
    context = build_agent_context(
        character,
        store=store,
        model=model,
        rng=random.Random(3),
        actions=[ExplodingAction(), ReplyAction()],
    )
    model.on(DECIDE, json_block('{"actions": ["EXPLODE", "REPLY"], "text": "Still here"}'))
    recorder = EventRecorder().attach(context.bus, EventType.RUN_ENDED)
    sent, callback = _sink()
    room_id = uuid4()
    await store.create_room(Room(id=room_id, type=ChannelType.DIRECT))

    await _emit_message(context, make_message("hi", room_id=room_id), callback)

    assert [content.text for content in sent] == ["Still here"]
    ended = recorder.of(EventType.RUN_ENDED)[0]
    assert ended.status == "error"
    assert "EXPLODE" in ended.error


@pytest.mark.asyncio
async def test_agent_own_message_is_not_answered(context, model, store, make_message):
    message = make_message("I said this", room_id=uuid4(), entity_id=context.agent_id)

    await _emit_message(context, message)

    assert store.created == []
    assert model.calls == []


@pytest.mark.asyncio
async def test_redelivered_message_is_not_stored_twice(context, model, store, make_message):
    model.on(DECIDE, json_block('{"actions": ["IGNORE"]}'))
    message = make_message("hello", room_id=await _direct_room(context))

    await _emit_message(context, message)
    await _emit_message(context, message)

    assert len(await store.get_memories(table_name=MESSAGES_TABLE)) == 1


@pytest.mark.asyncio
async def test_voice_message_follows_text_path(context, model, make_message):
    model.on(DECIDE, json_block('{"actions": ["REPLY"], "text": "Heard you"}'))
    sent, callback = _sink()
    message = make_message("transcribed words", room_id=await _direct_room(context))

    await _emit_message(context, message, callback, EventType.VOICE_MESSAGE_RECEIVED)

    assert [content.text for content in sent] == ["Heard you"]


@pytest.mark.asyncio
async def test_character_template_override_is_used(character, store, model, make_message):
    character = character.model_copy(
        update={"templates": {"should_respond": "Custom gate for {{agentName}}: whether they should respond"}}
    )
    context = build_agent_context(character, store=store, model=model)
    model.on(SHOULD_RESPOND, json_block('{"action": "STOP"}'))
    message = make_message("chatter", room_id=await _group_room(context))

    await _emit_message(context, message)

    assert model.prompts(SHOULD_RESPOND) == ["Custom gate for Eliza: whether they should respond"]
    assert model.prompts(DECIDE) == []


@pytest.mark.asyncio
async def test_reaction_is_stored_and_duplicate_is_tolerated(context, store, make_message):
    original = uuid4()
    reaction = make_message("👍", room_id=uuid4(), referenced_message_id=original)

    await _emit_message(context, reaction, event_type=EventType.REACTION_RECEIVED)
    await _emit_message(context, reaction, event_type=EventType.REACTION_RECEIVED)

    stored = await store.get_memories(table_name=MESSAGES_TABLE)
    assert len(stored) == 1
    assert stored[0].content.reaction is True
    assert stored[0].content.referenced_message_id == original


@pytest.mark.asyncio
async def test_entity_left_for_unknown_entity_writes_nothing(context, store):
    recorder = EventRecorder().attach(context.bus, EventType.RUN_ENDED)

    await context.bus.emit(
        EventType.ENTITY_LEFT, EntityPayload(context=context, entity_id=uuid4(), source="test")
    )

    assert store.updated_entities == []
    assert recorder.events == []


@pytest.mark.asyncio
async def test_entity_left_marks_inactive(context, store):
    entity_id = uuid4()
    await store.create_entity(Entity(id=entity_id, names=["chris"], metadata={"status": "ACTIVE"}))

    await context.bus.emit(
        EventType.ENTITY_LEFT, EntityPayload(context=context, entity_id=entity_id, source="test")
    )

    entity = await store.get_entity_by_id(entity_id)
    assert entity.status == EntityStatus.INACTIVE
    assert isinstance(entity.metadata["leftAt"], int)


@pytest.mark.asyncio
async def test_entity_joined_ensures_world_room_and_participants(context, store):
    entity_id, room_id, world_id = uuid4(), uuid4(), uuid4()

    await context.bus.emit(
        EventType.ENTITY_JOINED,
        EntityPayload(
            context=context,
            entity_id=entity_id,
            room_id=room_id,
            world_id=world_id,
            metadata={"username": "chris", "channelType": "direct"},
            source="discord",
        ),
    )

    assert await store.get_world(world_id) is not None
    room = await store.get_room(room_id)
    assert room.type == ChannelType.DIRECT
    assert set(room.participant_ids) == {entity_id, context.agent_id}
    entity = await store.get_entity_by_id(entity_id)
    assert entity.status == EntityStatus.ACTIVE
    assert entity.names == ["chris"]


@pytest.mark.asyncio
async def test_entity_rejoin_reactivates_after_leaving(context, store):
    entity_id = uuid4()
    payload = EntityPayload(context=context, entity_id=entity_id, metadata={"name": "Chris"})

    await context.bus.emit(EventType.ENTITY_JOINED, payload)
    await context.bus.emit(EventType.ENTITY_LEFT, payload)
    await context.bus.emit(EventType.ENTITY_JOINED, payload)

    entity = await store.get_entity_by_id(entity_id)
    assert entity.status == EntityStatus.ACTIVE
    assert "leftAt" not in entity.metadata


@pytest.mark.asyncio
async def test_world_joined_creates_rooms_and_entities(context, store):
    world = World(name="Guild")
    member = Entity(names=["chris"], metadata={"username": "chris"})
    room = Room(name="general", participant_ids=[member.id])

    await context.bus.emit(
        EventType.WORLD_JOINED,
        WorldPayload(context=context, world=world, rooms=[room], entities=[member], source="discord"),
    )

    assert (await store.get_world(world.id)).name == "Guild"
    stored_room = await store.get_room(room.id)
    assert stored_room.world_id == world.id
    assert stored_room.participant_ids == [member.id]
    assert (await store.get_entity_by_id(member.id)).status == EntityStatus.ACTIVE
