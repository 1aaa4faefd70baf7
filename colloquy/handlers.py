"""Default event handlers: the message turn and entity/world lifecycle.

A message turn (MESSAGE_RECEIVED / VOICE_MESSAGE_RECEIVED) runs under the
room's lock:

1. RUN_STARTED, then store the inbound message (storage is unconditional).
2. Participant gating; a muted or departed sender ends the turn here.
3. Should-respond check (direct rooms and name mentions skip the model).
4. Compose state, let the model decide the action chain, dispatch it.
5. Run evaluators.
6. RUN_ENDED with ``status`` and, on failure, an error summary.

Every outbound content fragment an action produces is stored as an agent
memory, forwarded to the payload's callback and announced as MESSAGE_SENT.
"""

from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConstraintViolationError, DuplicateRecordError, StructuredOutputError
from .events import EventBus
from .llm_utils import parse_json_block
from .logging_utils import (
    log_deterministic,
    log_error,
    log_exception,
    log_info,
    log_llm,
    log_success,
    log_warning,
)
from .model_client import ModelType
from .prompts import DEFAULT_PROMPTS
from .renderers import compose_prompt_from_state
from .schemas import (
    ActionEventPayload,
    ChannelType,
    Content,
    EntityPayload,
    EvaluatorEventPayload,
    EventType,
    HandlerCallback,
    Memory,
    MessagePayload,
    Room,
    RunEventPayload,
    WorldPayload,
    now_ms,
)

if TYPE_CHECKING:
    from .runtime import AgentContext


MESSAGES_TABLE = "messages"


class ShouldRespondDecision(BaseModel):
    """Parsed output of the should-respond model call."""

    action: str = "RESPOND"
    providers: List[str] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("action", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> str:
        return str(value or "").strip().upper()

    @field_validator("providers", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def respond(self) -> bool:
        return self.action == "RESPOND"


# ============================================================================
# Message turn
# ============================================================================


def _mentions_agent(context: "AgentContext", message: Memory) -> bool:
    text = message.content.text or ""
    names = [context.character.name, context.character.username]
    for name in names:
        if name and re.search(rf"(?<!\w)@?{re.escape(name)}(?!\w)", text, re.IGNORECASE):
            return True
    return False


async def should_respond(
    context: "AgentContext",
    message: Memory,
    room: Optional[Room],
) -> Tuple[bool, List[str]]:
    """Decide whether the agent takes part in this turn.

    Returns the decision plus any extra providers the model asked for.
    Malformed model output counts as RESPOND with no extra providers.
    """

    channel_type = room.type if room is not None else message.content.channel_type
    if channel_type == ChannelType.DIRECT:
        return True, []
    if _mentions_agent(context, message):
        log_deterministic("Agent mentioned by name; responding")
        return True, []

    state = await context.compose_state(message)
    template = DEFAULT_PROMPTS.resolve("should_respond", context.character.templates)
    prompt = compose_prompt_from_state(state, template)
    response = await context.use_model(ModelType.TEXT_SMALL, prompt=prompt)

    try:
        parsed = response if isinstance(response, dict) else parse_json_block(response)
        decision = ShouldRespondDecision.model_validate(parsed)
    except (StructuredOutputError, ValidationError) as exc:
        log_warning(f"Should-respond output unparseable; responding anyway: {exc}")
        return True, []

    log_llm(f"Should respond: {decision.action} ({decision.reasoning or 'no reasoning'})")
    return decision.respond, decision.providers


def _outbound_callback(
    context: "AgentContext",
    message: Memory,
    downstream: Optional[HandlerCallback],
    responses: List[Content],
    source: str,
) -> HandlerCallback:
    async def deliver(content: Content) -> None:
        content = content.model_copy(
            update={
                "referenced_message_id": content.referenced_message_id or message.id,
                "source": content.source or message.content.source,
            }
        )
        responses.append(content)
        memory = Memory(
            room_id=message.room_id,
            entity_id=context.agent_id,
            agent_id=context.agent_id,
            content=content,
            metadata={"entityName": context.character.name, "source": source},
        )
        await context.store.create_memory(memory, MESSAGES_TABLE)
        if downstream is not None:
            await downstream(content)
        await context.bus.emit(
            EventType.MESSAGE_SENT,
            MessagePayload(context=context, message=memory, source=source),
        )

    return deliver


async def _run_message_turn(
    context: "AgentContext",
    message: Memory,
    callback: Optional[HandlerCallback],
    source: str,
) -> None:
    run = RunEventPayload(
        context=context,
        source=source,
        message_id=message.id,
        room_id=message.room_id,
        entity_id=message.entity_id,
    )
    await context.bus.emit(EventType.RUN_STARTED, run)
    started = time.monotonic()
    status = "success"
    error: Optional[str] = None

    try:
        if message.entity_id == context.agent_id:
            # The agent's own messages were stored when they were sent.
            return

        try:
            await context.store.create_memory(message, MESSAGES_TABLE)
        except DuplicateRecordError:
            log_deterministic(f"Message {message.id} already stored")

        if not await context.gate.should_dispatch(message):
            return

        room = await context.store.get_room(message.room_id)
        respond, extra_providers = await should_respond(context, message, room)
        if not respond:
            log_deterministic(f"Not responding to message {message.id}")
            return

        requested = list(dict.fromkeys([*message.content.providers, *extra_providers]))
        state = await context.compose_state(message, requested or None)
        decision = await context.dispatcher.decide(context, message, state)

        responses: List[Content] = []
        outbound = _outbound_callback(context, message, callback, responses, source)
        result = await context.dispatcher.process_actions(
            context, message, decision, state, outbound
        )
        await context.dispatcher.evaluate(context, message, state, responses)

        if result.errors:
            status = "error"
            error = "; ".join(result.errors)
    except Exception as exc:
        log_exception(f"Message turn for {message.id} failed", exc)
        status = "error"
        error = str(exc) or type(exc).__name__
    finally:
        end_time = now_ms()
        ended = run.model_copy(
            update={
                "status": status,
                "end_time": end_time,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "error": error,
            }
        )
        await context.bus.emit(EventType.RUN_ENDED, ended)


async def handle_message_received(payload: MessagePayload) -> None:
    context = payload.context
    message = payload.message
    async with context.room_lock(message.room_id):
        await _run_message_turn(context, message, payload.callback, payload.source)


async def handle_voice_message_received(payload: MessagePayload) -> None:
    # Transcribed voice follows the text path.
    await handle_message_received(payload)


async def handle_reaction_received(payload: MessagePayload) -> None:
    """Store a reaction as a message tagged ``reaction=True``. Duplicates are already applied."""
    context = payload.context
    reaction = payload.message
    if not reaction.content.reaction:
        reaction = reaction.model_copy(
            update={"content": reaction.content.model_copy(update={"reaction": True})}
        )
    try:
        await context.store.create_memory(reaction, MESSAGES_TABLE)
    except DuplicateRecordError:
        log_warning(f"Reaction {reaction.id} already recorded")
        return
    log_deterministic(
        f"Stored reaction {reaction.id} to {reaction.content.referenced_message_id}"
    )


async def handle_message_sent(payload: MessagePayload) -> None:
    text = payload.message.content.text
    preview = text if len(text) <= 80 else text[:77] + "..."
    log_info(f"Message sent to room {payload.message.room_id}: {preview}")


# ============================================================================
# Entity & world lifecycle
# ============================================================================


async def handle_world_joined(payload: WorldPayload) -> None:
    context = payload.context
    world = payload.world
    store = context.store

    if await store.get_world(world.id) is None:
        try:
            await store.create_world(world)
        except DuplicateRecordError:
            pass

    for room in payload.rooms:
        if await store.get_room(room.id) is None:
            try:
                await store.create_room(
                    room.model_copy(
                        update={
                            "world_id": room.world_id or world.id,
                            "agent_id": context.agent_id,
                            "participant_ids": [],
                        }
                    )
                )
            except (DuplicateRecordError, ConstraintViolationError) as exc:
                log_warning(f"Skipping room {room.id}: {exc}")

    for entity in payload.entities:
        await context.gate.mark_joined(entity.id, names=entity.names, metadata=entity.metadata)

    for room in payload.rooms:
        for participant in room.participant_ids:
            try:
                await store.add_participant(room.id, participant)
            except ConstraintViolationError as exc:
                log_warning(f"Skipping participant {participant}: {exc.detail}")

    log_success(
        f"Joined world {world.name or world.id}: "
        f"{len(payload.rooms)} room(s), {len(payload.entities)} entit(y/ies)"
    )


async def handle_entity_joined(payload: EntityPayload) -> None:
    context = payload.context
    metadata = dict(payload.metadata)
    names = [
        str(metadata[key]) for key in ("username", "name", "entityName") if metadata.get(key)
    ]
    if payload.room_id is None:
        await context.gate.mark_joined(payload.entity_id, names=names, metadata=metadata)
        return

    channel = metadata.get("channelType") or metadata.get("type") or ChannelType.GROUP.value
    try:
        channel_type = ChannelType(channel)
    except ValueError:
        channel_type = ChannelType.GROUP

    await context.ensure_connection(
        entity_id=payload.entity_id,
        room_id=payload.room_id,
        world_id=payload.world_id,
        names=names,
        metadata=metadata,
        source=payload.source,
        channel_type=channel_type,
    )
    log_deterministic(f"Entity {payload.entity_id} joined room {payload.room_id}")


async def handle_entity_left(payload: EntityPayload) -> None:
    """Mark the entity INACTIVE with a leftAt timestamp. Unknown entities are not written."""
    context = payload.context
    try:
        entity = await context.gate.mark_left(payload.entity_id)
    except Exception as exc:
        log_exception(f"Could not mark entity {payload.entity_id} as left", exc)
        return
    if entity is not None:
        log_deterministic(f"Entity {payload.entity_id} left (INACTIVE)")


# ============================================================================
# Lifecycle logging
# ============================================================================


async def handle_action_started(payload: ActionEventPayload) -> None:
    log_deterministic(f"Action {payload.action_name} started ({payload.action_id})")


async def handle_action_completed(payload: ActionEventPayload) -> None:
    if payload.completed:
        log_success(f"Action {payload.action_name} completed")
    else:
        log_error(f"Action {payload.action_name} failed: {payload.error}")


async def handle_evaluator_started(payload: EvaluatorEventPayload) -> None:
    log_deterministic(f"Evaluator {payload.evaluator_name} started")


async def handle_evaluator_completed(payload: EvaluatorEventPayload) -> None:
    if payload.completed:
        log_success(f"Evaluator {payload.evaluator_name} completed")
    else:
        log_error(f"Evaluator {payload.evaluator_name} failed: {payload.error}")


async def handle_run_started(payload: RunEventPayload) -> None:
    log_info(f"Run {payload.run_id} started for message {payload.message_id}")


async def handle_run_ended(payload: RunEventPayload) -> None:
    if payload.status == "error":
        log_error(f"Run {payload.run_id} ended with error: {payload.error}")
    else:
        log_info(f"Run {payload.run_id} ended ({payload.status}, {payload.duration_ms}ms)")


def register_default_handlers(bus: EventBus) -> None:
    """Register the built-in handlers on ``bus`` in delivery order."""

    bus.register(EventType.MESSAGE_RECEIVED, handle_message_received)
    bus.register(EventType.VOICE_MESSAGE_RECEIVED, handle_voice_message_received)
    bus.register(EventType.REACTION_RECEIVED, handle_reaction_received)
    bus.register(EventType.MESSAGE_SENT, handle_message_sent)
    bus.register(EventType.WORLD_JOINED, handle_world_joined)
    bus.register(EventType.ENTITY_JOINED, handle_entity_joined)
    bus.register(EventType.ENTITY_LEFT, handle_entity_left)
    bus.register(EventType.ACTION_STARTED, handle_action_started)
    bus.register(EventType.ACTION_COMPLETED, handle_action_completed)
    bus.register(EventType.EVALUATOR_STARTED, handle_evaluator_started)
    bus.register(EventType.EVALUATOR_COMPLETED, handle_evaluator_completed)
    bus.register(EventType.RUN_STARTED, handle_run_started)
    bus.register(EventType.RUN_ENDED, handle_run_ended)
