"""
Pydantic schemas for the Colloquy conversational pipeline.

All data structures exchanged between the event bus, the state composer,
the action dispatcher, and the memory store are defined here.

Design Philosophy:
- Records that are persisted (Memory, Entity, Room, World) are plain models
  that serialize cleanly to JSON for any store backend
- Messages are immutable once created (frozen models); superseding records
  are new messages, never in-place edits
- State is rebuilt every turn and never persisted
- Metadata fields carry platform-specific extensions without schema changes
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(utc_now().timestamp() * 1000)


# ============================================================================
# Conversation Records
# ============================================================================


class ChannelType(str, Enum):
    """Kind of conversation channel a room represents.

    FEED and THREAD rooms render history as posts instead of chat lines.
    """

    DIRECT = "direct"
    GROUP = "group"
    FEED = "feed"
    THREAD = "thread"

    @property
    def is_post_format(self) -> bool:
        return self in (ChannelType.FEED, ChannelType.THREAD)


class EntityStatus(str, Enum):
    """Participation status stored in an entity's metadata."""

    ACTIVE = "ACTIVE"
    MUTED = "MUTED"
    INACTIVE = "INACTIVE"


class Content(BaseModel):
    """Payload of a message: text plus optional structured tags.

    ``actions`` carries the action names the agent attached to its own
    outbound messages; ``providers`` lets an inbound message request extra
    (dynamic) context providers for its turn.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    text: str = Field("", description="Natural-language body")
    thought: Optional[str] = Field(None, description="Agent's private rationale")
    actions: List[str] = Field(default_factory=list, description="Action tags")
    providers: List[str] = Field(
        default_factory=list, description="Providers requested for this turn"
    )
    reaction: bool = Field(False, description="True when this message is a reaction")
    referenced_message_id: Optional[UUID] = Field(
        None, description="Message this one reacts or replies to"
    )
    channel_type: Optional[ChannelType] = Field(None, description="Channel hint from the client")
    source: Optional[str] = Field(None, description="Originating platform")


class Memory(BaseModel):
    """A persisted conversational record (message, reaction, or document).

    Memories are immutable after creation. Anything that would change a
    memory is recorded as a new memory instead.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4, description="Unique memory identifier")
    room_id: UUID = Field(..., description="Room the record belongs to")
    entity_id: UUID = Field(..., description="Entity that produced the record")
    agent_id: UUID = Field(..., description="Agent instance owning the record")
    content: Content = Field(default_factory=Content)
    # Populated lazily by the knowledge pipeline; None for plain chat lines
    embedding: Optional[List[float]] = Field(None, description="Embedding vector")
    # Platform details (source, entityName, username, ...)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class Room(BaseModel):
    """A conversation channel grouping entities and messages."""

    id: UUID = Field(default_factory=uuid4)
    name: Optional[str] = None
    type: ChannelType = ChannelType.GROUP
    world_id: Optional[UUID] = None
    agent_id: Optional[UUID] = None
    source: Optional[str] = None
    participant_ids: List[UUID] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Entity(BaseModel):
    """A participant (human or agent) known to the system.

    Entities are created on first contact and updated in place. The
    ``metadata["status"]`` slot holds the participation status and
    ``metadata["leftAt"]`` the epoch-millisecond time the entity left.
    """

    id: UUID = Field(default_factory=uuid4)
    names: List[str] = Field(default_factory=list)
    agent_id: Optional[UUID] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def status(self) -> EntityStatus:
        raw = self.metadata.get("status")
        try:
            return EntityStatus(raw) if raw else EntityStatus.ACTIVE
        except ValueError:
            return EntityStatus.ACTIVE

    @property
    def display_name(self) -> str:
        for key in ("entityName", "displayName", "username", "name"):
            value = self.metadata.get(key)
            if value:
                return str(value)
        return self.names[0] if self.names else "unknown"


class World(BaseModel):
    """A server/guild grouping rooms on a platform."""

    id: UUID = Field(default_factory=uuid4)
    name: Optional[str] = None
    agent_id: Optional[UUID] = None
    server_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Per-turn Context
# ============================================================================


class ProviderResult(BaseModel):
    """Contribution of a single provider to the composed state."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    values: Dict[str, str] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)
    text: str = ""


class State(BaseModel):
    """Ephemeral context composed for one turn.

    - values: human-readable fragments for ``{{key}}`` prompt interpolation
    - data: structured results for programmatic reuse by actions
    - text: the fully assembled prompt-context string

    State is frozen; actions that need more context compose a new one.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    values: Dict[str, str] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)
    text: str = ""


# ============================================================================
# Character Configuration
# ============================================================================


class CharacterStyle(BaseModel):
    all: List[str] = Field(default_factory=list)
    chat: List[str] = Field(default_factory=list)
    post: List[str] = Field(default_factory=list)


class ExampleMessage(BaseModel):
    """One line of a message example; ``name`` may be a ``{{nameN}}`` placeholder."""

    name: str
    content: Content = Field(default_factory=Content)


class Character(BaseModel):
    """Personality and prompt configuration for one agent.

    Accepts the camelCase keys used by character JSON files
    (``messageExamples``, ``postExamples``).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    username: Optional[str] = None
    system: str = ""
    bio: Union[str, List[str]] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    adjectives: List[str] = Field(default_factory=list)
    style: CharacterStyle = Field(default_factory=CharacterStyle)
    message_examples: List[List[ExampleMessage]] = Field(
        default_factory=list, alias="messageExamples"
    )
    post_examples: List[str] = Field(default_factory=list, alias="postExamples")
    # Plain-string entries are memorized into the documents table on start;
    # path entries ({"path": ...}) are left to external loaders
    knowledge: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)
    # Overrides for entries in the default prompt library, keyed by template name
    templates: Dict[str, str] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Events
# ============================================================================


class EventType(str, Enum):
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    VOICE_MESSAGE_RECEIVED = "VOICE_MESSAGE_RECEIVED"
    REACTION_RECEIVED = "REACTION_RECEIVED"
    MESSAGE_SENT = "MESSAGE_SENT"
    WORLD_JOINED = "WORLD_JOINED"
    ENTITY_JOINED = "ENTITY_JOINED"
    ENTITY_LEFT = "ENTITY_LEFT"
    ACTION_STARTED = "ACTION_STARTED"
    ACTION_COMPLETED = "ACTION_COMPLETED"
    EVALUATOR_STARTED = "EVALUATOR_STARTED"
    EVALUATOR_COMPLETED = "EVALUATOR_COMPLETED"
    RUN_STARTED = "RUN_STARTED"
    RUN_ENDED = "RUN_ENDED"


# Outbound content sink handed to actions. May be called zero or more times.
HandlerCallback = Callable[[Content], Awaitable[Any]]


class EventPayload(BaseModel):
    """Fields common to every event payload.

    ``context`` is the AgentContext that owns the bus; typed loosely to keep
    schemas free of runtime imports.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    context: Any = None
    source: str = "unknown"


class MessagePayload(EventPayload):
    message: Memory
    callback: Optional[HandlerCallback] = None


class EntityPayload(EventPayload):
    entity_id: UUID
    world_id: Optional[UUID] = None
    room_id: Optional[UUID] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorldPayload(EventPayload):
    world: World
    rooms: List[Room] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)


class ActionEventPayload(EventPayload):
    action_id: UUID = Field(default_factory=uuid4)
    action_name: str
    room_id: Optional[UUID] = None
    message_id: Optional[UUID] = None
    start_time: Optional[int] = None
    completed: Optional[bool] = None
    error: Optional[str] = None


class EvaluatorEventPayload(EventPayload):
    evaluator_id: UUID = Field(default_factory=uuid4)
    evaluator_name: str
    start_time: Optional[int] = None
    completed: Optional[bool] = None
    error: Optional[str] = None


class RunEventPayload(EventPayload):
    """Lifecycle record for a single turn (one inbound message)."""

    run_id: UUID = Field(default_factory=uuid4)
    message_id: Optional[UUID] = None
    room_id: Optional[UUID] = None
    entity_id: Optional[UUID] = None
    start_time: int = Field(default_factory=now_ms)
    # started | success | error
    status: str = "started"
    end_time: Optional[int] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
