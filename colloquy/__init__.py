"""
Colloquy - context composition and action dispatch for conversational agents.

One agent instance, one process: inbound events go through an ordered event
bus, context is composed from pluggable providers, the model picks a chain
of named actions, and outbound content streams back through a callback.

All dependencies (store, model client, providers, actions) are injected
through the AgentContext.
"""

__version__ = "0.1.0"

# Agent context
from .runtime import AgentContext, agent_id_for, build_agent_context

# Core interfaces
from .persistence import (
    MemoryStore,
    InMemoryStore,
    PostgresStore,
    initialize_with_retries,
)
from .model_client import ModelClient, LLMModelClient, ModelType
from .events import EventBus
from .gating import ParticipantGate
from .channel import OutboundChannel, ChannelClosedError
from .providers import (
    Provider,
    ProviderRegistry,
    StateComposer,
    CharacterProvider,
    RecentMessagesProvider,
    TimeProvider,
    KnowledgeProvider,
    default_providers,
)
from .actions import (
    Action,
    ActionDecision,
    ActionDispatcher,
    ActionRegistry,
    Evaluator,
    ReplyAction,
    IgnoreAction,
    KnowledgeBaseAction,
    CurrentNewsAction,
    default_actions,
)
from .handlers import register_default_handlers
from .character import CharacterLoader, load_character
from .documents import memorize_document
from .prompts import PromptLibrary, PromptTemplate, DEFAULT_PROMPTS

# Data models
from .schemas import (
    ChannelType,
    Character,
    Content,
    Entity,
    EntityStatus,
    EntityPayload,
    EventType,
    Memory,
    MessagePayload,
    ProviderResult,
    Room,
    RunEventPayload,
    State,
    World,
    WorldPayload,
)
from .errors import (
    ColloquyError,
    StructuredOutputError,
    PersistenceError,
    DuplicateRecordError,
    ConstraintViolationError,
    TransientStoreError,
    StoreInitializationError,
    ModelInvocationError,
    ActionExecutionError,
)

__all__ = [
    "AgentContext",
    "agent_id_for",
    "build_agent_context",
    "MemoryStore",
    "InMemoryStore",
    "PostgresStore",
    "initialize_with_retries",
    "ModelClient",
    "LLMModelClient",
    "ModelType",
    "EventBus",
    "ParticipantGate",
    "OutboundChannel",
    "ChannelClosedError",
    "Provider",
    "ProviderRegistry",
    "StateComposer",
    "CharacterProvider",
    "RecentMessagesProvider",
    "TimeProvider",
    "KnowledgeProvider",
    "default_providers",
    "Action",
    "ActionDecision",
    "ActionDispatcher",
    "ActionRegistry",
    "Evaluator",
    "ReplyAction",
    "IgnoreAction",
    "KnowledgeBaseAction",
    "CurrentNewsAction",
    "default_actions",
    "register_default_handlers",
    "CharacterLoader",
    "load_character",
    "memorize_document",
    "PromptLibrary",
    "PromptTemplate",
    "DEFAULT_PROMPTS",
    "ChannelType",
    "Character",
    "Content",
    "Entity",
    "EntityStatus",
    "EntityPayload",
    "EventType",
    "Memory",
    "MessagePayload",
    "ProviderResult",
    "Room",
    "RunEventPayload",
    "State",
    "World",
    "WorldPayload",
    "ColloquyError",
    "StructuredOutputError",
    "PersistenceError",
    "DuplicateRecordError",
    "ConstraintViolationError",
    "TransientStoreError",
    "StoreInitializationError",
    "ModelInvocationError",
    "ActionExecutionError",
]
