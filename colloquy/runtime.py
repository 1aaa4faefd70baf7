"""Agent context: the explicit per-agent value passed to every provider,
action and event handler.

An ``AgentContext`` bundles the character, the memory store, the model
client, the provider and action registries, the event bus and the
participant gate. It is built once per agent instance and never rebuilt
mid-turn.

Examples:
    Minimal in-process agent with the built-in providers and actions:
        context = build_agent_context(load_character("eliza.json"))
        await context.start()

    Test agent with a scripted model and a seeded random source:
        context = build_agent_context(
            character,
            model=ScriptedModel(...),
            rng=random.Random(7),
        )
"""

from __future__ import annotations

import asyncio
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence
from uuid import NAMESPACE_DNS, UUID, uuid5

from .actions import Action, ActionDispatcher, ActionRegistry, Evaluator, default_actions
from .config import Config
from .documents import memorize_character_knowledge
from .errors import ConstraintViolationError, DuplicateRecordError
from .events import EventBus
from .gating import ParticipantGate
from .handlers import register_default_handlers
from .logging_utils import log_deterministic, log_success, log_warning
from .model_client import LLMModelClient, ModelClient, ModelResult, ModelType
from .persistence import InMemoryStore, MemoryStore, initialize_with_retries
from .providers import Provider, ProviderRegistry, StateComposer, default_providers
from .schemas import ChannelType, Character, Entity, Memory, Room, State, World


def agent_id_for(character: Character) -> UUID:
    """Stable agent id derived from the character name."""
    return uuid5(NAMESPACE_DNS, f"colloquy.agent.{character.name}")


@dataclass
class AgentContext:
    agent_id: UUID
    character: Character
    store: MemoryStore
    model: ModelClient
    providers: ProviderRegistry
    actions: ActionRegistry
    evaluators: List[Evaluator] = field(default_factory=list)
    bus: EventBus = field(default_factory=EventBus)
    rng: random.Random = field(default_factory=random.Random)
    conversation_length: int = Config.CONVERSATION_LENGTH
    knowledge_match_threshold: float = Config.KNOWLEDGE_MATCH_THRESHOLD
    knowledge_match_count: int = Config.KNOWLEDGE_MATCH_COUNT
    composer: StateComposer = field(init=False)
    dispatcher: ActionDispatcher = field(init=False)
    gate: ParticipantGate = field(init=False)
    _room_locks: Dict[UUID, asyncio.Lock] = field(default_factory=dict, init=False, repr=False)
    _room_lock_holders: Dict[UUID, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.composer = StateComposer(self.providers)
        self.dispatcher = ActionDispatcher(self.actions, self.evaluators)
        self.gate = ParticipantGate(self.store, self.agent_id)

    # ------------------------------------------------------------------
    # Facades used by providers and actions
    # ------------------------------------------------------------------

    async def compose_state(
        self,
        message: Memory,
        requested: Optional[Sequence[str]] = None,
        *,
        only_requested: bool = False,
    ) -> State:
        return await self.composer.compose(
            self, message, requested, only_requested=only_requested
        )

    async def use_model(self, kind: ModelType, *, prompt: str) -> ModelResult:
        return await self.model.use_model(kind, prompt=prompt)

    @asynccontextmanager
    async def room_lock(self, room_id: UUID) -> AsyncIterator[None]:
        """Hold the mutex serializing turns within one room.

        The lock is dropped once its last holder or waiter leaves, so idle
        rooms keep no state.
        """
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._room_locks[room_id] = lock
        self._room_lock_holders[room_id] = self._room_lock_holders.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._room_lock_holders[room_id] - 1
            if remaining:
                self._room_lock_holders[room_id] = remaining
            else:
                del self._room_lock_holders[room_id]
                del self._room_locks[room_id]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await initialize_with_retries(self.store)
        await self.ensure_agent_entity()
        if self.character.knowledge:
            await memorize_character_knowledge(self)
        log_success(f"Agent {self.character.name} ready ({self.agent_id})")

    async def stop(self) -> None:
        await self.store.close()

    async def ensure_agent_entity(self) -> None:
        names = [self.character.name]
        if self.character.username:
            names.append(self.character.username)
        entity = Entity(
            id=self.agent_id,
            names=names,
            agent_id=self.agent_id,
            metadata={"name": self.character.name, "username": self.character.username},
        )
        try:
            await self.store.create_entity(entity)
        except DuplicateRecordError:
            pass

    async def ensure_connection(
        self,
        *,
        entity_id: UUID,
        room_id: UUID,
        world_id: Optional[UUID] = None,
        names: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        channel_type: ChannelType = ChannelType.GROUP,
        room_name: Optional[str] = None,
        world_name: Optional[str] = None,
        server_id: Optional[str] = None,
    ) -> None:
        """Create-if-absent the world, room and entity, and join both parties to the room.

        Duplicate and constraint conditions mean another writer got there
        first; they are logged and the remaining steps still run.
        """

        if world_id is not None and await self.store.get_world(world_id) is None:
            await self._create_if_absent(
                self.store.create_world(
                    World(id=world_id, name=world_name, agent_id=self.agent_id, server_id=server_id)
                ),
                f"world {world_id}",
            )

        if await self.store.get_room(room_id) is None:
            await self._create_if_absent(
                self.store.create_room(
                    Room(
                        id=room_id,
                        name=room_name,
                        type=channel_type,
                        world_id=world_id,
                        agent_id=self.agent_id,
                        source=source,
                    )
                ),
                f"room {room_id}",
            )

        if entity_id != self.agent_id:
            await self.gate.mark_joined(entity_id, names=names, metadata=metadata)
        await self.ensure_agent_entity()

        for participant in (entity_id, self.agent_id):
            await self._create_if_absent(
                self.store.add_participant(room_id, participant),
                f"participant {participant} in room {room_id}",
            )
        log_deterministic(f"Connection ensured for entity {entity_id} in room {room_id}")

    @staticmethod
    async def _create_if_absent(write, label: str) -> None:
        try:
            await write
        except DuplicateRecordError:
            pass
        except ConstraintViolationError as exc:
            log_warning(f"Skipping {label}: {exc.detail}")


def build_agent_context(
    character: Character,
    *,
    store: Optional[MemoryStore] = None,
    model: Optional[ModelClient] = None,
    providers: Optional[Iterable[Provider]] = None,
    actions: Optional[Iterable[Action]] = None,
    evaluators: Optional[Iterable[Evaluator]] = None,
    rng: Optional[random.Random] = None,
    agent_id: Optional[UUID] = None,
    register_handlers: bool = True,
) -> AgentContext:
    """Assemble an AgentContext with the built-in providers, actions and handlers.

    Anything not supplied falls back to the defaults: InMemoryStore, an
    LLMModelClient using the character's system prompt, and the built-in
    provider/action sets.
    """

    context = AgentContext(
        agent_id=agent_id or agent_id_for(character),
        character=character,
        store=store or InMemoryStore(),
        model=model or LLMModelClient(system_prompt=character.system),
        providers=ProviderRegistry(default_providers() if providers is None else providers),
        actions=ActionRegistry(default_actions() if actions is None else actions),
        evaluators=list(evaluators or ()),
        rng=rng or random.Random(),
    )

    if register_handlers:
        register_default_handlers(context.bus)

    return context
