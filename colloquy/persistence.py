"""
MemoryStore interface for pluggable conversation storage.

This module provides the abstract MemoryStore facade the pipeline reads and
writes through, plus two implementations:

1. InMemoryStore - Dict-based storage, data lost on exit (tests, single process)
2. PostgresStore - asyncpg-backed storage with pgvector similarity search

Key responsibilities:
- Persist messages, reactions and documents (Memory records) per table
- Track entities, rooms, worlds and room participation
- Vector similarity search over stored embeddings
- Report duplicate/constraint conditions as typed errors so callers can
  treat re-applied writes as already done

Every mutation is an idempotent upsert or raises DuplicateRecordError, so
initialization code and test harnesses may retry freely.

Usage pattern:
    store = InMemoryStore()  # or PostgresStore(database_url)
    await initialize_with_retries(store)
    await store.create_memory(message, "messages")
    await store.close()
"""

import asyncio
import json
import math
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID

import asyncpg
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .config import Config
from .errors import (
    ConstraintViolationError,
    DuplicateRecordError,
    StoreInitializationError,
    TransientStoreError,
)
from .logging_utils import log_error, log_success, log_warning
from .schemas import Content, Entity, EntityStatus, Memory, Room, World


class MemoryStore(ABC):
    """Abstract base class for conversation storage backends.

    All methods are async so database backends never block the event loop.
    Read methods return ``None``/empty lists for missing records; write
    methods raise the typed errors from ``colloquy.errors``.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and run migrations. Raises TransientStoreError when not ready."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Return True when the backend can serve queries."""

    # Memories -------------------------------------------------------------

    @abstractmethod
    async def get_memories(
        self,
        *,
        table_name: str,
        room_id: Optional[UUID] = None,
        agent_id: Optional[UUID] = None,
        entity_id: Optional[UUID] = None,
        count: Optional[int] = None,
    ) -> List[Memory]:
        """Return memories matching the filter, most recent first."""

    @abstractmethod
    async def get_memories_by_room_ids(
        self,
        *,
        table_name: str,
        room_ids: Sequence[UUID],
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """Return memories from any of ``room_ids``, most recent first."""

    @abstractmethod
    async def get_memory_by_id(self, memory_id: UUID, *, table_name: str) -> Optional[Memory]:
        pass

    @abstractmethod
    async def create_memory(self, memory: Memory, table_name: str) -> UUID:
        """Store a memory. Raises DuplicateRecordError when the id exists."""

    @abstractmethod
    async def search_memories_by_embedding(
        self,
        embedding: Sequence[float],
        *,
        table_name: str,
        match_threshold: float,
        count: int,
        agent_id: Optional[UUID] = None,
        room_id: Optional[UUID] = None,
    ) -> List[Memory]:
        """Return up to ``count`` memories with cosine similarity >= threshold, best first."""

    # Entities -------------------------------------------------------------

    @abstractmethod
    async def get_entity_by_id(self, entity_id: UUID) -> Optional[Entity]:
        pass

    @abstractmethod
    async def create_entity(self, entity: Entity) -> None:
        """Create an entity. Raises DuplicateRecordError when it exists."""

    @abstractmethod
    async def update_entity(self, entity: Entity) -> None:
        """Upsert an entity record."""

    @abstractmethod
    async def get_entities_for_room(self, room_id: UUID) -> List[Entity]:
        pass

    # Rooms & worlds -------------------------------------------------------

    @abstractmethod
    async def get_room(self, room_id: UUID) -> Optional[Room]:
        pass

    @abstractmethod
    async def create_room(self, room: Room) -> None:
        """Create a room. Raises DuplicateRecordError when it exists."""

    @abstractmethod
    async def get_rooms_for_participants(self, entity_ids: Sequence[UUID]) -> List[UUID]:
        """Return ids of rooms in which every given entity participates."""

    @abstractmethod
    async def add_participant(self, room_id: UUID, entity_id: UUID) -> None:
        """Add an entity to a room (no-op when present).

        Raises ConstraintViolationError when the room or entity does not exist.
        """

    @abstractmethod
    async def get_world(self, world_id: UUID) -> Optional[World]:
        pass

    @abstractmethod
    async def create_world(self, world: World) -> None:
        """Create a world. Raises DuplicateRecordError when it exists."""

    # Participant state ----------------------------------------------------

    @abstractmethod
    async def get_participant_user_state(
        self, room_id: UUID, entity_id: UUID
    ) -> Optional[EntityStatus]:
        pass

    @abstractmethod
    async def set_participant_user_state(
        self, room_id: UUID, entity_id: UUID, state: Optional[EntityStatus]
    ) -> None:
        pass


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is empty or zero."""

    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryStore(MemoryStore):
    """In-memory store using Python dicts (no database, no files).

    Storage structure:
    - memories: Dict[table, Dict[memory_id, Memory]] (insertion ordered)
    - entities / rooms / worlds: Dict[id, record]
    - participant_states: Dict[(room_id, entity_id), EntityStatus]

    Records are copied on the way in and out so callers can never mutate
    stored state by accident.
    """

    def __init__(self) -> None:
        self.memories: Dict[str, Dict[UUID, Memory]] = {}
        self.entities: Dict[UUID, Entity] = {}
        self.rooms: Dict[UUID, Room] = {}
        self.worlds: Dict[UUID, World] = {}
        self.participant_states: Dict[Tuple[UUID, UUID], EntityStatus] = {}
        self._connected = False

    async def initialize(self) -> None:
        self._connected = True

    async def close(self) -> None:
        # Data is kept after close so tests can inspect it.
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def get_memories(
        self,
        *,
        table_name: str,
        room_id: Optional[UUID] = None,
        agent_id: Optional[UUID] = None,
        entity_id: Optional[UUID] = None,
        count: Optional[int] = None,
    ) -> List[Memory]:
        rows = [
            memory
            for memory in self.memories.get(table_name, {}).values()
            if (room_id is None or memory.room_id == room_id)
            and (agent_id is None or memory.agent_id == agent_id)
            and (entity_id is None or memory.entity_id == entity_id)
        ]
        rows = _most_recent_first(rows)
        return rows[:count] if count is not None else rows

    async def get_memories_by_room_ids(
        self,
        *,
        table_name: str,
        room_ids: Sequence[UUID],
        limit: Optional[int] = None,
    ) -> List[Memory]:
        wanted = set(room_ids)
        if not wanted:
            return []
        rows = [
            memory
            for memory in self.memories.get(table_name, {}).values()
            if memory.room_id in wanted
        ]
        rows = _most_recent_first(rows)
        return rows[:limit] if limit is not None else rows

    async def get_memory_by_id(self, memory_id: UUID, *, table_name: str) -> Optional[Memory]:
        return self.memories.get(table_name, {}).get(memory_id)

    async def create_memory(self, memory: Memory, table_name: str) -> UUID:
        table = self.memories.setdefault(table_name, {})
        if memory.id in table:
            raise DuplicateRecordError(table_name, memory.id)
        table[memory.id] = memory
        return memory.id

    async def search_memories_by_embedding(
        self,
        embedding: Sequence[float],
        *,
        table_name: str,
        match_threshold: float,
        count: int,
        agent_id: Optional[UUID] = None,
        room_id: Optional[UUID] = None,
    ) -> List[Memory]:
        scored: List[Tuple[float, Memory]] = []
        for memory in self.memories.get(table_name, {}).values():
            if agent_id is not None and memory.agent_id != agent_id:
                continue
            if room_id is not None and memory.room_id != room_id:
                continue
            if not memory.embedding:
                continue
            similarity = cosine_similarity(embedding, memory.embedding)
            if similarity >= match_threshold:
                scored.append((similarity, memory))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [memory for _, memory in scored[:count]]

    async def get_entity_by_id(self, entity_id: UUID) -> Optional[Entity]:
        entity = self.entities.get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    async def create_entity(self, entity: Entity) -> None:
        if entity.id in self.entities:
            raise DuplicateRecordError("entities", entity.id)
        self.entities[entity.id] = entity.model_copy(deep=True)

    async def update_entity(self, entity: Entity) -> None:
        self.entities[entity.id] = entity.model_copy(deep=True)

    async def get_entities_for_room(self, room_id: UUID) -> List[Entity]:
        room = self.rooms.get(room_id)
        if room is None:
            return []
        return [
            self.entities[entity_id].model_copy(deep=True)
            for entity_id in room.participant_ids
            if entity_id in self.entities
        ]

    async def get_room(self, room_id: UUID) -> Optional[Room]:
        room = self.rooms.get(room_id)
        return room.model_copy(deep=True) if room else None

    async def create_room(self, room: Room) -> None:
        if room.id in self.rooms:
            raise DuplicateRecordError("rooms", room.id)
        if room.world_id is not None and room.world_id not in self.worlds:
            raise ConstraintViolationError("rooms", f"world {room.world_id} does not exist")
        self.rooms[room.id] = room.model_copy(deep=True)

    async def get_rooms_for_participants(self, entity_ids: Sequence[UUID]) -> List[UUID]:
        wanted: Set[UUID] = set(entity_ids)
        return [
            room.id
            for room in self.rooms.values()
            if wanted and wanted.issubset(room.participant_ids)
        ]

    async def add_participant(self, room_id: UUID, entity_id: UUID) -> None:
        room = self.rooms.get(room_id)
        if room is None:
            raise ConstraintViolationError("participants", f"room {room_id} does not exist")
        if entity_id not in self.entities:
            raise ConstraintViolationError("participants", f"entity {entity_id} does not exist")
        if entity_id not in room.participant_ids:
            room.participant_ids.append(entity_id)

    async def get_world(self, world_id: UUID) -> Optional[World]:
        world = self.worlds.get(world_id)
        return world.model_copy(deep=True) if world else None

    async def create_world(self, world: World) -> None:
        if world.id in self.worlds:
            raise DuplicateRecordError("worlds", world.id)
        self.worlds[world.id] = world.model_copy(deep=True)

    async def get_participant_user_state(
        self, room_id: UUID, entity_id: UUID
    ) -> Optional[EntityStatus]:
        return self.participant_states.get((room_id, entity_id))

    async def set_participant_user_state(
        self, room_id: UUID, entity_id: UUID, state: Optional[EntityStatus]
    ) -> None:
        if state is None:
            self.participant_states.pop((room_id, entity_id), None)
        else:
            self.participant_states[(room_id, entity_id)] = state


def _most_recent_first(rows: Iterable[Memory]) -> List[Memory]:
    # Stable sort keeps insertion order for identical timestamps.
    indexed = list(enumerate(rows))
    indexed.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
    return [memory for _, memory in indexed]


# ============================================================================
# PostgreSQL
# ============================================================================

SCHEMA_STATEMENTS = [
    "CREATE EXTENSION IF NOT EXISTS vector",
    """
    CREATE TABLE IF NOT EXISTS worlds (
        id UUID PRIMARY KEY,
        name TEXT,
        agent_id UUID,
        server_id TEXT,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rooms (
        id UUID PRIMARY KEY,
        name TEXT,
        type TEXT NOT NULL,
        world_id UUID REFERENCES worlds(id),
        agent_id UUID,
        source TEXT,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entities (
        id UUID PRIMARY KEY,
        names TEXT[] NOT NULL DEFAULT '{}',
        agent_id UUID,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS participants (
        room_id UUID NOT NULL REFERENCES rooms(id),
        entity_id UUID NOT NULL REFERENCES entities(id),
        user_state TEXT,
        PRIMARY KEY (room_id, entity_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memories (
        id UUID PRIMARY KEY,
        table_name TEXT NOT NULL,
        room_id UUID NOT NULL,
        entity_id UUID NOT NULL,
        agent_id UUID NOT NULL,
        content JSONB NOT NULL,
        embedding vector,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS memories_room_idx ON memories (table_name, room_id, created_at DESC)",
]

_CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)


def _vector_literal(embedding: Optional[Sequence[float]]) -> Optional[str]:
    if embedding is None:
        return None
    return "[" + ",".join(repr(float(value)) for value in embedding) + "]"


def _parse_vector(raw: Optional[str]) -> Optional[List[float]]:
    if raw is None:
        return None
    text = str(raw).strip("[]")
    return [float(part) for part in text.split(",") if part]


def _row_to_memory(row) -> Memory:
    content = row["content"]
    metadata = row["metadata"]
    return Memory(
        id=row["id"],
        room_id=row["room_id"],
        entity_id=row["entity_id"],
        agent_id=row["agent_id"],
        content=Content.model_validate_json(content) if isinstance(content, str) else Content.model_validate(content),
        embedding=_parse_vector(row["embedding"]),
        metadata=json.loads(metadata) if isinstance(metadata, str) else (metadata or {}),
        created_at=row["created_at"],
    )


class PostgresStore(MemoryStore):
    """PostgreSQL-backed store using an asyncpg connection pool.

    Driver errors are translated at this boundary:
    - UniqueViolationError -> DuplicateRecordError
    - ForeignKeyViolationError -> ConstraintViolationError
    - connection failures -> TransientStoreError

    Similarity search requires the pgvector extension; embeddings are sent
    as vector literals and compared with the cosine-distance operator.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or Config.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self.pool is None:
            try:
                self.pool = await asyncpg.create_pool(self.database_url)
            except _CONNECTION_ERRORS as exc:
                raise TransientStoreError(f"Could not connect to {self.database_url}: {exc}") from exc

        try:
            async with self.pool.acquire() as conn:
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS) as exc:
            raise TransientStoreError(f"Schema migration failed: {exc}") from exc

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    def is_connected(self) -> bool:
        return self.pool is not None

    async def _execute(self, table: str, query: str, *args) -> None:
        assert self.pool is not None, "Store not initialized"
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(query, *args)
        except asyncpg.exceptions.UniqueViolationError as exc:
            raise DuplicateRecordError(table, args[0] if args else None) from exc
        except asyncpg.exceptions.ForeignKeyViolationError as exc:
            raise ConstraintViolationError(table, str(exc.detail or exc)) from exc
        except _CONNECTION_ERRORS as exc:
            raise TransientStoreError(str(exc)) from exc

    async def _fetch(self, query: str, *args) -> list:
        assert self.pool is not None, "Store not initialized"
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except _CONNECTION_ERRORS as exc:
            raise TransientStoreError(str(exc)) from exc

    async def get_memories(
        self,
        *,
        table_name: str,
        room_id: Optional[UUID] = None,
        agent_id: Optional[UUID] = None,
        entity_id: Optional[UUID] = None,
        count: Optional[int] = None,
    ) -> List[Memory]:
        query = """
            SELECT id, room_id, entity_id, agent_id, content, embedding::text AS embedding, metadata, created_at
            FROM memories
            WHERE table_name = $1
              AND ($2::uuid IS NULL OR room_id = $2)
              AND ($3::uuid IS NULL OR agent_id = $3)
              AND ($4::uuid IS NULL OR entity_id = $4)
            ORDER BY created_at DESC
            LIMIT $5
        """
        rows = await self._fetch(query, table_name, room_id, agent_id, entity_id, count)
        return [_row_to_memory(row) for row in rows]

    async def get_memories_by_room_ids(
        self,
        *,
        table_name: str,
        room_ids: Sequence[UUID],
        limit: Optional[int] = None,
    ) -> List[Memory]:
        if not room_ids:
            return []
        query = """
            SELECT id, room_id, entity_id, agent_id, content, embedding::text AS embedding, metadata, created_at
            FROM memories
            WHERE table_name = $1 AND room_id = ANY($2::uuid[])
            ORDER BY created_at DESC
            LIMIT $3
        """
        rows = await self._fetch(query, table_name, list(room_ids), limit)
        return [_row_to_memory(row) for row in rows]

    async def get_memory_by_id(self, memory_id: UUID, *, table_name: str) -> Optional[Memory]:
        query = """
            SELECT id, room_id, entity_id, agent_id, content, embedding::text AS embedding, metadata, created_at
            FROM memories
            WHERE table_name = $1 AND id = $2
        """
        rows = await self._fetch(query, table_name, memory_id)
        return _row_to_memory(rows[0]) if rows else None

    async def create_memory(self, memory: Memory, table_name: str) -> UUID:
        query = """
            INSERT INTO memories (id, table_name, room_id, entity_id, agent_id, content, embedding, metadata, created_at)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::vector, $8::jsonb, $9)
        """
        await self._execute(
            table_name,
            query,
            memory.id,
            table_name,
            memory.room_id,
            memory.entity_id,
            memory.agent_id,
            memory.content.model_dump_json(),
            _vector_literal(memory.embedding),
            json.dumps(memory.metadata, default=str),
            memory.created_at,
        )
        return memory.id

    async def search_memories_by_embedding(
        self,
        embedding: Sequence[float],
        *,
        table_name: str,
        match_threshold: float,
        count: int,
        agent_id: Optional[UUID] = None,
        room_id: Optional[UUID] = None,
    ) -> List[Memory]:
        query = """
            SELECT id, room_id, entity_id, agent_id, content, embedding::text AS embedding, metadata, created_at,
                   1 - (embedding <=> $2::vector) AS similarity
            FROM memories
            WHERE table_name = $1
              AND embedding IS NOT NULL
              AND ($3::uuid IS NULL OR agent_id = $3)
              AND ($4::uuid IS NULL OR room_id = $4)
              AND 1 - (embedding <=> $2::vector) >= $5
            ORDER BY similarity DESC
            LIMIT $6
        """
        rows = await self._fetch(
            query,
            table_name,
            _vector_literal(embedding),
            agent_id,
            room_id,
            match_threshold,
            count,
        )
        return [_row_to_memory(row) for row in rows]

    async def get_entity_by_id(self, entity_id: UUID) -> Optional[Entity]:
        rows = await self._fetch(
            "SELECT id, names, agent_id, metadata FROM entities WHERE id = $1", entity_id
        )
        if not rows:
            return None
        row = rows[0]
        metadata = row["metadata"]
        return Entity(
            id=row["id"],
            names=list(row["names"] or []),
            agent_id=row["agent_id"],
            metadata=json.loads(metadata) if isinstance(metadata, str) else (metadata or {}),
        )

    async def create_entity(self, entity: Entity) -> None:
        await self._execute(
            "entities",
            "INSERT INTO entities (id, names, agent_id, metadata) VALUES ($1, $2::text[], $3, $4::jsonb)",
            entity.id,
            entity.names,
            entity.agent_id,
            json.dumps(entity.metadata, default=str),
        )

    async def update_entity(self, entity: Entity) -> None:
        query = """
            INSERT INTO entities (id, names, agent_id, metadata)
            VALUES ($1, $2::text[], $3, $4::jsonb)
            ON CONFLICT (id) DO UPDATE SET names = $2::text[], agent_id = $3, metadata = $4::jsonb
        """
        await self._execute(
            "entities",
            query,
            entity.id,
            entity.names,
            entity.agent_id,
            json.dumps(entity.metadata, default=str),
        )

    async def get_entities_for_room(self, room_id: UUID) -> List[Entity]:
        rows = await self._fetch(
            """
            SELECT e.id, e.names, e.agent_id, e.metadata
            FROM participants p JOIN entities e ON e.id = p.entity_id
            WHERE p.room_id = $1
            """,
            room_id,
        )
        entities = []
        for row in rows:
            metadata = row["metadata"]
            entities.append(
                Entity(
                    id=row["id"],
                    names=list(row["names"] or []),
                    agent_id=row["agent_id"],
                    metadata=json.loads(metadata) if isinstance(metadata, str) else (metadata or {}),
                )
            )
        return entities

    async def get_room(self, room_id: UUID) -> Optional[Room]:
        rows = await self._fetch(
            "SELECT id, name, type, world_id, agent_id, source, metadata FROM rooms WHERE id = $1",
            room_id,
        )
        if not rows:
            return None
        row = rows[0]
        participant_rows = await self._fetch(
            "SELECT entity_id FROM participants WHERE room_id = $1", room_id
        )
        metadata = row["metadata"]
        return Room(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            world_id=row["world_id"],
            agent_id=row["agent_id"],
            source=row["source"],
            participant_ids=[p["entity_id"] for p in participant_rows],
            metadata=json.loads(metadata) if isinstance(metadata, str) else (metadata or {}),
        )

    async def create_room(self, room: Room) -> None:
        await self._execute(
            "rooms",
            """
            INSERT INTO rooms (id, name, type, world_id, agent_id, source, metadata)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            """,
            room.id,
            room.name,
            room.type.value,
            room.world_id,
            room.agent_id,
            room.source,
            json.dumps(room.metadata, default=str),
        )
        for entity_id in room.participant_ids:
            await self.add_participant(room.id, entity_id)

    async def get_rooms_for_participants(self, entity_ids: Sequence[UUID]) -> List[UUID]:
        wanted = list(dict.fromkeys(entity_ids))
        if not wanted:
            return []
        rows = await self._fetch(
            """
            SELECT room_id FROM participants
            WHERE entity_id = ANY($1::uuid[])
            GROUP BY room_id
            HAVING COUNT(DISTINCT entity_id) = $2
            """,
            wanted,
            len(wanted),
        )
        return [row["room_id"] for row in rows]

    async def add_participant(self, room_id: UUID, entity_id: UUID) -> None:
        await self._execute(
            "participants",
            """
            INSERT INTO participants (room_id, entity_id) VALUES ($1, $2)
            ON CONFLICT (room_id, entity_id) DO NOTHING
            """,
            room_id,
            entity_id,
        )

    async def get_world(self, world_id: UUID) -> Optional[World]:
        rows = await self._fetch(
            "SELECT id, name, agent_id, server_id, metadata FROM worlds WHERE id = $1", world_id
        )
        if not rows:
            return None
        row = rows[0]
        metadata = row["metadata"]
        return World(
            id=row["id"],
            name=row["name"],
            agent_id=row["agent_id"],
            server_id=row["server_id"],
            metadata=json.loads(metadata) if isinstance(metadata, str) else (metadata or {}),
        )

    async def create_world(self, world: World) -> None:
        await self._execute(
            "worlds",
            "INSERT INTO worlds (id, name, agent_id, server_id, metadata) VALUES ($1, $2, $3, $4, $5::jsonb)",
            world.id,
            world.name,
            world.agent_id,
            world.server_id,
            json.dumps(world.metadata, default=str),
        )

    async def get_participant_user_state(
        self, room_id: UUID, entity_id: UUID
    ) -> Optional[EntityStatus]:
        rows = await self._fetch(
            "SELECT user_state FROM participants WHERE room_id = $1 AND entity_id = $2",
            room_id,
            entity_id,
        )
        if not rows or rows[0]["user_state"] is None:
            return None
        return EntityStatus(rows[0]["user_state"])

    async def set_participant_user_state(
        self, room_id: UUID, entity_id: UUID, state: Optional[EntityStatus]
    ) -> None:
        await self._execute(
            "participants",
            "UPDATE participants SET user_state = $3 WHERE room_id = $1 AND entity_id = $2",
            room_id,
            entity_id,
            state.value if state else None,
        )


async def initialize_with_retries(
    store: MemoryStore,
    *,
    attempts: Optional[int] = None,
    wait_seconds: float = 1.0,
) -> None:
    """Initialize a store, retrying transient failures a bounded number of times.

    After the last failed attempt the store is used anyway if it reports a
    usable connection (e.g. a migration step raced another process);
    otherwise StoreInitializationError is raised.
    """

    max_attempts = attempts or Config.STORE_INIT_ATTEMPTS
    attempt_number = 0
    last_error: Optional[BaseException] = None

    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TransientStoreError),
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(wait_seconds),
            reraise=True,
        ):
            with attempt:
                attempt_number += 1
                try:
                    await store.initialize()
                except TransientStoreError as exc:
                    last_error = exc
                    log_warning(
                        f"Store initialization attempt {attempt_number}/{max_attempts} failed: {exc}"
                    )
                    raise
    except TransientStoreError:
        if store.is_connected():
            log_warning(
                "Max initialization attempts reached, but a store connection exists. Proceeding anyway."
            )
            return
        log_error(f"Store initialization failed after {max_attempts} attempts")
        raise StoreInitializationError(attempts=max_attempts, underlying=last_error)

    log_success(f"Memory store ready ({type(store).__name__})")
