"""Participant gating: decides whether a turn may dispatch actions at all.

Entity-level states, stored in ``Entity.metadata["status"]``::

    (first contact) -> ACTIVE
    ACTIVE   --mute()-->        MUTED      external command
    MUTED    --unmute()-->      ACTIVE     external command
    any      --mark_left()-->   INACTIVE   ENTITY_LEFT, sets leftAt
    INACTIVE --mark_joined()--> ACTIVE     ENTITY_JOINED / ensure-connection

Joining never lifts a mute. Every transition is an idempotent upsert;
re-applying it is a no-op update, never a conflict.

The agent itself may additionally be muted per room through the participant
state table (``mute_room``). Messages are always stored; gating only
decides whether the decision model runs and whether anything is sent.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from .logging_utils import log_deterministic, log_warning
from .persistence import MemoryStore
from .schemas import Entity, EntityStatus, Memory, now_ms


class ParticipantGate:
    def __init__(self, store: MemoryStore, agent_id: UUID) -> None:
        self.store = store
        self.agent_id = agent_id

    async def status(self, entity_id: UUID) -> EntityStatus:
        entity = await self.store.get_entity_by_id(entity_id)
        return entity.status if entity is not None else EntityStatus.ACTIVE

    async def should_dispatch(self, message: Memory) -> bool:
        """Return False when the sender is MUTED/INACTIVE or the agent is muted in the room."""
        sender_status = await self.status(message.entity_id)
        if sender_status != EntityStatus.ACTIVE:
            log_deterministic(f"Entity {message.entity_id} is {sender_status.value}; not responding")
            return False

        room_state = await self.store.get_participant_user_state(message.room_id, self.agent_id)
        if room_state == EntityStatus.MUTED:
            log_deterministic(f"Agent is muted in room {message.room_id}; not responding")
            return False
        return True

    async def _set_status(
        self,
        entity: Entity,
        status: EntityStatus,
        **extra: Any,
    ) -> Entity:
        metadata: Dict[str, Any] = dict(entity.metadata)
        metadata["status"] = status.value
        metadata.update(extra)
        if status != EntityStatus.INACTIVE:
            metadata.pop("leftAt", None)
        updated = entity.model_copy(update={"metadata": metadata})
        await self.store.update_entity(updated)
        return updated

    async def mark_joined(
        self,
        entity_id: UUID,
        *,
        names: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Entity:
        entity = await self.store.get_entity_by_id(entity_id)
        if entity is None:
            entity = Entity(
                id=entity_id,
                names=list(names or []),
                agent_id=self.agent_id,
                metadata={**(metadata or {}), "status": EntityStatus.ACTIVE.value},
            )
            await self.store.update_entity(entity)
            return entity

        if metadata:
            entity = entity.model_copy(update={"metadata": {**entity.metadata, **metadata}})
        known = list(entity.names)
        known.extend(name for name in names or () if name not in known)
        entity = entity.model_copy(update={"names": known})

        # A join re-activates a departed entity but never lifts a mute.
        if entity.status == EntityStatus.MUTED:
            return await self._set_status(entity, EntityStatus.MUTED)
        return await self._set_status(entity, EntityStatus.ACTIVE)

    async def mark_left(self, entity_id: UUID) -> Optional[Entity]:
        """Mark the entity INACTIVE. Returns None, without writing, when it is unknown."""
        entity = await self.store.get_entity_by_id(entity_id)
        if entity is None:
            log_warning(f"Entity {entity_id} not found; nothing to mark as left")
            return None
        return await self._set_status(entity, EntityStatus.INACTIVE, leftAt=now_ms())

    async def mute(self, entity_id: UUID) -> Entity:
        entity = await self.store.get_entity_by_id(entity_id)
        if entity is None:
            entity = Entity(id=entity_id, agent_id=self.agent_id)
        return await self._set_status(entity, EntityStatus.MUTED)

    async def unmute(self, entity_id: UUID) -> Optional[Entity]:
        entity = await self.store.get_entity_by_id(entity_id)
        if entity is None or entity.status != EntityStatus.MUTED:
            return entity
        return await self._set_status(entity, EntityStatus.ACTIVE)

    async def mute_room(self, room_id: UUID) -> None:
        await self.store.set_participant_user_state(room_id, self.agent_id, EntityStatus.MUTED)

    async def unmute_room(self, room_id: UUID) -> None:
        await self.store.set_participant_user_state(room_id, self.agent_id, None)
