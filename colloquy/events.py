"""Ordered multi-subscriber event bus.

Every handler registered for an event type receives the payload, in
registration order, one at a time. A handler that raises is logged and
converted into a RUN_ENDED event with ``status="error"``; delivery then
continues with the next handler and the emitter never sees the exception.

The bus is owned by one AgentContext and lives as long as it does.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, List

from .logging_utils import log_exception
from .schemas import EventPayload, EventType, MessagePayload, RunEventPayload, now_ms

EventHandler = Callable[[EventPayload], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[EventType, List[EventHandler]] = {}

    def register(self, event_type: EventType, handler: EventHandler) -> None:
        """Append ``handler`` for ``event_type``. Duplicates are allowed."""
        self._handlers.setdefault(event_type, []).append(handler)

    def handlers(self, event_type: EventType) -> List[EventHandler]:
        return list(self._handlers.get(event_type, ()))

    async def emit(self, event_type: EventType, payload: EventPayload) -> None:
        # Snapshot so handlers registered during delivery only see later events.
        for handler in self.handlers(event_type):
            try:
                await handler(payload)
            except Exception as exc:
                name = getattr(handler, "__name__", repr(handler))
                log_exception(f"Handler {name} for {event_type.value} failed", exc)
                if event_type != EventType.RUN_ENDED:
                    await self.emit(EventType.RUN_ENDED, self._failure_payload(payload, exc))

    @staticmethod
    def _failure_payload(payload: EventPayload, exc: Exception) -> RunEventPayload:
        message_id = room_id = entity_id = None
        if isinstance(payload, MessagePayload):
            message_id = payload.message.id
            room_id = payload.message.room_id
            entity_id = payload.message.entity_id
        end_time = now_ms()
        return RunEventPayload(
            context=payload.context,
            source=payload.source,
            message_id=message_id,
            room_id=room_id,
            entity_id=entity_id,
            start_time=end_time,
            status="error",
            end_time=end_time,
            duration_ms=0,
            error=str(exc) or type(exc).__name__,
        )
