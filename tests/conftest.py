"""Shared fakes and fixtures for the pipeline tests."""

from __future__ import annotations

import inspect
import random
from typing import Any, Callable, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

import pytest

from colloquy.model_client import ModelClient, ModelType
from colloquy.persistence import InMemoryStore
from colloquy.runtime import build_agent_context
from colloquy.schemas import (
    Character,
    CharacterStyle,
    Content,
    Entity,
    EventType,
    ExampleMessage,
    Memory,
)

# Substrings identifying each default prompt
SHOULD_RESPOND = "whether they should respond"
DECIDE = "Generate dialog and actions"
REPLY = "Generate dialog for the character"
KNOWLEDGE_QUERY = "Extract the essential keywords"


class ScriptedModel(ModelClient):
    """ModelClient fake answering by prompt substring.

    Rules are checked in insertion order. A rule's response may be a value,
    a list (consumed one item per call, last item repeats), an exception
    instance (raised), or a callable taking the prompt (sync or async).
    """

    def __init__(self, *, embedding: Sequence[float] = (1.0, 0.0, 0.0), default: Any = "") -> None:
        self.rules: List[Tuple[str, Any]] = []
        self.embedding = list(embedding)
        self.default = default
        self.calls: List[Tuple[ModelType, str]] = []

    def on(self, marker: str, response: Any) -> "ScriptedModel":
        self.rules.append((marker, response))
        return self

    def prompts(self, marker: str) -> List[str]:
        return [prompt for _, prompt in self.calls if marker in prompt]

    def kinds(self) -> List[ModelType]:
        return [kind for kind, _ in self.calls]

    async def use_model(self, kind: ModelType, *, prompt: str):
        self.calls.append((kind, prompt))
        if kind == ModelType.TEXT_EMBEDDING:
            return list(self.embedding)

        for marker, response in self.rules:
            if marker not in prompt:
                continue
            if isinstance(response, list):
                value = response.pop(0) if len(response) > 1 else response[0]
            else:
                value = response
            if isinstance(value, BaseException):
                raise value
            if callable(value):
                value = value(prompt)
                if inspect.isawaitable(value):
                    value = await value
            return value
        return self.default


class RecordingStore(InMemoryStore):
    """InMemoryStore that records writes and searches."""

    def __init__(self) -> None:
        super().__init__()
        self.created: List[Tuple[str, Memory]] = []
        self.updated_entities: List[Entity] = []
        self.searches: List[dict] = []

    async def create_memory(self, memory: Memory, table_name: str) -> UUID:
        self.created.append((table_name, memory))
        return await super().create_memory(memory, table_name)

    async def update_entity(self, entity: Entity) -> None:
        self.updated_entities.append(entity)
        await super().update_entity(entity)

    async def search_memories_by_embedding(self, embedding, **kwargs):
        self.searches.append({"embedding": list(embedding), **kwargs})
        return await super().search_memories_by_embedding(embedding, **kwargs)


class EventRecorder:
    """Collects every payload emitted for the given event types."""

    def __init__(self) -> None:
        self.events: List[Tuple[EventType, Any]] = []

    def attach(self, bus, *event_types: EventType) -> "EventRecorder":
        for event_type in event_types or tuple(EventType):
            bus.register(event_type, self._recorder(event_type))
        return self

    def _recorder(self, event_type: EventType) -> Callable:
        async def record(payload) -> None:
            self.events.append((event_type, payload))

        return record

    def of(self, event_type: EventType) -> List[Any]:
        return [payload for kind, payload in self.events if kind == event_type]

    def types(self) -> List[EventType]:
        return [kind for kind, _ in self.events]


def json_block(text: str) -> str:
    return f"Sure, here you go:\n```json\n{text}\n```"


@pytest.fixture(autouse=True)
def _no_color(monkeypatch):
    monkeypatch.setenv("COLLOQUY_NO_COLOR", "1")


@pytest.fixture
def character() -> Character:
    return Character(
        name="Eliza",
        username="eliza",
        system="A friendly, helpful tech support chatbot.",
        bio=["Only offers help when asked.", "Keeps answers short.", "Likes Bitcoin."],
        topics=["bitcoin", "javascript", "databases"],
        adjectives=["helpful", "terse"],
        style=CharacterStyle(all=["Be concise."], chat=["Use plain words."], post=["No hashtags."]),
        message_examples=[
            [
                ExampleMessage(name="{{name1}}", content=Content(text="Hi there")),
                ExampleMessage(name="Eliza", content=Content(text="Hello!", actions=["REPLY"])),
            ]
        ],
        post_examples=["Databases are just spicy files."],
    )


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def context(character, store, model):
    return build_agent_context(character, store=store, model=model, rng=random.Random(7))


@pytest.fixture
def make_message(context):
    def _make(
        text: str,
        *,
        room_id: UUID,
        entity_id: Optional[UUID] = None,
        name: str = "Chris",
        **content: Any,
    ) -> Memory:
        return Memory(
            room_id=room_id,
            entity_id=entity_id or uuid4(),
            agent_id=context.agent_id,
            content=Content(text=text, **content),
            metadata={"entityName": name},
        )

    return _make
