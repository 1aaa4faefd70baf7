"""Tests for deterministic, concurrent state composition."""

import asyncio
from uuid import uuid4

import pytest

from colloquy.providers import Provider, ProviderRegistry, StateComposer
from colloquy.schemas import Content, Memory, ProviderResult, State


class StubProvider(Provider):
    def __init__(self, name, *, text="", values=None, position=100, delay=0.0, dynamic=False, log=None):
        self.name = name
        self.position = position
        self.dynamic = dynamic
        self._text = text
        self._values = values or {}
        self._delay = delay
        self._log = log

    async def get(self, context, message, state):
        await asyncio.sleep(self._delay)
        if self._log is not None:
            self._log.append(self.name)
        return ProviderResult(values=dict(self._values), data={self.name: True}, text=self._text)


class BrokenProvider(Provider):
    name = "BROKEN"
    position = 50

    async def get(self, context, message, state):
        raise RuntimeError("provider exploded")


def make_message(text="hello"):
    return Memory(room_id=uuid4(), entity_id=uuid4(), agent_id=uuid4(), content=Content(text=text))


@pytest.mark.asyncio
async def test_text_follows_position_not_completion_order():
    completed: list[str] = []
    registry = ProviderRegistry(
        [
            StubProvider("LATE", text="third", position=300, delay=0.0, log=completed),
            StubProvider("EARLY", text="first", position=10, delay=0.03, log=completed),
            StubProvider("MIDDLE", text="second", position=200, delay=0.015, log=completed),
        ]
    )

    state = await StateComposer(registry).compose(None, make_message())

    assert completed == ["LATE", "MIDDLE", "EARLY"]
    assert state.text == "first\n\nsecond\n\nthird"


@pytest.mark.asyncio
async def test_equal_positions_merge_in_registration_order():
    registry = ProviderRegistry(
        [
            StubProvider("B", text="b", values={"shared": "from-b"}, delay=0.02),
            StubProvider("A", text="a", values={"shared": "from-a"}, delay=0.0),
            StubProvider("C", text="c", values={"shared": "from-c"}, delay=0.01),
        ]
    )

    state = await StateComposer(registry).compose(None, make_message())

    assert state.text == "b\n\na\n\nc"
    # Later providers overwrite same-key values.
    assert state.values["shared"] == "from-c"


@pytest.mark.asyncio
async def test_empty_fragments_leave_no_stray_separators():
    registry = ProviderRegistry(
        [
            StubProvider("ONE", text="alpha", position=1),
            StubProvider("TWO", text="", position=2),
            StubProvider("THREE", text="   ", position=3),
            StubProvider("FOUR", text="omega", position=4),
        ]
    )

    state = await StateComposer(registry).compose(None, make_message())

    assert state.text == "alpha\n\nomega"


@pytest.mark.asyncio
async def test_failing_provider_contributes_nothing():
    registry = ProviderRegistry(
        [
            StubProvider("BEFORE", text="before", position=10),
            BrokenProvider(),
            StubProvider("AFTER", text="after", values={"k": "v"}, position=90),
        ]
    )

    state = await StateComposer(registry).compose(None, make_message())

    assert state.text == "before\n\nafter"
    assert state.values == {"k": "v"}
    assert state.data["providers"]["BROKEN"] == ProviderResult()


@pytest.mark.asyncio
async def test_dynamic_providers_only_run_when_requested():
    calls: list[str] = []
    registry = ProviderRegistry(
        [
            StubProvider("STATIC", text="static", log=calls),
            StubProvider("KNOWLEDGE", text="# Knowledge", dynamic=True, log=calls),
        ]
    )
    composer = StateComposer(registry)

    default_state = await composer.compose(None, make_message())
    assert calls == ["STATIC"]
    assert default_state.text == "static"

    calls.clear()
    requested_state = await composer.compose(None, make_message(), ["KNOWLEDGE"])
    assert sorted(calls) == ["KNOWLEDGE", "STATIC"]
    assert requested_state.text == "static\n\n# Knowledge"

    calls.clear()
    only_state = await composer.compose(None, make_message(), ["KNOWLEDGE"], only_requested=True)
    assert calls == ["KNOWLEDGE"]
    assert only_state.text == "# Knowledge"


@pytest.mark.asyncio
async def test_unknown_requested_provider_is_skipped():
    registry = ProviderRegistry([StubProvider("STATIC", text="static")])

    state = await StateComposer(registry).compose(None, make_message(), ["MISSING"])

    assert state.text == "static"


def test_duplicate_provider_name_rejected():
    registry = ProviderRegistry([StubProvider("SAME")])
    with pytest.raises(ValueError):
        registry.register(StubProvider("SAME"))


@pytest.mark.asyncio
async def test_composition_leaves_message_untouched():
    message = make_message("What does UTXO mean?")
    snapshot = message.model_dump()
    registry = ProviderRegistry([StubProvider("STATIC", text="static")])

    state = await StateComposer(registry).compose(None, message)

    assert message.model_dump() == snapshot
    assert isinstance(state, State)
