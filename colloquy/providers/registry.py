"""Provider registry and per-turn state composition.

Providers are named units of context production. Each turn the
``StateComposer`` selects a set of providers, runs their ``get`` calls
concurrently, and merges the results in a deterministic order:

1. Sort selected providers by ``position`` ascending, ties broken by
   registration order.
2. Merge ``values`` left to right (later providers overwrite earlier keys).
3. Join non-empty ``text`` fragments with a blank line.

Completion order never affects the merged state. A provider that raises
contributes nothing and the failure is logged.

Dynamic providers (for example knowledge retrieval, which costs a model
call plus a similarity search) are excluded from the default selection and
only run when a caller names them explicitly.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

from ..logging_utils import debug_enabled, log_deterministic, log_exception, log_warning
from ..schemas import Memory, ProviderResult, State

if TYPE_CHECKING:
    from ..runtime import AgentContext


DEFAULT_PROVIDER_POSITION = 100


class Provider(ABC):
    """Base class for context providers.

    Subclasses set ``name`` (unique within a registry) and implement
    ``get``. ``position`` controls merge order (lower merges first) and
    ``dynamic`` excludes the provider from the default selection.
    """

    name: str = ""
    description: str = ""
    position: int = DEFAULT_PROVIDER_POSITION
    dynamic: bool = False

    @abstractmethod
    async def get(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
    ) -> ProviderResult:
        """Produce this provider's contribution for ``message``.

        Args:
            context: Agent context (character, store, model access)
            message: Inbound message being handled; must not be modified
            state: State composed so far for this turn (may be empty)

        Returns:
            ProviderResult with values, data and text
        """


class ProviderRegistry:
    """Name-keyed provider lookup that remembers registration order."""

    def __init__(self, providers: Optional[Iterable[Provider]] = None) -> None:
        self._providers: Dict[str, Provider] = {}
        self._order: Dict[str, int] = {}
        for provider in providers or ():
            self.register(provider)

    def register(self, provider: Provider) -> None:
        if not provider.name:
            raise ValueError(f"Provider {type(provider).__name__} has no name")
        if provider.name in self._providers:
            raise ValueError(f"Provider '{provider.name}' is already registered")
        self._order[provider.name] = len(self._order)
        self._providers[provider.name] = provider

    def get(self, name: str) -> Optional[Provider]:
        return self._providers.get(name)

    def names(self) -> List[str]:
        return list(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def select(
        self,
        requested: Optional[Sequence[str]] = None,
        *,
        only_requested: bool = False,
    ) -> List[Provider]:
        """Return the providers to run, sorted by (position, registration order).

        Without ``requested`` every non-dynamic provider is selected. With
        ``requested`` the named providers are added to that default set, or
        used alone when ``only_requested`` is True. Unknown names are skipped
        with a warning.
        """

        chosen: Dict[str, Provider] = {}
        if not only_requested:
            for name, provider in self._providers.items():
                if not provider.dynamic:
                    chosen[name] = provider

        for name in requested or ():
            provider = self._providers.get(name)
            if provider is None:
                log_warning(f"Requested provider '{name}' is not registered; skipping")
                continue
            chosen[name] = provider

        return sorted(chosen.values(), key=self._sort_key)

    def _sort_key(self, provider: Provider) -> Tuple[int, int]:
        return (provider.position, self._order[provider.name])


class StateComposer:
    """Builds the immutable per-turn State from registered providers."""

    def __init__(self, registry: ProviderRegistry) -> None:
        self.registry = registry

    async def compose(
        self,
        context: "AgentContext",
        message: Memory,
        requested: Optional[Sequence[str]] = None,
        *,
        only_requested: bool = False,
        base_state: Optional[State] = None,
    ) -> State:
        providers = self.registry.select(requested, only_requested=only_requested)
        seed = base_state or State()

        # Fetch concurrently; results come back in the sorted order regardless
        # of which provider finished first.
        results = await asyncio.gather(
            *(self._safe_get(provider, context, message, seed) for provider in providers)
        )

        values: Dict[str, str] = {}
        data: Dict[str, object] = {}
        per_provider: Dict[str, ProviderResult] = {}
        fragments: List[str] = []
        for provider, result in zip(providers, results):
            per_provider[provider.name] = result
            values.update(result.values)
            data.update(result.data)
            if result.text and result.text.strip():
                fragments.append(result.text.strip("\n"))
        data["providers"] = per_provider

        state = State(values=values, data=data, text="\n\n".join(fragments))
        log_deterministic(
            f"Composed state from {len(providers)} provider(s): "
            f"{', '.join(p.name for p in providers) or '-'}"
        )

        if debug_enabled("DEBUG_STATE"):
            print(f"\n{'='*80}")
            print(f"[STATE] message={message.id}")
            print(f"{'-'*80}")
            print(json.dumps(state.values, indent=2, default=str))
            print(f"{'-'*80}")
            print(state.text)
            print(f"{'='*80}\n")

        return state

    @staticmethod
    async def _safe_get(
        provider: Provider,
        context: "AgentContext",
        message: Memory,
        state: State,
    ) -> ProviderResult:
        try:
            result = await provider.get(context, message, state)
        except Exception as exc:
            log_exception(f"Provider {provider.name} failed; contributing nothing", exc)
            return ProviderResult()
        if result is None:
            return ProviderResult()
        return result
