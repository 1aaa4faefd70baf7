"""Context providers and the per-turn state composer."""

from typing import List

from .registry import DEFAULT_PROVIDER_POSITION, Provider, ProviderRegistry, StateComposer
from .character import CharacterProvider
from .recent_messages import RecentMessagesProvider
from .time import TimeProvider
from .knowledge import KnowledgeProvider, format_knowledge


def default_providers() -> List[Provider]:
    """Built-in providers in registration order."""
    return [
        CharacterProvider(),
        RecentMessagesProvider(),
        TimeProvider(),
        KnowledgeProvider(),
    ]


__all__ = [
    "DEFAULT_PROVIDER_POSITION",
    "Provider",
    "ProviderRegistry",
    "StateComposer",
    "CharacterProvider",
    "RecentMessagesProvider",
    "TimeProvider",
    "KnowledgeProvider",
    "format_knowledge",
    "default_providers",
]
