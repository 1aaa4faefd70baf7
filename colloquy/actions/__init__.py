"""Actions, evaluators and the action dispatcher."""

from typing import List

from .registry import (
    DEFAULT_ACTION,
    Action,
    ActionDecision,
    ActionDispatcher,
    ActionOutcome,
    ActionRegistry,
    DispatchResult,
    Evaluator,
)
from .reply import ReplyAction
from .ignore import IgnoreAction
from .knowledge import KnowledgeBaseAction
from .news import CurrentNewsAction, NewsFetchError


def default_actions() -> List[Action]:
    """Built-in actions in registration order."""
    return [
        ReplyAction(),
        IgnoreAction(),
        KnowledgeBaseAction(),
        CurrentNewsAction(),
    ]


__all__ = [
    "DEFAULT_ACTION",
    "Action",
    "ActionDecision",
    "ActionDispatcher",
    "ActionOutcome",
    "ActionRegistry",
    "DispatchResult",
    "Evaluator",
    "ReplyAction",
    "IgnoreAction",
    "KnowledgeBaseAction",
    "CurrentNewsAction",
    "NewsFetchError",
    "default_actions",
]
