"""Action registry and dispatcher.

An action is a named unit of behavior the model may choose for a turn.
The dispatcher runs a turn in two steps:

1. ``decide`` asks the model for an ordered list of action names plus a
   short thought. A malformed answer falls back to ``["REPLY"]``.
2. ``process_actions`` resolves each name (exact name, then
   case-insensitive name or simile), drops names that do not resolve or
   whose ``validate`` returns False, and runs the remaining handlers one
   after the other in the proposed order.

Each handler runs in isolation: an exception is logged with its stack,
reported through an ACTION_COMPLETED event with ``completed=False``, and the
chain continues with the next action.

Evaluators run after the action chain and only produce lifecycle events
(EVALUATOR_STARTED / EVALUATOR_COMPLETED) around their own handlers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, model_validator

from ..errors import ActionExecutionError, StructuredOutputError
from ..llm_utils import parse_json_block
from ..logging_utils import log_deterministic, log_exception, log_llm, log_warning
from ..model_client import ModelType
from ..prompts import DEFAULT_PROMPTS
from ..renderers import compose_prompt_from_state
from ..schemas import (
    ActionEventPayload,
    Content,
    EvaluatorEventPayload,
    EventType,
    HandlerCallback,
    Memory,
    State,
    now_ms,
)

if TYPE_CHECKING:
    from ..runtime import AgentContext


DEFAULT_ACTION = "REPLY"


class Action(ABC):
    """Base class for actions.

    ``name`` must be unique within a registry. ``similes`` are alternate
    names the model may emit for the same action.
    """

    name: str = ""
    similes: Sequence[str] = ()
    description: str = ""

    async def validate(self, context: "AgentContext", message: Memory) -> bool:
        """Return False to make the action ineligible for this message."""
        return True

    @abstractmethod
    async def handler(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
        options: Dict[str, Any],
        callback: HandlerCallback,
    ) -> Optional[bool]:
        """Perform the action. ``callback`` may be awaited zero or more times."""


class Evaluator(ABC):
    """Post-turn assessment unit. Only its lifecycle events are part of the turn."""

    name: str = ""
    description: str = ""

    async def validate(self, context: "AgentContext", message: Memory) -> bool:
        return True

    @abstractmethod
    async def handler(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
        responses: List[Content],
    ) -> None:
        ...


class ActionDecision(BaseModel):
    """Parsed output of the action-decision model call."""

    thought: str = ""
    actions: List[str] = Field(default_factory=list)
    providers: List[str] = Field(default_factory=list)
    text: str = ""
    fallback: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return raw
        data = dict(raw)
        # Models answer with "content", "message" or "text" for the reply body.
        if not data.get("text"):
            for key in ("content", "message"):
                value = data.get(key)
                if isinstance(value, dict):
                    value = value.get("text")
                if isinstance(value, str) and value:
                    data["text"] = value
                    break
        for key in ("actions", "providers"):
            value = data.get(key)
            if isinstance(value, str):
                data[key] = [part.strip() for part in value.split(",") if part.strip()]
            elif value is None:
                data[key] = []
        if data.get("thought") is None:
            data["thought"] = ""
        return data


@dataclass
class ActionOutcome:
    """Result of running one resolved action."""

    action_name: str
    completed: bool
    error: Optional[str] = None


@dataclass
class DispatchResult:
    outcomes: List[ActionOutcome] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [f"{o.action_name}: {o.error}" for o in self.outcomes if not o.completed]


class ActionRegistry:
    """Name-keyed action lookup with simile resolution."""

    def __init__(self, actions: Optional[Iterable[Action]] = None) -> None:
        self._actions: Dict[str, Action] = {}
        for action in actions or ():
            self.register(action)

    def register(self, action: Action) -> None:
        if not action.name:
            raise ValueError(f"Action {type(action).__name__} has no name")
        if action.name in self._actions:
            raise ValueError(f"Action '{action.name}' is already registered")
        self._actions[action.name] = action

    def get(self, name: str) -> Optional[Action]:
        """Exact, case-sensitive lookup on the registered name."""
        return self._actions.get(name)

    def names(self) -> List[str]:
        return list(self._actions)

    def all(self) -> List[Action]:
        return list(self._actions.values())

    def resolve(self, name: str) -> Optional[Action]:
        """Resolve a model-emitted name: exact name, then name or simile ignoring case."""
        if not isinstance(name, str) or not name.strip():
            return None
        exact = self._actions.get(name)
        if exact is not None:
            return exact
        wanted = name.strip().upper()
        for action in self._actions.values():
            if action.name.upper() == wanted:
                return action
        for action in self._actions.values():
            if any(simile.upper() == wanted for simile in action.similes):
                return action
        return None

    def describe(self) -> str:
        return "\n".join(f"- {a.name}: {a.description}" for a in self._actions.values())


class ActionDispatcher:
    """Decides and executes the action chain for one turn."""

    def __init__(
        self,
        registry: ActionRegistry,
        evaluators: Optional[Iterable[Evaluator]] = None,
    ) -> None:
        self.registry = registry
        self.evaluators: List[Evaluator] = list(evaluators or ())

    async def decide(self, context: "AgentContext", message: Memory, state: State) -> ActionDecision:
        """Ask the model which actions to run.

        Malformed structured output falls back to a single REPLY with no
        pre-generated text. Transport failures propagate to the turn.
        """

        template = DEFAULT_PROMPTS.resolve("message_handler", context.character.templates)
        prompt = compose_prompt_from_state(
            state,
            template,
            extra={
                "actionNames": ", ".join(self.registry.names()),
                "actionDescriptions": self.registry.describe(),
            },
        )
        response = await context.use_model(ModelType.TEXT_SMALL, prompt=prompt)

        try:
            parsed = response if isinstance(response, dict) else parse_json_block(response)
            decision = ActionDecision.model_validate(parsed)
        except (StructuredOutputError, ValidationError) as exc:
            log_warning(f"Action decision unparseable; falling back to {DEFAULT_ACTION}: {exc}")
            return ActionDecision(actions=[DEFAULT_ACTION], fallback=True)

        if not decision.actions:
            log_warning(f"Action decision listed no actions; falling back to {DEFAULT_ACTION}")
            decision = decision.model_copy(update={"actions": [DEFAULT_ACTION]})

        log_llm(f"Decided actions {decision.actions} ({decision.thought or 'no thought'})")
        return decision

    async def process_actions(
        self,
        context: "AgentContext",
        message: Memory,
        decision: ActionDecision,
        state: State,
        callback: HandlerCallback,
    ) -> DispatchResult:
        result = DispatchResult()
        options: Dict[str, Any] = {
            "thought": decision.thought,
            "text": decision.text,
            "providers": list(decision.providers),
            "decision": decision,
        }

        for proposed in decision.actions:
            action = self.registry.resolve(proposed)
            if action is None:
                log_warning(f"No action registered for '{proposed}'; skipping")
                continue
            if not await self._is_eligible(context, action, message):
                continue
            result.outcomes.append(
                await self._run_action(context, action, message, state, options, callback)
            )
        return result

    async def _is_eligible(self, context: "AgentContext", action: Action, message: Memory) -> bool:
        try:
            return bool(await action.validate(context, message))
        except Exception as exc:
            log_exception(f"Validation for action {action.name} failed; skipping", exc)
            return False

    async def _run_action(
        self,
        context: "AgentContext",
        action: Action,
        message: Memory,
        state: State,
        options: Dict[str, Any],
        callback: HandlerCallback,
    ) -> ActionOutcome:
        started = ActionEventPayload(
            context=context,
            action_name=action.name,
            room_id=message.room_id,
            message_id=message.id,
            start_time=now_ms(),
            source=message.content.source or "unknown",
        )
        await context.bus.emit(EventType.ACTION_STARTED, started)
        log_deterministic(f"Running action {action.name}")

        error: Optional[str] = None
        try:
            await action.handler(context, message, state, options, callback)
        except Exception as exc:
            wrapped = ActionExecutionError(action.name, exc)
            log_exception(str(wrapped), exc)
            error = str(exc) or type(exc).__name__

        completed = started.model_copy(update={"completed": error is None, "error": error})
        await context.bus.emit(EventType.ACTION_COMPLETED, completed)
        return ActionOutcome(action_name=action.name, completed=error is None, error=error)

    async def evaluate(
        self,
        context: "AgentContext",
        message: Memory,
        state: State,
        responses: List[Content],
    ) -> None:
        for evaluator in self.evaluators:
            if not await evaluator.validate(context, message):
                continue
            started = EvaluatorEventPayload(
                context=context,
                evaluator_name=evaluator.name,
                start_time=now_ms(),
                source=message.content.source or "unknown",
            )
            await context.bus.emit(EventType.EVALUATOR_STARTED, started)
            error: Optional[str] = None
            try:
                await evaluator.handler(context, message, state, responses)
            except Exception as exc:
                log_exception(f"Evaluator {evaluator.name} failed", exc)
                error = str(exc) or type(exc).__name__
            completed = started.model_copy(update={"completed": error is None, "error": error})
            await context.bus.emit(EventType.EVALUATOR_COMPLETED, completed)
