"""Error taxonomy for the conversational pipeline.

Each failure the pipeline distinguishes has its own exception class so
callers branch on the *kind* of error instead of inspecting message text:

- StructuredOutputError: the model's JSON block was missing, malformed, or
  ambiguous. Callers fall back to a default behaviour.
- DuplicateRecordError / ConstraintViolationError: the store rejected a write
  that is already applied (or races a parent record). Treated as success.
- TransientStoreError: the store is not ready yet. Retried a bounded number
  of times during initialization.
- ModelInvocationError: the model transport failed or timed out. Surfaces as
  a turn-level error.
- ActionExecutionError: an action handler raised. Isolated per action.
"""

from __future__ import annotations

from typing import Optional


class ColloquyError(Exception):
    """Base class for all pipeline errors."""


class StructuredOutputError(ColloquyError):
    """Raised when a model response does not contain exactly one JSON object."""

    def __init__(self, reason: str, *, raw_text: str = "") -> None:
        self.reason = reason
        self.raw_text = raw_text
        preview = raw_text if len(raw_text) <= 80 else raw_text[:77] + "..."
        super().__init__(f"{reason} (response preview: {preview!r})")


class PersistenceError(ColloquyError):
    """Base class for memory store failures."""


class DuplicateRecordError(PersistenceError):
    """Raised when a record with the same key already exists."""

    def __init__(self, table: str, key: object) -> None:
        self.table = table
        self.key = key
        super().__init__(f"Record {key} already exists in '{table}'")


class ConstraintViolationError(PersistenceError):
    """Raised when a write references a parent record that does not exist (yet)."""

    def __init__(self, table: str, detail: str) -> None:
        self.table = table
        self.detail = detail
        super().__init__(f"Constraint violated writing to '{table}': {detail}")


class TransientStoreError(PersistenceError):
    """Raised when the store is temporarily unavailable (starting up, reconnecting)."""


class StoreInitializationError(PersistenceError):
    """Raised when the store could not be initialized after all retries."""

    def __init__(self, *, attempts: int, underlying: Optional[BaseException]) -> None:
        self.attempts = attempts
        self.underlying = underlying
        message = (
            f"Memory store initialization failed after {attempts} attempts: {underlying}\n\n"
            "Remediation tips:\n"
            "  - Verify DATABASE_URL points at a running database\n"
            "  - Increase STORE_INIT_ATTEMPTS if the database starts slowly\n"
            "  - Use InMemoryStore for local experiments"
        )
        super().__init__(message)


class ModelInvocationError(ColloquyError):
    """Raised when a model call fails at the transport level or times out."""

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        message = (
            f"Model call ({kind}) failed: {reason}\n\n"
            "Remediation tips:\n"
            "  - Verify LLM_PROVIDER, model names and API keys\n"
            "  - Enable DEBUG_LLM=true to inspect prompts/responses"
        )
        super().__init__(message)


class ActionExecutionError(ColloquyError):
    """Wraps an exception raised by an action handler."""

    def __init__(self, action_name: str, underlying: BaseException) -> None:
        self.action_name = action_name
        self.underlying = underlying
        super().__init__(f"Action {action_name} failed: {underlying}")


__all__ = [
    "ColloquyError",
    "StructuredOutputError",
    "PersistenceError",
    "DuplicateRecordError",
    "ConstraintViolationError",
    "TransientStoreError",
    "StoreInitializationError",
    "ModelInvocationError",
    "ActionExecutionError",
]
