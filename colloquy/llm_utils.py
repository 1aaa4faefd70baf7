"""Helper utilities for structured model output, retries and timeouts."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from mirascope import llm
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from colloquy.errors import ModelInvocationError, StructuredOutputError
from colloquy.local_llm import LocalLLMError, call_ollama_chat


LLM_TIMEOUT_SECONDS = 120.0

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


@dataclass(slots=True)
class ValidationFeedback:
    """Structured feedback for retrying malformed structured outputs."""

    llm_text: str
    issues: Sequence[str]


def _loads_object(candidate: str, raw_text: str) -> Dict[str, Any]:
    candidate = candidate.strip()
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        # Models copy the trailing commas shown in prompt examples.
        try:
            parsed = json.loads(_TRAILING_COMMA.sub(r"\1", candidate))
        except json.JSONDecodeError as exc:
            raise StructuredOutputError(
                f"JSON block could not be parsed: {exc.msg}", raw_text=raw_text
            ) from exc
    if not isinstance(parsed, dict):
        raise StructuredOutputError("JSON block is not an object", raw_text=raw_text)
    return parsed


def parse_json_block(text: str) -> Dict[str, Any]:
    """Extract the single JSON object from a model response.

    Prose around the block is tolerated. A response with more than one
    fenced JSON block is rejected, as is a response with no object at all.

    Raises:
        StructuredOutputError: when no single JSON object can be extracted
    """

    if not isinstance(text, str) or not text.strip():
        raise StructuredOutputError("Empty model response", raw_text=str(text or ""))

    blocks = [block for block in _FENCED_BLOCK.findall(text) if block.strip()]
    if len(blocks) > 1:
        raise StructuredOutputError(
            f"Expected a single JSON block, found {len(blocks)}", raw_text=text
        )
    if blocks:
        return _loads_object(blocks[0], text)

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise StructuredOutputError("No JSON object found in response", raw_text=text)
    return _loads_object(text[start : end + 1], text)


def parse_json_object(text: Any) -> Optional[Dict[str, Any]]:
    """Lenient variant of ``parse_json_block`` returning None on failure.

    Already-parsed dicts (structured model kinds) pass straight through.
    """

    if isinstance(text, dict):
        return text
    try:
        return parse_json_block(text)
    except StructuredOutputError:
        return None


def inject_structured_feedback(error: StructuredOutputError) -> ValidationFeedback:
    """Produce guidance for the model after a malformed structured response."""

    issues = [error.reason]
    instructions = [
        "Your previous response could not be parsed as a single JSON object.",
        "Respond again with exactly one ```json fenced block containing the object.",
        "Do not add explanations or a second block.",
        "Issues detected:",
    ]
    instructions.extend(f"- {issue}" for issue in issues)
    return ValidationFeedback(llm_text="\n".join(instructions), issues=issues)


async def call_llm_text(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> str:
    """Invoke a text model once and return the raw response text.

    Timeouts and transport failures are converted into ModelInvocationError
    so the caller can treat them as a turn-level error.
    """

    system_prompt = system_prompt.strip()
    user_prompt = user_prompt.strip()

    try:
        if llm_provider.lower() == "ollama":
            return await asyncio.wait_for(
                call_ollama_chat(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    llm_model=llm_model,
                    base_url=base_url,
                    timeout=timeout,
                ),
                timeout=timeout,
            )

        @llm.call(provider=llm_provider, model=llm_model)
        async def _invoke(prompt: str) -> str:
            return prompt

        combined = "\n\n".join(part for part in (system_prompt, user_prompt) if part)
        response = await asyncio.wait_for(_invoke(combined), timeout=timeout)
        return str(getattr(response, "content", response))
    except asyncio.TimeoutError as exc:
        raise ModelInvocationError(
            llm_model, f"timed out after {int(timeout)}s"
        ) from exc
    except LocalLLMError as exc:
        raise ModelInvocationError(llm_model, f"local provider error: {exc}") from exc
    except Exception as exc:
        raise ModelInvocationError(llm_model, f"provider error: {exc}") from exc


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = LLM_TIMEOUT_SECONDS,
    max_attempts: int = 3,
    feedback_builder: Callable[[StructuredOutputError], ValidationFeedback] = inject_structured_feedback,
) -> Dict[str, Any]:
    """Invoke a structured model call with parse-aware retries.

    On a malformed response the parse feedback is appended to the original
    prompt and the call is retried. After ``max_attempts`` the final
    StructuredOutputError propagates to the caller. Transport errors are not
    retried.
    """

    base_user_prompt = user_prompt.strip()
    feedback_payload: ValidationFeedback | None = None
    attempt_number = 0

    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(StructuredOutputError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                print(
                    f"LLM retry {attempt_number}/{max_attempts} for {llm_model};"
                    " attempting JSON correction."
                )
            sections = [base_user_prompt]
            if feedback_payload is not None:
                sections.append(feedback_payload.llm_text)
            raw = await call_llm_text(
                system_prompt=system_prompt,
                user_prompt="\n\n".join(section for section in sections if section),
                llm_provider=llm_provider,
                llm_model=llm_model,
                base_url=base_url,
                timeout=timeout,
            )
            try:
                return parse_json_block(raw)
            except StructuredOutputError as exc:
                feedback_payload = feedback_builder(exc)
                print(
                    f"Structured output invalid for {llm_model} "
                    f"(attempt {attempt_number}/{max_attempts}): {exc.reason}"
                )
                raise

    raise RuntimeError("LLM retry mechanism exited unexpectedly")
