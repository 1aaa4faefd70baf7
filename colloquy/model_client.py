"""Model Invocation facade.

Providers and actions never talk to a model transport directly; they call
``context.use_model(kind, prompt=...)`` which lands here. The ``kind``
selects small/large text generation, structured-object generation, or
embedding generation:

- TEXT_SMALL / TEXT_LARGE return the raw response text
- OBJECT_SMALL / OBJECT_LARGE return the parsed JSON object
- TEXT_EMBEDDING returns a list of floats

Any transport failure or timeout is raised as ModelInvocationError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .config import Config
from .errors import ModelInvocationError
from .llm_utils import call_llm_text, call_llm_with_retries
from .local_llm import LocalLLMError, call_ollama_embedding
from .logging_utils import debug_enabled


class ModelType(str, Enum):
    TEXT_SMALL = "TEXT_SMALL"
    TEXT_LARGE = "TEXT_LARGE"
    OBJECT_SMALL = "OBJECT_SMALL"
    OBJECT_LARGE = "OBJECT_LARGE"
    TEXT_EMBEDDING = "TEXT_EMBEDDING"


ModelResult = Union[str, Dict[str, Any], List[float]]


class ModelClient(ABC):
    """Executes a prompt against a text, object or embedding model."""

    @abstractmethod
    async def use_model(self, kind: ModelType, *, prompt: str) -> ModelResult:
        ...


class LLMModelClient(ModelClient):
    """Model client backed by mirascope (hosted providers) and Ollama (local).

    Embeddings are always requested from the Ollama endpoint configured via
    LOCAL_LLM_BASE_URL / OLLAMA_BASE_URL.
    """

    def __init__(
        self,
        *,
        llm_provider: Optional[str] = None,
        small_model: Optional[str] = None,
        large_model: Optional[str] = None,
        embedding_model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        system_prompt: str = "",
    ) -> None:
        self.llm_provider = llm_provider or Config.LLM_PROVIDER
        self.small_model = small_model or Config.LLM_MODEL_SMALL
        self.large_model = large_model or Config.LLM_MODEL_LARGE
        self.embedding_model = embedding_model or Config.EMBEDDING_MODEL
        self.base_url = base_url or Config.LOCAL_LLM_BASE_URL
        self.timeout = timeout or Config.MODEL_TIMEOUT_SECONDS
        self.system_prompt = system_prompt

    def _model_for(self, kind: ModelType) -> str:
        if kind in (ModelType.TEXT_LARGE, ModelType.OBJECT_LARGE):
            return self.large_model
        return self.small_model

    async def use_model(self, kind: ModelType, *, prompt: str) -> ModelResult:
        debug_llm = debug_enabled("DEBUG_LLM")
        if debug_llm:
            print(f"\n{'='*80}")
            print(f"[MODEL CALL] kind={kind.value}")
            print(f"{'-'*80}")
            print(prompt)
            print(f"{'='*80}\n")

        if kind == ModelType.TEXT_EMBEDDING:
            try:
                return await call_ollama_embedding(
                    text=prompt,
                    embedding_model=self.embedding_model,
                    base_url=self.base_url,
                    timeout=self.timeout,
                )
            except LocalLLMError as exc:
                raise ModelInvocationError(kind.value, str(exc)) from exc

        if kind in (ModelType.OBJECT_SMALL, ModelType.OBJECT_LARGE):
            result: ModelResult = await call_llm_with_retries(
                system_prompt=self.system_prompt,
                user_prompt=prompt,
                llm_provider=self.llm_provider,
                llm_model=self._model_for(kind),
                base_url=self.base_url,
                timeout=self.timeout,
            )
        else:
            result = await call_llm_text(
                system_prompt=self.system_prompt,
                user_prompt=prompt,
                llm_provider=self.llm_provider,
                llm_model=self._model_for(kind),
                base_url=self.base_url,
                timeout=self.timeout,
            )

        if debug_llm:
            print(f"\n[MODEL RESPONSE]")
            print(f"{'-'*80}")
            print(result)
            print(f"{'='*80}\n")

        return result
