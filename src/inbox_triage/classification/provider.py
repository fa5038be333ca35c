"""
Classification provider adapters.

Wraps a single request/response call to an external text-classification
capability that answers with a JSON object. Adapters are stateless apart from
their HTTP client and never retry: attempt counting, backoff and failure
bookkeeping belong to the classification engine and retry ledger.

Supported providers:
- OpenAI API (and OpenAI-compatible endpoints) via JSON mode
- Ollama (self-hosted models) via ``format="json"``
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx
import ollama
import structlog
from openai import APIConnectionError, APITimeoutError, OpenAI, OpenAIError

from inbox_triage.config import settings
from inbox_triage.errors import ProviderError


logger = structlog.get_logger(__name__)


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class ProviderResponse:
    """
    Unified provider response.

    ``content`` is the raw JSON text returned by the model; parsing and
    normalization happen in ``normalizer``.
    """
    content: str

    # Metadata
    model: str
    provider: str
    tokens_input: Optional[int] = None
    tokens_output: Optional[int] = None
    tokens_total: Optional[int] = None
    latency_ms: int = 0
    finish_reason: str = "unknown"


# ============================================================================
# ABSTRACT BASE CLASS
# ============================================================================

class ClassificationProvider(ABC):
    """
    Abstract base class for classification providers.

    Concrete implementations send one system prompt plus one user message and
    return the model's JSON answer as text.
    """

    provider_name = "unknown"

    def __init__(
        self,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        timeout_seconds: float = 30.0,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

        self.logger = logger.bind(
            provider=self.__class__.__name__,
            model=model
        )

    @abstractmethod
    def complete_json(self, system_prompt: str, user_message: str) -> ProviderResponse:
        """
        Ask the model for a JSON classification.

        Args:
            system_prompt: Classification instructions
            user_message: Content to classify plus context

        Returns:
            ProviderResponse with the raw JSON text

        Raises:
            ProviderError: On timeout, connection or API errors, or an empty answer
        """

    @abstractmethod
    def check_connection(self) -> None:
        """
        Perform a cheap authenticated call against the provider.

        Raises:
            ProviderError: If the provider cannot be reached
        """

    def test_connection(self) -> Dict[str, Any]:
        """
        Check provider connectivity and report latency.

        Returns:
            {"success": bool, "latency_ms": int, "error": Optional[str]}
        """
        start_time = time.time()
        try:
            self.check_connection()
            return {"success": True, "latency_ms": int((time.time() - start_time) * 1000), "error": None}
        except ProviderError as e:
            self.logger.warning("provider_connection_check_failed", error=str(e))
            return {"success": False, "latency_ms": int((time.time() - start_time) * 1000), "error": str(e)}


# ============================================================================
# OPENAI CLIENT
# ============================================================================

class OpenAIProvider(ClassificationProvider):
    """
    OpenAI (or OpenAI-compatible) chat completions in JSON mode.

    The SDK's own retries are disabled; each call is exactly one attempt.
    """

    provider_name = "openai"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: Optional[str] = None,
        **kwargs
    ):
        super().__init__(model=model, **kwargs)
        self.base_url = base_url

        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=self.timeout_seconds,
            max_retries=0,
        )

    def complete_json(self, system_prompt: str, user_message: str) -> ProviderResponse:
        start_time = time.time()

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except (APITimeoutError, APIConnectionError) as e:
            self.logger.warning(
                "openai_api_unreachable",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderError(f"OpenAI request failed: {e}") from e
        except OpenAIError as e:
            self.logger.warning(
                "openai_api_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderError(f"OpenAI API error: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.choices:
            raise ProviderError("Empty response from OpenAI")

        content = response.choices[0].message.content
        if not content:
            raise ProviderError("Empty response from OpenAI")

        usage = response.usage
        return ProviderResponse(
            content=content,
            model=self.model,
            provider=self.provider_name,
            tokens_input=usage.prompt_tokens if usage else None,
            tokens_output=usage.completion_tokens if usage else None,
            tokens_total=usage.total_tokens if usage else None,
            latency_ms=latency_ms,
            finish_reason=response.choices[0].finish_reason or "unknown",
        )

    def check_connection(self) -> None:
        try:
            self.client.models.list()
        except OpenAIError as e:
            raise ProviderError(f"OpenAI connection failed: {e}") from e


# ============================================================================
# OLLAMA CLIENT
# ============================================================================

class OllamaProvider(ClassificationProvider):
    """
    Ollama client for self-hosted models (qwen2.5, llama3.1, mistral, ...).

    Requires Ollama running locally or accessible via base_url.
    """

    provider_name = "ollama"

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        **kwargs
    ):
        super().__init__(model=model, **kwargs)
        self.base_url = base_url
        self.client = ollama.Client(host=base_url, timeout=self.timeout_seconds)

    def complete_json(self, system_prompt: str, user_message: str) -> ProviderResponse:
        start_time = time.time()

        try:
            response = self.client.chat(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                format="json",
                options={
                    "temperature": self.temperature,
                    "num_predict": self.max_tokens,
                },
            )
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            self.logger.warning(
                "ollama_request_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderError(f"Ollama request failed: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)

        message = response.get("message") or {}
        content = message.get("content")
        if not content:
            raise ProviderError("Empty response from Ollama")

        tokens_input = response.get("prompt_eval_count")
        tokens_output = response.get("eval_count")
        tokens_total = tokens_input + tokens_output if tokens_input and tokens_output else None

        return ProviderResponse(
            content=content,
            model=self.model,
            provider=self.provider_name,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            tokens_total=tokens_total,
            latency_ms=latency_ms,
            finish_reason=response.get("done_reason") or "stop",
        )

    def check_connection(self) -> None:
        try:
            self.client.list()
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            raise ProviderError(f"Ollama connection failed: {e}") from e


# ============================================================================
# PROVIDER FACTORY
# ============================================================================

def create_provider(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    **override_kwargs
) -> ClassificationProvider:
    """
    Create the configured classification provider.

    Explicit arguments win over settings.

    Args:
        provider: Provider name ("openai", "ollama")
        model: Model name (provider-specific)
        **override_kwargs: Override any client parameter (api_key, base_url, temperature, ...)

    Returns:
        Configured ClassificationProvider

    Raises:
        ValueError: If the provider is unknown or its API key is missing
    """
    provider = provider or settings.llm_provider
    model = model or settings.llm_model

    client_params = {
        "temperature": override_kwargs.get("temperature", settings.llm_temperature),
        "max_tokens": override_kwargs.get("max_tokens", settings.llm_max_tokens),
        "timeout_seconds": override_kwargs.get("timeout_seconds", settings.llm_timeout_seconds),
    }

    logger.info(
        "creating_classification_provider",
        provider=provider,
        model=model,
        temperature=client_params["temperature"]
    )

    if provider == "openai":
        api_key = override_kwargs.get("api_key", settings.llm_api_key)
        if not api_key:
            raise ValueError("OpenAI API key required (set LLM_API_KEY env var)")

        return OpenAIProvider(
            model=model,
            api_key=api_key,
            base_url=override_kwargs.get("base_url", settings.llm_api_base_url) or None,
            **client_params
        )

    elif provider == "ollama":
        return OllamaProvider(
            model=model,
            base_url=override_kwargs.get("base_url", settings.llm_api_base_url) or "http://localhost:11434",
            **client_params
        )

    else:
        raise ValueError(
            f"Unknown provider: {provider}. Supported: openai, ollama"
        )


def parse_model_string(model_string: str) -> Tuple[Optional[str], str]:
    """
    Parse model string in format "provider/model-name".

    Examples:
        "ollama/qwen2.5:7b" → ("ollama", "qwen2.5:7b")
        "openai/gpt-4o-mini" → ("openai", "gpt-4o-mini")
        "gpt-4o-mini" → (None, "gpt-4o-mini")
    """
    if "/" in model_string:
        provider, model = model_string.split("/", 1)
        return provider, model
    return None, model_string


def create_provider_from_model_string(model_string: str, **override_kwargs) -> ClassificationProvider:
    """Create a provider from "provider/model"; without a prefix the configured provider is used."""
    provider_prefix, model_name = parse_model_string(model_string)
    return create_provider(provider=provider_prefix, model=model_name, **override_kwargs)
