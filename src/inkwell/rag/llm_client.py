"""LiteLLM client wrapper: async provider calls, error mapping, API key checks.

All generation and embedding calls route through this module. LiteLLM
exceptions are translated into the Inkwell error taxonomy so callers can tell
transient failures (NetworkError) from ones that need user action
(AuthError, QuotaExceeded) or a different request (InvalidRequest).
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

import litellm

from inkwell.config import EmbeddingCfg, GenerationCfg
from inkwell.errors import (
    AuthError,
    InvalidRequest,
    NetworkError,
    ProviderError,
    QuotaExceeded,
)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider protocols
# ------------------------------------------------------------------


class GenerationProvider(Protocol):
    """Produces text for a prompt."""

    async def generate_text(self, prompt: str) -> str:
        """Raises NetworkError, AuthError, QuotaExceeded or InvalidRequest."""
        ...


class EmbeddingProvider(Protocol):
    """Produces an embedding vector for a text."""

    async def embed_text(self, text: str) -> list[float]:
        """Raises NetworkError, AuthError, QuotaExceeded or InvalidRequest."""
        ...


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a 'provider/model' string (default: openai)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def api_key_env(model: str) -> str | None:
    """Env var holding the API key for *model*; None for local providers."""
    provider = provider_of(model)
    if provider in _PROVIDER_ENV:
        return _PROVIDER_ENV[provider]
    return f"{provider.upper()}_API_KEY"


def credential_status(model: str) -> bool:
    """True if the API key *model* needs is present (or none is needed)."""
    env_var = api_key_env(model)
    if env_var is None:
        return True
    return bool(os.getenv(env_var))


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        AuthError: If the required key is missing from environment.
    """
    if not credential_status(model):
        provider = provider_of(model)
        raise AuthError(
            f"API key not found for provider '{provider}'. "
            f"Set the {api_key_env(model)} environment variable."
        )


# ------------------------------------------------------------------
# Error mapping
# ------------------------------------------------------------------

_AUTH_ERRORS = (litellm.AuthenticationError, litellm.PermissionDeniedError)
_QUOTA_ERRORS = (litellm.RateLimitError, litellm.BudgetExceededError)
_NETWORK_ERRORS = (
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)
_REQUEST_ERRORS = (
    litellm.BadRequestError,
    litellm.NotFoundError,
    litellm.UnprocessableEntityError,
)


def translate_error(exc: Exception) -> ProviderError | None:
    """Map a LiteLLM exception onto the Inkwell taxonomy; None if unrecognised."""
    message = str(exc) or type(exc).__name__
    if isinstance(exc, _AUTH_ERRORS):
        return AuthError(message)
    if isinstance(exc, _QUOTA_ERRORS):
        return QuotaExceeded(message)
    if isinstance(exc, _NETWORK_ERRORS):
        return NetworkError(message)
    if isinstance(exc, _REQUEST_ERRORS):
        return InvalidRequest(message)
    if isinstance(exc, litellm.APIError):
        status = getattr(exc, "status_code", None) or 500
        return NetworkError(message) if status >= 500 else InvalidRequest(message)
    return None


# ------------------------------------------------------------------
# Calls
# ------------------------------------------------------------------


async def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 1024,
    temperature: float = 0.7,
    num_retries: int = 2,
) -> str:
    """Call litellm.acompletion(). Returns the content string.

    Raises:
        ProviderError: Translated LiteLLM failure.
    """
    try:
        response = await litellm.acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            num_retries=num_retries,
        )
    except Exception as exc:
        mapped = translate_error(exc)
        if mapped is None:
            raise
        raise mapped from exc
    return response.choices[0].message.content or ""


async def embed(model: str, text: str) -> list[float]:
    """Call litellm.aembedding() once. Returns the embedding vector.

    Retries are left to the caller (see EmbeddingGateway).

    Raises:
        ProviderError: Translated LiteLLM failure.
    """
    try:
        response = await litellm.aembedding(model=model, input=[text], num_retries=0)
    except Exception as exc:
        mapped = translate_error(exc)
        if mapped is None:
            raise
        raise mapped from exc
    return response.data[0]["embedding"]


def count_tokens(model: str, text: str) -> int:
    """Count tokens in *text* for *model* using LiteLLM's provider-aware counter.

    Falls back to character-based approximation (4 chars ≈ 1 token) if the model
    is not supported by litellm.token_counter().
    """
    try:
        return litellm.token_counter(model=model, text=text)
    except Exception:
        return max(1, len(text) // 4)


class LiteLLMProvider:
    """Generation and embedding provider backed by LiteLLM.

    Implements both GenerationProvider and EmbeddingProvider.
    """

    def __init__(
        self,
        generation: GenerationCfg | None = None,
        embedding: EmbeddingCfg | None = None,
    ) -> None:
        self._generation = generation or GenerationCfg()
        self._embedding = embedding or EmbeddingCfg()

    async def generate_text(self, prompt: str) -> str:
        logger.debug(
            "Generate via %s (%d char prompt)", self._generation.model, len(prompt)
        )
        return await complete(
            self._generation.model,
            [{"role": "user", "content": prompt}],
            max_tokens=self._generation.max_tokens,
            temperature=self._generation.temperature,
        )

    async def embed_text(self, text: str) -> list[float]:
        logger.debug("Embed via %s (%d chars)", self._embedding.model, len(text))
        return await embed(self._embedding.model, text)
