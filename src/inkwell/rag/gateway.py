"""Embedding gateway: input normalization, retry with exponential backoff.

Only transient failures (NetworkError) are retried. AuthError and
QuotaExceeded are raised to the caller untouched so the app can ask for new
credentials instead of retrying silently. Everything else ends in
EmbeddingUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import unicodedata

from inkwell.config import EmbeddingCfg
from inkwell.errors import (
    AuthError,
    EmbeddingUnavailable,
    InvalidInput,
    InvalidRequest,
    NetworkError,
    QuotaExceeded,
    RequestTimeout,
)
from inkwell.rag.llm_client import EmbeddingProvider

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """NFC-normalize, trim, and collapse whitespace runs to single spaces."""
    return _WHITESPACE_RE.sub(" ", unicodedata.normalize("NFC", text)).strip()


class EmbeddingGateway:
    """Wraps an EmbeddingProvider with validation and retries.

    Args:
        provider: The external embedding provider.
        config: Retry and timeout settings (max_attempts, base_delay,
            timeout_seconds).
    """

    def __init__(self, provider: EmbeddingProvider, config: EmbeddingCfg | None = None) -> None:
        self._provider = provider
        self._config = config or EmbeddingCfg()
        self.calls = 0  # external calls issued, including retries

    async def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*.

        Raises:
            InvalidInput: If *text* is empty or whitespace-only (no call made).
            AuthError: Credentials rejected (not retried).
            QuotaExceeded: Quota or rate limit hit (not retried).
            EmbeddingUnavailable: Retries exhausted, request rejected, or the
                provider returned a malformed vector.
        """
        normalized = normalize_text(text)
        if not normalized:
            raise InvalidInput("Cannot embed empty text.")

        attempts = self._config.max_attempts
        last_error: NetworkError | None = None
        for attempt in range(attempts):
            if attempt:
                delay = self._config.base_delay * (2 ** (attempt - 1))
                logger.info(
                    "Retrying embedding in %.2fs (attempt %d/%d): %s",
                    delay, attempt + 1, attempts, last_error,
                )
                await asyncio.sleep(delay)
            try:
                vector = await self._call(normalized)
            except (AuthError, QuotaExceeded) as exc:
                logger.warning("Embedding failed permanently: %s", exc.kind)
                raise
            except InvalidRequest as exc:
                logger.warning("Embedding request rejected: %s", exc)
                raise EmbeddingUnavailable(f"Embedding request rejected: {exc}") from exc
            except NetworkError as exc:
                last_error = exc
                continue
            return _check_vector(vector)

        logger.warning("Embedding unavailable after %d attempts: %s", attempts, last_error)
        raise EmbeddingUnavailable(
            f"Embedding failed after {attempts} attempts: {last_error}"
        ) from last_error

    async def _call(self, text: str) -> list[float]:
        self.calls += 1
        timeout = self._config.timeout_seconds
        if timeout is None:
            return await self._provider.embed_text(text)
        try:
            return await asyncio.wait_for(self._provider.embed_text(text), timeout)
        except asyncio.TimeoutError as exc:
            raise RequestTimeout(f"Embedding timed out after {timeout}s") from exc


def _check_vector(vector: object) -> list[float]:
    try:
        values = [float(x) for x in vector]  # type: ignore[union-attr]
    except (TypeError, ValueError) as exc:
        raise EmbeddingUnavailable("Provider returned a malformed embedding.") from exc
    if not values or not all(math.isfinite(x) for x in values):
        raise EmbeddingUnavailable("Provider returned an empty or non-finite embedding.")
    return values
