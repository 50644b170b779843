"""LLM Layer: all classifier calls to Anthropic go through here.

Uses AsyncAnthropic + Instructor for structured outputs. Every call is
bounded by a timeout, retried with backoff on transient API errors and
guarded by a circuit breaker, so a dead API degrades the classifier to
its heuristic fallback instead of stalling a batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import anthropic
import instructor
from instructor.exceptions import InstructorRetryException
from pydantic import BaseModel

from memory_timeline.config import settings
from memory_timeline.errors import ConfigurationError, ParseError, ProviderError
from memory_timeline.resilience import CircuitBreaker, retry_with_backoff

logger = logging.getLogger(__name__)

_TRANSIENT_API_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)


@dataclass
class LLMResponse:
    """Metadata from an LLM call, kept alongside the parsed result."""

    model_version: str = ""          # Exact model ID from API response
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LLMLayer:
    """Structured completions against a single Anthropic model.

    Usage:
        llm = LLMLayer(api_key=settings.anthropic_api_key)
        verdict, meta = await llm.complete_structured(
            messages=[{"role": "user", "content": prompt}],
            response_model=RelationshipAssessment,
        )
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int = 3,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        key = api_key if api_key is not None else settings.anthropic_api_key
        if client is None and not key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")
        self.model = model or settings.classifier_model
        self.timeout = timeout if timeout is not None else settings.llm_timeout_seconds
        self.max_retries = max_retries
        self.raw_client = client or anthropic.AsyncAnthropic(api_key=key)
        self.client = instructor.from_anthropic(self.raw_client)
        self.circuit_breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60.0)

    async def complete_structured(
        self,
        messages: list[dict],
        response_model: type[BaseModel],
        system: str | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        temperature: float | None = None,
    ) -> tuple[BaseModel, LLMResponse]:
        """Structured output with Pydantic validation + auto-retry.

        Args:
            messages: Conversation messages.
            response_model: Pydantic model class for output validation.
            system: System prompt.
            max_tokens: Max output tokens.
            max_retries: Instructor retry count on validation failure.
            temperature: Sampling temperature (0.0 = deterministic).

        Returns:
            Tuple of (validated Pydantic model, LLMResponse metadata).

        Raises:
            ProviderTimeout: No answer within ``timeout`` seconds.
            ProviderError: API failure after retries, or breaker open.
            ParseError: The model never produced a valid ``response_model``.
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or settings.default_max_tokens,
            "messages": messages,
            "response_model": response_model,
            "max_retries": max_retries or settings.default_max_retries,
            "temperature": temperature if temperature is not None else settings.default_temperature,
        }
        if system:
            kwargs["system"] = system

        result, raw_response = await retry_with_backoff(
            lambda: self._create(kwargs),
            timeout=self.timeout,
            max_retries=self.max_retries,
            circuit_breaker=self.circuit_breaker,
            label="anthropic",
        )
        return result, self._extract_metadata(raw_response)

    async def _create(self, kwargs: dict[str, Any]) -> tuple[BaseModel, Any]:
        try:
            return await self.client.messages.create_with_completion(**kwargs)
        except InstructorRetryException as e:
            raise ParseError(f"Model output failed validation: {e}") from e
        except _TRANSIENT_API_ERRORS as e:
            raise ProviderError(str(e), provider="anthropic", retryable=True) from e
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"Anthropic API error {e.status_code}: {e.message}", provider="anthropic"
            ) from e

    def _extract_metadata(self, response: Any) -> LLMResponse:
        usage = getattr(response, "usage", None)
        return LLMResponse(
            model_version=getattr(response, "model", "") or "",
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            stop_reason=getattr(response, "stop_reason", "") or "",
        )
