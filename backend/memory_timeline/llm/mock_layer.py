"""Mock LLM Layer for testing without API calls."""

from __future__ import annotations

import asyncio

from pydantic import BaseModel

from memory_timeline.llm.layer import LLMResponse


class MockLLMLayer:
    """Returns predefined responses for testing.

    Usage:
        mock = MockLLMLayer({
            "RelationshipAssessment": RelationshipAssessment(
                relationship_type="causal", confidence=0.9, reasoning="test",
            ),
        })
        result, meta = await mock.complete_structured(
            messages=[...],
            response_model=RelationshipAssessment,
        )

    ``error`` makes every call raise; ``delay`` makes every call sleep
    first (for timeout tests).
    """

    def __init__(
        self,
        responses: dict[str, BaseModel] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responses = responses or {}
        self.error = error
        self.delay = delay
        self.model = "mock-model"
        self.call_log: list[dict] = []

    async def complete_structured(
        self,
        messages: list[dict],
        response_model: type[BaseModel],
        system: str | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        temperature: float | None = None,
    ) -> tuple[BaseModel, LLMResponse]:
        """Return predefined response or a default instance of ``response_model``."""
        self.call_log.append({
            "method": "complete_structured",
            "response_model": response_model.__name__,
            "messages": messages,
            "system": system,
            "temperature": temperature,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        result = self.responses.get(response_model.__name__)
        if result is None:
            result = response_model()
        return result, LLMResponse(
            model_version=self.model,
            input_tokens=100,
            output_tokens=50,
            stop_reason="end_turn",
        )
