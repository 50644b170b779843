"""Error taxonomy for the cross-reference and pattern engine.

Single-item operations raise these directly. Batch operations catch them
per item and report them in their result instead of aborting.
"""

from __future__ import annotations


class TimelineError(Exception):
    """Base class for all engine errors."""


class ValidationError(TimelineError):
    """Input rejected before any work was done (empty text, self-pair, bad type)."""


class ConfigurationError(TimelineError):
    """Unknown provider or missing credential."""


class ProviderError(TimelineError):
    """An external provider (embedding or LLM) failed.

    ``retryable`` marks transient failures (rate limit, 5xx, connection
    reset) that the retry helper may attempt again.
    """

    def __init__(self, message: str, *, provider: str = "", retryable: bool = False) -> None:
        self.provider = provider
        self.retryable = retryable
        super().__init__(message)


class ProviderTimeout(ProviderError):
    """A provider call exceeded its timeout."""

    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(message, provider=provider, retryable=True)


class ParseError(TimelineError):
    """A provider answered, but the payload was not what we expected."""


class NotFoundError(TimelineError):
    """Missing event or embedding."""


class DimensionMismatchError(TimelineError):
    """Two vectors of different lengths were compared."""

    def __init__(self, left: int, right: int) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Vector dimensions differ: {left} != {right}")
