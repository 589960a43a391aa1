"""Error taxonomy for the estimation pipeline."""
from __future__ import annotations

from typing import Optional


class EstimationError(Exception):
    """Base class for failures that abort an estimate."""


class InvalidInput(EstimationError, ValueError):
    """A request field (or cost-model argument) is out of range."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class UpstreamUnavailable(EstimationError):
    """A price, fee or liquidity source failed or returned unusable data."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class ReasoningServiceFailure(Exception):
    """The optional AI call failed. Always recovered by the rule-based fallback."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class MalformedReasoningResponse(ReasoningServiceFailure):
    """The AI answered, but not with a payload we can trust."""
