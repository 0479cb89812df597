"""Error taxonomy for the research and refinement stages.

Four kinds of failure reach this module:

1. Configuration errors (missing credentials): fatal, never retried.
2. Transient provider errors (rate limit, timeout, 5xx): retried by
   ``with_retry``, then surfaced.
3. Parse errors (malformed model output): not retried against the same
   response; callers fall back to another provider or to statistics.
4. Stage failures: nothing usable could be produced for the scan.

Data insufficiency (no queries, no priced listings) is not an error; it is
represented as a low-confidence result.
"""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal["configuration", "transient", "parse", "stage", "unknown"]


class ResaleError(Exception):
    """Base class for errors raised by the research engine."""

    retryable: bool = False
    kind: ErrorKind = "unknown"


class ConfigurationError(ResaleError):
    """A required credential or setting is missing."""

    kind: ErrorKind = "configuration"


class ProviderError(ResaleError):
    """An external search or language-model call failed."""

    kind: ErrorKind = "transient"

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        # 4xx other than 429 will not get better on retry
        self.retryable = status_code is None or status_code == 429 or status_code >= 500


class ParseError(ResaleError):
    """A provider answered, but the answer could not be parsed."""

    kind: ErrorKind = "parse"


class StageFailedError(ResaleError):
    """A pipeline stage produced no usable result."""

    kind: ErrorKind = "stage"
    stage: str = ""


class ResearchFailedError(StageFailedError):
    stage = "research"


class RefinementFailedError(StageFailedError):
    stage = "refinement"


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the taxonomy bucket for an exception."""
    if isinstance(exc, ResaleError):
        return exc.kind
    message = str(exc).lower()
    if "api key" in message or "not configured" in message:
        return "configuration"
    if any(p in message for p in ("timeout", "timed out", "429", "rate_limit", "503", "502")):
        return "transient"
    if "json" in message or "parse" in message:
        return "parse"
    return "unknown"


def is_non_retryable(exc: BaseException) -> bool:
    """Whether a Temporal retry of the whole activity is pointless."""
    if isinstance(exc, ResaleError):
        return not exc.retryable
    return classify_error(exc) in ("configuration", "parse")


def format_user_error(exc: BaseException) -> str:
    """Map an internal error to user-facing text that leaks no detail."""
    message = str(exc).lower()

    if "rate_limit" in message or "429" in message or "overloaded" in message:
        return "Service is temporarily busy. Please try again in a moment."
    if "timeout" in message or "timed out" in message or "etimedout" in message:
        return "Request timed out. Please try again."
    if (
        isinstance(exc, ConfigurationError)
        or "api key" in message
        or "unauthorized" in message
        or "not configured" in message
    ):
        return "Service configuration error. Please contact support."
    if "not found" in message:
        return "Scan could not be found. Please try scanning again."
    if isinstance(exc, ParseError) or "parse" in message or "json" in message:
        return "Could not read the item details. Please try again with clearer photos."
    if isinstance(exc, ResearchFailedError):
        return "We couldn't find market data for this item right now. Please try again later."
    if isinstance(exc, RefinementFailedError):
        return "We couldn't estimate a price for this item. Please try again."

    return "An error occurred processing your item. Please try again."
