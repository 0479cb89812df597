"""Bounded exponential backoff for calls to unreliable external services.

Every search-provider and language-model request goes through ``with_retry``.
Failures are classified by case-insensitive substring match against a list of
retryable patterns; anything else propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TypeVar

import structlog

log = structlog.get_logger("retry")

T = TypeVar("T")

DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "rate_limit",
    "rate limit",
    "timeout",
    "timed out",
    "429",
    "500",
    "502",
    "503",
    "ECONNRESET",
    "ETIMEDOUT",
    "connection reset",
    "overloaded",
)

JITTER_FRACTION = 0.3


@dataclass(frozen=True)
class RetryOptions:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    retryable_patterns: tuple[str, ...] = field(default=DEFAULT_RETRYABLE_PATTERNS)


def calculate_backoff(
    attempt: int,
    base_delay: float,
    max_delay: float,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number ``attempt + 1``, in seconds.

    ``min(base * 2**attempt + jitter, max_delay)`` where jitter is 0-30% of the
    exponential term, so concurrent scans do not retry in lockstep.
    """
    exponential = base_delay * (2**attempt)
    jitter = rand() * JITTER_FRACTION * exponential
    return min(exponential + jitter, max_delay)


def is_retryable_error(error: BaseException | str, patterns: tuple[str, ...] | list[str]) -> bool:
    """Check an error against the retryable patterns.

    Exceptions carrying ``retryable = False`` (configuration errors, 4xx
    provider errors) are never retried regardless of their message.
    """
    if isinstance(error, BaseException):
        if getattr(error, "retryable", True) is False:
            return False
        message = f"{type(error).__name__}: {error}".lower()
    else:
        message = error.lower()
    return any(pattern.lower() in message for pattern in patterns)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **overrides: object,
) -> T:
    """Await ``fn()``, retrying retryable failures with backoff.

    Keyword overrides replace individual ``RetryOptions`` fields, e.g.
    ``with_retry(call, max_retries=2, base_delay=2.0)``.
    Exhausting the retries re-raises the last error.
    """
    opts = options or RetryOptions()
    if overrides:
        opts = replace(opts, **overrides)  # type: ignore[arg-type]

    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if attempt >= opts.max_retries or not is_retryable_error(exc, opts.retryable_patterns):
                raise
            delay = calculate_backoff(attempt, opts.base_delay, opts.max_delay)
            log.warning(
                "retry_scheduled",
                attempt=attempt + 1,
                max_retries=opts.max_retries,
                delay_seconds=round(delay, 3),
                error=str(exc)[:200],
            )
            await sleep(delay)
            attempt += 1
