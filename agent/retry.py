"""Bounded exponential backoff for upstream calls.

Every call attempt is turned into a tagged ``CallOutcome``
(``OK | RATE_LIMITED | OVERLOADED | FATAL``). The retry schedule is the
pure function ``backoff_delay(kind, attempt, jitter)``:

    delay = base(kind) * 2 ** (attempt - 1) + jitter

with ``base(RATE_LIMITED) > base(OVERLOADED)`` and jitter drawn uniformly
from ``[0, max_jitter)``.  Fatal failures and exhausted budgets re-raise the
original exception unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import config
from .logging import tagged

logger = logging.getLogger("bosun")


class OutcomeKind(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    FATAL = "fatal"

    @property
    def transient(self) -> bool:
        return self in (OutcomeKind.RATE_LIMITED, OutcomeKind.OVERLOADED)


@dataclass(frozen=True)
class CallOutcome:
    kind: OutcomeKind
    value: Any = None
    error: BaseException | None = None


_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests")
_OVERLOAD_MARKERS = ("overloaded", "overload")


def classify_failure(exc: BaseException) -> OutcomeKind:
    """Classify an exception from status codes, error metadata and message text."""
    kind = getattr(exc, "kind", None)
    if kind is not None:
        try:
            parsed = OutcomeKind(kind)
        except ValueError:
            parsed = None
        if parsed is not None and parsed.transient:
            return parsed

    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "status", None)
    if status == 429:
        return OutcomeKind.RATE_LIMITED
    if status in (503, 529):
        return OutcomeKind.OVERLOADED

    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error")
        error_type = error.get("type") if isinstance(error, dict) else body.get("type")
        if error_type == "rate_limit_error":
            return OutcomeKind.RATE_LIMITED
        if error_type == "overloaded_error":
            return OutcomeKind.OVERLOADED

    message = str(exc).lower()
    if any(m in message for m in _RATE_LIMIT_MARKERS):
        return OutcomeKind.RATE_LIMITED
    if any(m in message for m in _OVERLOAD_MARKERS):
        return OutcomeKind.OVERLOADED
    return OutcomeKind.FATAL


def base_delay(kind: OutcomeKind) -> float:
    """Base backoff in seconds for a transient failure kind."""
    if kind is OutcomeKind.RATE_LIMITED:
        return float(config.RATE_LIMIT_BASE_S)
    if kind is OutcomeKind.OVERLOADED:
        return float(config.OVERLOAD_BASE_S)
    raise ValueError(f"No backoff for outcome kind {kind.value!r}")


def backoff_delay(kind: OutcomeKind, attempt: int, jitter: float = 0.0) -> float:
    """Seconds to wait after failed attempt number *attempt* (1-based)."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return base_delay(kind) * 2 ** (attempt - 1) + jitter


class RetryExecutor:
    """Runs an async call, retrying transient failures with backoff.

    Args:
        classify: Maps an exception to an ``OutcomeKind``.
        sleep: Awaitable sleep, ``asyncio.sleep`` unless a test injects one.
        rng: Random source for jitter.
        max_jitter_s: Upper bound (exclusive) of the jitter; defaults to config.
    """

    def __init__(
        self,
        classify: Callable[[BaseException], OutcomeKind] = classify_failure,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        max_jitter_s: float | None = None,
    ):
        self._classify = classify
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._max_jitter_s = max_jitter_s

    def _jitter(self) -> float:
        bound = self._max_jitter_s if self._max_jitter_s is not None else float(config.MAX_JITTER_S)
        return self._rng.random() * bound

    async def attempt(self, call: Callable[[], Awaitable[Any]]) -> CallOutcome:
        """Run *call* once and tag the result."""
        try:
            value = await call()
        except Exception as exc:
            return CallOutcome(self._classify(exc), error=exc)
        return CallOutcome(OutcomeKind.OK, value=value)

    async def execute(self, call: Callable[[], Awaitable[Any]], max_retries: int) -> Any:
        """Return the result of *call*, retrying transient failures.

        *max_retries* counts attempts, the first one included.
        """
        attempt = 0
        while True:
            attempt += 1
            outcome = await self.attempt(call)
            if outcome.kind is OutcomeKind.OK:
                return outcome.value
            if outcome.kind is OutcomeKind.FATAL or attempt >= max_retries:
                raise outcome.error

            delay = backoff_delay(outcome.kind, attempt, self._jitter())
            logger.warning(
                f"Upstream {outcome.kind.value} (attempt {attempt}/{max_retries}), "
                f"retrying in {delay:.1f}s: {outcome.error}",
                extra=tagged("retry"),
            )
            await self._sleep(delay)
