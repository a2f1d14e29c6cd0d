"""Async retry with linear backoff, driven by an explicit state machine.

Each call moves through ``Attempting(n) -> Waiting(n) -> Attempting(n+1)``
until it ends in ``Succeeded`` or ``Exhausted``. The transitions are plain
functions so every step can be tested without sleeping.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx

from nutriplanner.errors import (
    APIError,
    NoConnectivityError,
    TransportError,
    _walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nutriplanner.connectivity import ConnectivityProbe

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with linear backoff (``attempt * base_delay_s``)."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float | None = None

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.base_delay_s < 0:
            raise ValueError("RetryPolicy.base_delay_s must be >= 0")
        if self.max_delay_s is not None and self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0 or None")


# -- states -----------------------------------------------------------------


@dataclass(frozen=True)
class Attempting:
    attempt: int


@dataclass(frozen=True)
class Waiting:
    attempt: int
    delay_s: float
    error: BaseException


@dataclass(frozen=True)
class Succeeded(Generic[T]):
    attempt: int
    value: T


@dataclass(frozen=True)
class Exhausted:
    attempt: int
    error: BaseException


RetryState = Attempting | Waiting | Succeeded[Any] | Exhausted


# -- transitions ------------------------------------------------------------


def backoff_delay(
    policy: RetryPolicy, attempt: int, *, retry_after_s: float | None = None
) -> float:
    """Delay to wait after failed *attempt* (1-based)."""
    delay = attempt * policy.base_delay_s
    if policy.max_delay_s is not None:
        delay = min(delay, policy.max_delay_s)
    if retry_after_s is not None and retry_after_s > delay:
        delay = retry_after_s
    return delay


def on_success(state: Attempting, value: T) -> Succeeded[T]:
    return Succeeded(attempt=state.attempt, value=value)


def on_failure(
    policy: RetryPolicy,
    state: Attempting,
    error: BaseException,
    *,
    retryable: bool,
) -> Waiting | Exhausted:
    """Decide between another attempt and giving up."""
    if not retryable or state.attempt >= policy.max_attempts:
        return Exhausted(attempt=state.attempt, error=error)
    retry_after = error.retry_after_s if isinstance(error, APIError) else None
    return Waiting(
        attempt=state.attempt,
        delay_s=backoff_delay(policy, state.attempt, retry_after_s=retry_after),
        error=error,
    )


def after_wait(state: Waiting) -> Attempting:
    return Attempting(attempt=state.attempt + 1)


# -- retry decisions --------------------------------------------------------


def should_retry(exc: BaseException) -> bool:
    """Return True when *exc* is transient.

    Contract:
    - Cancellation is never retried.
    - ``NoConnectivityError`` and ``TransportError`` are retried.
    - Raw httpx transport failures are retried as a pragmatic fallback.
    - Everything else (malformed replies, safety blocks, tool errors)
      propagates on first occurrence.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, (NoConnectivityError, TransportError)):
        return exc.retryable is not False
    if isinstance(exc, APIError):
        return exc.retryable is True
    return any(
        isinstance(e, (httpx.TransportError, TimeoutError))
        for e in _walk_exception_chain(exc)
    )


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    probe: ConnectivityProbe | None = None,
    should_retry: Callable[[BaseException], bool] = should_retry,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    logger: logging.Logger = logger,
    phase: str | None = None,
) -> T:
    """Run an async factory with connectivity pre-checks and bounded retries.

    The probe is consulted before every attempt; an offline result counts as
    a failed attempt and raises ``NoConnectivityError`` without calling the
    factory.
    """
    state: RetryState = Attempting(attempt=1)
    while True:
        if isinstance(state, Attempting):
            try:
                if probe is not None and not await probe.is_online():
                    raise NoConnectivityError(phase=phase)
                value = await factory()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                state = on_failure(policy, state, exc, retryable=should_retry(exc))
                continue
            state = on_success(state, value)
        elif isinstance(state, Waiting):
            logger.warning(
                "%s attempt %d/%d failed, retrying in %.2fs: %s",
                phase or "request",
                state.attempt,
                policy.max_attempts,
                state.delay_s,
                state.error,
            )
            if state.delay_s > 0:
                await sleep(state.delay_s)
            state = after_wait(state)
        elif isinstance(state, Succeeded):
            if state.attempt > 1:
                logger.debug(
                    "%s succeeded on attempt %d", phase or "request", state.attempt
                )
            return state.value
        else:
            if state.attempt >= policy.max_attempts and should_retry(state.error):
                logger.error(
                    "%s failed after %d attempts: %s",
                    phase or "request",
                    state.attempt,
                    state.error,
                )
            raise state.error
