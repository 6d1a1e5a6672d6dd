# textgen_sdk/ai/dispatch.py
# SPDX-License-Identifier: Apache-2.0
"""
Dispatcher: exactly one backend call attempt.

The dispatcher receives a zero-argument async thunk that performs the network
call and returns the raw native response (or a native delta stream). It:

- hands the thunk to the configured RateLimiter, if any, without interpreting
  the limiter's policy; a limiter rejection propagates unchanged
- records the start time inside the limiter boundary, right before the
  underlying call
- applies the DeadlinePolicy; a timeout surfaces as DeadlineExceeded
- never retries and never catches transport errors
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Generic, Mapping, Optional, Protocol, TypeVar, Union

from textgen_sdk.ai.errors import DeadlineExceeded, ResourceExhausted
from textgen_sdk.ai.metrics import MetricsSink, NoopMetrics
from textgen_sdk.ai.types import ApiDescriptor, NativeRequest, NativeResponse

LOG = logging.getLogger(__name__)

T = TypeVar("T")
Thunk = Callable[[], Awaitable[T]]


# =============================================================================
# Transport
# =============================================================================

class Transport(Protocol):
    """
    Wire-level capability consumed by the adapter.

    dispatch() returns the decoded native response, or an async iterator of
    native deltas when descriptor.stream is true. Errors are raised as
    APIError subclasses carrying status / body / headers.
    """
    async def dispatch(
        self,
        descriptor: ApiDescriptor,
        native_request: NativeRequest,
    ) -> Union[NativeResponse, AsyncIterator[NativeResponse]]: ...


def merge_headers(
    call_headers: Optional[Mapping[str, str]],
    static_headers: Optional[Mapping[str, str]],
) -> dict:
    """Per-call headers overlaid with static adapter headers (static wins)."""
    return {**dict(call_headers or {}), **dict(static_headers or {})}


# =============================================================================
# Rate limiting
# =============================================================================

class RateLimiter(Protocol):
    """
    Governs when a dispatch thunk runs.

    apply() MUST resolve or reject exactly as the thunk would; it may only
    delay or reorder invocation.
    """
    async def apply(self, thunk: Thunk[T]) -> T: ...


class NoopLimiter:
    """No-op rate limiter."""
    async def apply(self, thunk: Thunk[T]) -> T:
        return await thunk()


class TokenBucketLimiter:
    """
    Simple token-bucket limiter; per-process only.

    Notes:
        - Each apply() consumes one token before running the thunk.
        - With max_wait_s set, a caller that cannot get a token in time is
          rejected with ResourceExhausted instead of waiting forever.
    """
    def __init__(
        self,
        *,
        rate: float = 50.0,
        capacity: int = 100,
        max_wait_s: Optional[float] = None,
        poll_interval_s: float = 0.01,
    ) -> None:
        self._rate = float(rate)
        self._capacity = max(1, int(capacity))
        self._tokens = float(self._capacity)
        self._last = time.monotonic()
        self._max_wait_s = max_wait_s
        self._poll_interval_s = max(0.001, float(poll_interval_s))

    def _refill(self) -> None:
        now = time.monotonic()
        delta = now - self._last
        self._last = now
        self._tokens = min(self._capacity, self._tokens + delta * self._rate)

    async def _acquire(self) -> None:
        waited_from = time.monotonic()
        while True:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return
            if (
                self._max_wait_s is not None
                and time.monotonic() - waited_from >= self._max_wait_s
            ):
                raise ResourceExhausted(
                    "rate limit exceeded",
                    retry_after_ms=int(1000.0 / self._rate) if self._rate > 0 else None,
                )
            await asyncio.sleep(self._poll_interval_s)

    async def apply(self, thunk: Thunk[T]) -> T:
        await self._acquire()
        return await thunk()


class ConcurrencyLimiter:
    """Caps the number of in-flight dispatches."""
    def __init__(self, *, max_concurrent: int = 8) -> None:
        self._sem = asyncio.Semaphore(max(1, int(max_concurrent)))

    async def apply(self, thunk: Thunk[T]) -> T:
        async with self._sem:
            return await thunk()


# =============================================================================
# Deadlines
# =============================================================================

class DeadlinePolicy(Protocol):
    """Strategy interface for bounding how long one dispatch may take."""
    async def wrap(self, awaitable: Awaitable[T]) -> T: ...


class NoopDeadline:
    """No-op deadline policy (thin mode default)."""
    async def wrap(self, awaitable: Awaitable[T]) -> T:
        return await awaitable


class SimpleDeadline:
    """
    Deadline policy that enforces a fixed timeout via asyncio.wait_for.

    Behavior:
        - timeout_s of None: pass-through.
        - On timeout: raises DeadlineExceeded.
    """
    def __init__(self, timeout_s: Optional[float] = 60.0) -> None:
        self._timeout_s = timeout_s

    async def wrap(self, awaitable: Awaitable[T]) -> T:
        if self._timeout_s is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout_s)
        except asyncio.TimeoutError as e:
            raise DeadlineExceeded(
                "operation timed out",
                details={"timeout_s": self._timeout_s},
            ) from e


# =============================================================================
# Dispatcher
# =============================================================================

@dataclass(frozen=True)
class Dispatched(Generic[T]):
    """Outcome of one attempt plus the monotonic time the call started."""
    value: T
    started_at: float

    def elapsed_ms(self, now: Optional[float] = None) -> float:
        return ((now if now is not None else time.monotonic()) - self.started_at) * 1000.0


class Dispatcher:
    """Runs one backend call attempt through the limiter and deadline policy."""

    _component = "ai"

    def __init__(
        self,
        *,
        limiter: Optional[RateLimiter] = None,
        deadline_policy: Optional[DeadlinePolicy] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._limiter = limiter
        self._deadline: DeadlinePolicy = deadline_policy or NoopDeadline()
        self._metrics: MetricsSink = metrics or NoopMetrics()

    async def execute(self, thunk: Thunk[T], *, op: str = "dispatch") -> Dispatched[T]:
        started_at: Optional[float] = None

        async def _timed() -> T:
            nonlocal started_at
            started_at = time.monotonic()
            ok = False
            code = "OK"
            try:
                value = await self._deadline.wrap(thunk())
                ok = True
                return value
            except Exception as e:
                code = getattr(e, "code", None) or type(e).__name__
                raise
            finally:
                self._observe(op, started_at, ok, code)

        if self._limiter is not None:
            value = await self._limiter.apply(_timed)
        else:
            value = await _timed()
        if started_at is None:
            raise RuntimeError("rate limiter resolved without running the call")
        return Dispatched(value=value, started_at=started_at)

    def _observe(self, op: str, t0: float, ok: bool, code: str) -> None:
        """Metrics emission failures are swallowed."""
        try:
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=(time.monotonic() - t0) * 1000.0,
                ok=ok,
                code=code,
            )
        except Exception:
            LOG.debug("metrics observe failed", exc_info=True)


__all__ = [
    "Transport",
    "merge_headers",
    "RateLimiter",
    "NoopLimiter",
    "TokenBucketLimiter",
    "ConcurrencyLimiter",
    "DeadlinePolicy",
    "NoopDeadline",
    "SimpleDeadline",
    "Dispatched",
    "Dispatcher",
]
