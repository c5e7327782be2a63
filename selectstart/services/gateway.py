"""
selectstart.services.gateway — Rate-Limited API Gateway
========================================================

**Why this file exists:**
RetroAchievements publishes a hard request ceiling.  Every outbound call
from every poll loop goes through one :class:`RateLimitedGateway`, which
serialises calls through a FIFO queue and releases at most
``requests_per_interval`` of them per sliding ``interval`` window.

Failures never escape as exceptions.  :meth:`RateLimitedGateway.call`
returns a :class:`Result`; the caller branches on ``result.ok`` and
degrades (skip the board, treat as no progress) when it is not.

Retry policy::

    RATE_LIMITED / TRANSIENT  → retried up to max_retries, delay retry_delay × attempt
    NOT_FOUND / PERMANENT     → returned immediately

A retried call goes back to the *front* of the queue and waits for a rate
slot like any other release.

Usage::

    gateway = RateLimitedGateway(requests_per_interval=1, interval=1.2)
    result = await gateway.call(lambda: client.game_info(1), label="game_info:1")
    if result.ok:
        ...
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------
class ErrorKind(enum.StrEnum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    PERMANENT = "permanent"


RETRYABLE = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT})


class ApiError(Exception):
    """Raised by the HTTP client; converted to a failed :class:`Result` here."""

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


def classify_status(status_code: int) -> ErrorKind | None:
    """Map an HTTP status to an :class:`ErrorKind` (``None`` for success)."""
    if status_code < 400:
        return None
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code >= 500 or status_code == 408:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def classify_exception(exc: BaseException) -> ErrorKind:
    if isinstance(exc, ApiError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code) or ErrorKind.PERMANENT
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (ConnectionError, OSError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """Success value or classified failure."""

    value: T | None = None
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str = "") -> Result[T]:
        return cls(error=kind, detail=detail)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.error is None else default


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class _PendingCall:
    thunk: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    label: str
    attempt: int = 0


class RateLimitedGateway:
    """FIFO request queue with a sliding-window release budget.

    ``clock`` and ``sleep`` are injectable so tests can run the queue on
    simulated time.
    """

    def __init__(
        self,
        requests_per_interval: int = 1,
        interval: float = 1.2,
        max_retries: int = 3,
        retry_delay: float = 3.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if requests_per_interval < 1:
            raise ValueError("requests_per_interval must be >= 1")
        self.requests_per_interval = requests_per_interval
        self.interval = interval
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._clock = clock
        self._sleep = sleep

        self._queue: deque[_PendingCall] = deque()
        self._release_times: deque[float] = deque()
        self._drain_task: asyncio.Task | None = None
        self._current: _PendingCall | None = None
        self._closed = False

        # Observability counters
        self.released = 0
        self.retried = 0
        self.failed = 0

    @classmethod
    def from_policy(cls, policy, **kwargs) -> RateLimitedGateway:
        """Build from a :class:`selectstart.config.GatewayPolicy`."""
        return cls(
            requests_per_interval=policy.requests_per_interval,
            interval=policy.interval,
            max_retries=policy.max_retries,
            retry_delay=policy.retry_delay,
            **kwargs,
        )

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def call(
        self, thunk: Callable[[], Awaitable[T]], *, label: str = ""
    ) -> Result[T]:
        """Queue *thunk* and wait for its :class:`Result`."""
        if self._closed:
            return Result.failure(ErrorKind.TRANSIENT, "gateway closed")
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append(_PendingCall(thunk=thunk, future=future, label=label))
        self._ensure_drain(loop)
        return await future

    def _ensure_drain(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain(), name="ra-gateway-drain")

    async def close(self) -> None:
        """Stop draining and fail every queued call."""
        self._closed = True
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._current is not None:
            self._queue.appendleft(self._current)
            self._current = None
        while self._queue:
            pending = self._queue.popleft()
            if not pending.future.done():
                pending.future.set_result(
                    Result.failure(ErrorKind.TRANSIENT, "gateway closed")
                )

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------
    async def _drain(self) -> None:
        while self._queue:
            pending = self._queue.popleft()
            if pending.future.done():
                # Caller gave up (cancelled) before its turn
                continue

            self._current = pending
            await self._acquire_slot()
            pending.attempt += 1
            self.released += 1
            try:
                value = await pending.thunk()
            except Exception as exc:
                kind = classify_exception(exc)
                await self._handle_failure(pending, kind, exc)
                continue

            if not pending.future.done():
                pending.future.set_result(Result.success(value))
        self._current = None

    async def _handle_failure(
        self, pending: _PendingCall, kind: ErrorKind, exc: Exception
    ) -> None:
        if kind in RETRYABLE and pending.attempt <= self.max_retries:
            delay = self.retry_delay * pending.attempt
            self.retried += 1
            logger.warning(
                "%s failed (%s), retry %d/%d in %.1fs",
                pending.label or "API call", kind, pending.attempt,
                self.max_retries, delay,
            )
            await self._sleep(delay)
            self._queue.appendleft(pending)
            return

        self.failed += 1
        if kind is ErrorKind.PERMANENT and not isinstance(exc, ApiError):
            logger.exception("%s raised unexpectedly", pending.label or "API call")
        elif kind in RETRYABLE:
            logger.error(
                "%s gave up after %d attempts: %s",
                pending.label or "API call", pending.attempt, exc,
            )
        else:
            logger.info("%s failed (%s): %s", pending.label or "API call", kind, exc)
        if not pending.future.done():
            pending.future.set_result(Result.failure(kind, str(exc)))

    async def _acquire_slot(self) -> None:
        """Block until a release fits inside the sliding window, then take it."""
        while True:
            now = self._clock()
            while self._release_times and now - self._release_times[0] >= self.interval:
                self._release_times.popleft()
            if len(self._release_times) < self.requests_per_interval:
                self._release_times.append(now)
                return
            wait = self.interval - (now - self._release_times[0])
            await self._sleep(max(wait, 0.0))
