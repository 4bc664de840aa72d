import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

import structlog

T = TypeVar("T")

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy(Generic[T]):
    """Fixed-interval polling budget.

    Attempt k is issued at start + k * interval_sec and may run for at most
    one interval, so a request never spends more than `deadline_sec` polling
    however slow the remote side is.
    """

    max_attempts: int
    interval_sec: float
    is_terminal: Callable[[T | None], bool]

    @property
    def max_wait_sec(self) -> float:
        return self.max_attempts * self.interval_sec

    @property
    def deadline_sec(self) -> float:
        # waits plus the last in-flight query
        return self.max_wait_sec + self.interval_sec


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    value: T | None
    attempts: int
    terminal: bool


async def poll_until(
    query: Callable[[float], Awaitable[T | None]],
    policy: RetryPolicy[T],
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollOutcome[T]:
    """Await `query(timeout)` on a fixed schedule until it yields a terminal value.

    Waits cooperatively between attempts, so one polling request never holds
    a worker thread. `query` must give up after `timeout` seconds.
    """
    start = clock()
    value: T | None = None
    for attempt in range(1, policy.max_attempts + 1):
        slot = start + attempt * policy.interval_sec
        await sleep(max(0.0, slot - clock()))
        timeout = max(0.0, slot + policy.interval_sec - clock())
        value = await query(timeout)
        if policy.is_terminal(value):
            return PollOutcome(value=value, attempts=attempt, terminal=True)
        logger.debug("Poll attempt not terminal", attempt=attempt, max_attempts=policy.max_attempts)
    return PollOutcome(value=value, attempts=policy.max_attempts, terminal=False)
