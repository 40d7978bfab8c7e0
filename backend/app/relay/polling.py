import asyncio
import logging
from typing import Awaitable, Callable, Container, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Run states that stop polling; anything else means keep waiting
TERMINAL_RUN_STATUSES = frozenset(
    {"completed", "failed", "cancelled", "expired", "requires_action", "incomplete"}
)


class PollTimeout(Exception):
    """Raised when the attempt cap is reached before a terminal status."""

    def __init__(self, attempts: int, last):
        super().__init__(f"no terminal status after {attempts} attempts")
        self.attempts = attempts
        self.last = last


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    status_of: Callable[[T], str],
    *,
    terminal: Container[str] = TERMINAL_RUN_STATUSES,
    interval_s: float = 1.0,
    max_attempts: int = 30,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "run",
) -> T:
    """Fetch once, then re-fetch every ``interval_s`` until the status is terminal.

    At most ``max_attempts`` re-fetches are made, so the worst case wall time
    is about ``interval_s * max_attempts``. Returns the first value whose
    status is terminal and raises ``PollTimeout`` when the cap is spent.
    """
    if max_attempts < 0:
        raise ValueError("max_attempts must not be negative")

    last = await fetch()
    attempts = 0
    while status_of(last) not in terminal:
        if attempts >= max_attempts:
            raise PollTimeout(attempts, last)
        await sleep(interval_s)
        last = await fetch()
        attempts += 1
        if attempts % 10 == 0:
            logger.info("Still polling %s... status=%s attempt=%d/%d", label, status_of(last), attempts, max_attempts)
    logger.debug("%s reached %s after %d poll(s)", label, status_of(last), attempts)
    return last
