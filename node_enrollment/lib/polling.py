"""Fixed interval polling with a deadline."""

import time
from collections.abc import Callable


class PollTimeoutError(TimeoutError):
    """Condition was not met before the deadline."""


def poll_until(
    condition: Callable[[], bool],
    interval: float,
    timeout: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Call condition until it returns True.

    The condition is checked once straight away, then every interval seconds.
    An exception raised by the condition stops polling and propagates.

    Args:
        condition: Callable returning True when done
        interval: Seconds between checks
        timeout: Seconds before giving up
        sleep: Sleep function, injectable for tests
        clock: Monotonic clock, injectable for tests

    Raises:
        PollTimeoutError: If the deadline passes first
    """
    deadline = clock() + timeout
    while True:
        if condition():
            return
        remaining = deadline - clock()
        if remaining <= 0:
            raise PollTimeoutError(f"timed out waiting for the condition after {timeout}s")
        sleep(min(interval, remaining))
