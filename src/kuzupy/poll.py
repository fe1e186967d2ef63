"""
Polling with exponential backoff. `long_poll` calls a producer until its result satisfies a predicate, sleeping
between attempts, each sleep `multiplier` times longer than the previous one (truncated to whole milliseconds).

Delays are in milliseconds throughout; `sleep` takes seconds like `time.sleep` and is injectable for tests.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

from kuzupy.errors import InvalidArgument, PollTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _check_multiplier(multiplier: float) -> None:
    if not multiplier > 1:
        raise InvalidArgument(f"backoff multiplier must be greater than 1, got {multiplier}")


def delays(initial_delay_ms: int, multiplier: float, max_attempts: int) -> Iterator[int]:
    """delays(100, 2, 4) -> 100, 200, 400, 800"""
    _check_multiplier(multiplier)
    delay = int(initial_delay_ms)
    for _ in range(max_attempts):
        yield delay
        delay = int(delay * multiplier)


def long_poll(
    f: Callable[[], T],
    pred: Callable[[T], object],
    max_attempts: int,
    initial_delay_ms: int,
    multiplier: float,
    fail_msg: str = "condition not met",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Returns `f()` as soon as `pred(f())` is truthy, trying at most `max_attempts` times. Raises PollTimeout with the
    total time slept otherwise."""
    _check_multiplier(multiplier)
    waited_ms = 0
    for attempt, delay in enumerate(delays(initial_delay_ms, multiplier, max_attempts)):
        r = f()
        if pred(r):
            return r
        logger.debug(f"attempt {attempt} unsuccessful, sleeping {delay} ms")
        sleep(delay / 1000)
        waited_ms += delay
    raise PollTimeout(fail_msg, waited_ms)


@dataclass
class Backoff:
    max_attempts: int = 10
    initial_delay_ms: int = 100
    multiplier: float = 1.25

    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        _check_multiplier(self.multiplier)

    def poll(self, f: Callable[[], T], pred: Callable[[T], object], fail_msg: str = "condition not met") -> T:
        return long_poll(f, pred, self.max_attempts, self.initial_delay_ms, self.multiplier, fail_msg, self.sleep)

    @property
    def window_ms(self) -> int:
        """Total time slept when every attempt fails."""
        return sum(delays(self.initial_delay_ms, self.multiplier, self.max_attempts))
