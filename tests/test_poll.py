from itertools import count

import pytest

from kuzupy.errors import InvalidArgument, PollTimeout
from kuzupy.poll import Backoff, delays, long_poll


def test_delays() -> None:
    assert list(delays(100, 2, 4)) == [100, 200, 400, 800]
    # truncated at every step
    assert list(delays(100, 1.25, 5)) == [100, 125, 156, 195, 243]
    assert list(delays(100, 2, 0)) == []


def test_long_poll_succeeds() -> None:
    slept: list[float] = []
    counter = count(1)
    r = long_poll(lambda: next(counter), lambda x: x >= 3, 10, 100, 2, sleep=slept.append)
    assert r == 3
    assert slept == [0.1, 0.2]


def test_long_poll_first_attempt() -> None:
    slept: list[float] = []
    assert long_poll(lambda: "x", bool, 1, 100, 2, sleep=slept.append) == "x"
    assert slept == []


def test_long_poll_times_out() -> None:
    slept: list[float] = []
    calls = []

    def f() -> None:
        calls.append(1)

    with pytest.raises(PollTimeout) as e:
        long_poll(f, bool, 3, 10, 2, "never", sleep=slept.append)
    assert e.value.waited_ms == 10 + 20 + 40
    assert "never" in str(e.value)
    assert len(calls) == 3
    assert len(slept) == 3
    # PollTimeout is a TimeoutError as well
    assert isinstance(e.value, TimeoutError)


def test_multiplier_validated() -> None:
    calls = []
    with pytest.raises(InvalidArgument):
        long_poll(lambda: calls.append(1), bool, 3, 10, 1)
    assert calls == []
    with pytest.raises(ValueError):
        Backoff(multiplier=0.5)


def test_backoff() -> None:
    assert Backoff().window_ms == 3299
    slept: list[float] = []
    b = Backoff(max_attempts=4, initial_delay_ms=10, multiplier=2, sleep=slept.append)
    with pytest.raises(PollTimeout) as e:
        b.poll(lambda: [], bool)
    assert e.value.waited_ms == b.window_ms == 150
    assert slept == [0.01, 0.02, 0.04, 0.08]
