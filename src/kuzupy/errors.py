"""
Exceptions raised across kuzupy. Each keeps a standard-library base, so a caller who does not care about kuzupy
specifics can still catch `ValueError`, `TimeoutError` or `ConnectionError`.

Only `TransportError` is recovered internally (by failing over to a different worker), everything else propagates.
"""

from typing import Any, Optional


class KuzuError(Exception):
    pass


class InvalidArgument(KuzuError, ValueError):
    """Precondition violation, never retried."""


class PollTimeout(KuzuError, TimeoutError):
    """The polled condition did not hold within the backoff window. `waited_ms` is the total time slept."""

    def __init__(self, message: str, waited_ms: int) -> None:
        super().__init__(f"{message} (waited {waited_ms} ms)")
        self.waited_ms = waited_ms


class NoAvailableWorker(PollTimeout):
    pass


class TransportError(KuzuError, ConnectionError):
    """The connection to a worker is severed. Distinct from a remote evaluation failure."""


class ConnectError(KuzuError, ConnectionError):
    pass


class EvaluationFailure(KuzuError):
    """The worker executed the unit but produced no value; the raw response is attached."""

    def __init__(self, message: str, response: Optional[Any] = None) -> None:
        super().__init__(message)
        self.response = response


class RetryExhausted(KuzuError):
    pass
