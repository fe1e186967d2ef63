from typing import Any, Protocol, runtime_checkable

from kuzupy.ds import Response, WorkUnit


@runtime_checkable
class Connection(Protocol):
    """An established connection to one worker. `execute` blocks until the worker answers, for as long as the transport
    allows, and raises `kuzupy.errors.TransportError` if the connection turns out to be severed. A unit that merely
    failed to evaluate comes back as a normal Response."""

    def execute(self, unit: WorkUnit) -> Response:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class Connector(Protocol):
    """Establishes a Connection, raising `kuzupy.errors.ConnectError` if the worker is not reachable within `timeout_s`."""

    def __call__(self, host: str, port: int, timeout_s: float) -> Connection:
        raise NotImplementedError


class Serializer(Protocol):
    """Anything with pickle's `dumps`/`loads` pair. The `pickle` module itself qualifies."""

    def dumps(self, obj: Any) -> bytes:
        raise NotImplementedError

    def loads(self, data: bytes) -> Any:
        raise NotImplementedError
