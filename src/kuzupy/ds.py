"""
Module contents:
 - WorkerSpec: static descriptor of one remote worker (name, host, port), as found in configuration,
 - Worker: the mutable registry entry for a worker. Carries its own lock -- every read or write of the counters and
   the connection fields goes through it, see `kuzupy.dist.registry`,
 - WorkUnit: the opaque payload sent to a worker. A callable and its positional arguments, both of which must be
   serializable by whatever serializer the transport uses (pickle by default),
 - Response: the envelope coming back from a worker -- either some values, or an error text,
 - run_unit: executes a WorkUnit and wraps the outcome into a Response. This is what runs on the worker side, for every
   transport.
"""

import traceback
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class WorkerSpec:
    name: str
    host: str
    port: int


@dataclass
class Worker:
    name: str
    host: str
    port: int
    connection: Optional[Any] = None  # opaque handle, see kuzupy.remote.Connection
    connected: bool = False
    active_tasks: int = 0

    lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    @classmethod
    def from_spec(cls, spec: WorkerSpec, connection: Any) -> "Worker":
        return cls(name=spec.name, host=spec.host, port=spec.port, connection=connection, connected=True)

    @property
    def spec(self) -> WorkerSpec:
        return WorkerSpec(self.name, self.host, self.port)


@dataclass(frozen=True)
class WorkUnit:
    fn: Callable[..., Any]
    args: tuple = ()

    def __call__(self) -> Any:
        return self.fn(*self.args)


@dataclass
class Response:
    """`values` holds what the evaluation yielded, `error` a formatted traceback if it raised. An empty `values` with
    no `error` is still a failed evaluation from the caller's point of view."""

    values: list[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return len(self.values) > 0


def run_unit(unit: WorkUnit) -> Response:
    try:
        return Response(values=[unit()])
    except Exception:
        return Response(values=[], error=traceback.format_exc())
