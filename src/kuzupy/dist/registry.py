"""
The worker registry: the one piece of mutable state shared by every concurrent dispatch.

The set of workers is fixed at construction, only their state changes. Each Worker entry carries its own lock, so
updates to one worker never wait for another. Reads hand out snapshots (copies), never the live entries.

Invariants kept by every operation:
 - active_tasks >= 0,
 - a disconnected worker has no connection and no active tasks.

No operation here touches the network. Connections are established by the caller and passed in, see `reconnect`.
"""

import logging
from dataclasses import replace
from typing import Any, Iterable, Iterator, Optional

from typing_extensions import Self

from kuzupy.ds import Worker, WorkerSpec
from kuzupy.errors import InvalidArgument
from kuzupy.remote.core import Connector

logger = logging.getLogger(__name__)


class Registry:
    def __init__(self, workers: Iterable[Worker]) -> None:
        self._workers: dict[str, Worker] = {}
        for w in workers:
            if w.name in self._workers:
                raise InvalidArgument(f"duplicate worker name {w.name!r}")
            self._workers[w.name] = w

    @classmethod
    def from_specs(cls, specs: Iterable[WorkerSpec], timeout_s: float, connect: Connector) -> Self:
        """Connects to every worker in turn. If any fails, the connections established so far are closed."""
        workers: list[Worker] = []
        try:
            for spec in specs:
                workers.append(Worker.from_spec(spec, connect(spec.host, spec.port, timeout_s)))
            return cls(workers)
        except Exception:
            for w in workers:
                w.connection.close()
            raise

    def _entry(self, name: str) -> Worker:
        try:
            return self._workers[name]
        except KeyError:
            raise InvalidArgument(f"unknown worker {name!r}") from None

    def __len__(self) -> int:
        return len(self._workers)

    def __iter__(self) -> Iterator[Worker]:
        return iter(self.workers())

    def names(self) -> list[str]:
        return list(self._workers)

    def worker(self, name: str) -> Worker:
        w = self._entry(name)
        with w.lock:
            return replace(w)

    def workers(self) -> list[Worker]:
        return [self.worker(name) for name in self._workers]

    def connected_workers(self) -> list[Worker]:
        return [w for w in self.workers() if w.connected]

    def available_workers(self, concurrency: int) -> list[Worker]:
        return [w for w in self.connected_workers() if w.active_tasks < concurrency]

    def begin_task(self, name: str) -> Optional[Any]:
        """Counts a task and returns the connection it is counted against, the one to dispatch on. Returns None,
        counting nothing, if the worker got disconnected in the meantime."""
        w = self._entry(name)
        with w.lock:
            if not w.connected:
                return None
            w.active_tasks += 1
            return w.connection

    def end_task(self, name: str, connection: Optional[Any] = None) -> None:
        """When `connection` is given and the worker holds a different one by now, the counter was already reset and
        the task is no longer in it, so nothing changes."""
        w = self._entry(name)
        with w.lock:
            if connection is not None and w.connection is not connection:
                return
            # a task begun before a disconnect or reconnect may end after the counter was reset
            w.active_tasks = max(0, w.active_tasks - 1)

    def mark_disconnected(self, name: str, connection: Optional[Any] = None) -> Optional[Any]:
        """Returns the dropped connection. When `connection` is given but the worker already holds a different one
        (it was reconnected since), nothing changes and None is returned."""
        w = self._entry(name)
        with w.lock:
            if connection is not None and w.connection is not connection:
                return None
            dropped = w.connection
            w.connection = None
            w.connected = False
            w.active_tasks = 0
        logger.warning(f"worker {name} marked disconnected")
        return dropped

    def reconnect(self, name: str, connection: Any) -> Optional[Any]:
        """Installs a freshly established connection, returning the replaced one, if any."""
        w = self._entry(name)
        with w.lock:
            previous = w.connection
            w.connection = connection
            w.connected = True
            w.active_tasks = 0
        logger.info(f"worker {name} reconnected")
        return previous


def build_registry(specs: Iterable[WorkerSpec], timeout_s: float, connect: Connector) -> Registry:
    """Connects to every worker, failing with ConnectError on the first one not reachable."""
    registry = Registry.from_specs(specs, timeout_s, connect)
    logger.info(f"registry built with {len(registry)} workers")
    return registry


def reconnect(registry: Registry, name: str, timeout_s: float, connect: Connector) -> None:
    """Establishes a new connection to `name` and installs it. On ConnectError the registry is left untouched."""
    w = registry.worker(name)
    connection = connect(w.host, w.port, timeout_s)
    previous = registry.reconnect(name, connection)
    if previous is not None and previous is not connection:
        previous.close()
