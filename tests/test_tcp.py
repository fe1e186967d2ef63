import operator
from typing import Iterator

import pytest

from kuzupy.dist import DispatchPolicy, Registry, build_registry, evaluate, pfilter, pmap, preduce, reconnect
from kuzupy.ds import Response, WorkerSpec, WorkUnit
from kuzupy.errors import ConnectError, EvaluationFailure, TransportError
from kuzupy.poll import Backoff
from kuzupy.remote import WorkerServer, connect


def increment(x: int) -> int:
    return x + 1


def is_even(x: int) -> bool:
    return x % 2 == 0


@pytest.fixture
def servers() -> Iterator[list[WorkerServer]]:
    started = [WorkerServer().start() for _ in range(2)]
    yield started
    for s in started:
        s.close(drop_clients=True)


@pytest.fixture
def registry(servers: list[WorkerServer]) -> Registry:
    specs = [WorkerSpec(str(i), *s.address) for i, s in enumerate(servers)]
    return build_registry(specs, 5.0, connect)


def _closed_port() -> int:
    s = WorkerServer()
    port = s.address[1]
    s.close()
    return port


def test_execute(servers: list[WorkerServer]) -> None:
    conn = connect(*servers[0].address, timeout_s=5.0)
    assert conn.execute(WorkUnit(operator.add, (2, 3))) == Response(values=[5])
    failed = conn.execute(WorkUnit(operator.truediv, (1, 0)))
    assert not failed.ok
    assert "ZeroDivisionError" in failed.error
    conn.close()
    with pytest.raises(TransportError):
        conn.execute(WorkUnit(operator.add, (2, 3)))


def test_connect_refused() -> None:
    with pytest.raises(ConnectError):
        connect("127.0.0.1", _closed_port(), timeout_s=1.0)


def test_distributed(registry: Registry) -> None:
    assert evaluate(registry, 2, WorkUnit(operator.mul, (6, 7))) == 42
    assert list(pmap(registry, 5, 3, increment, [1, 2, 3, 4, 5, 6, 7])) == [2, 3, 4, 5, 6, 7, 8]
    assert list(pfilter(registry, 5, 4, is_even, range(10))) == [0, 2, 4, 6, 8]
    assert preduce(registry, 5, 37, operator.add, range(1000)) == 499500
    with pytest.raises(EvaluationFailure):
        evaluate(registry, 2, WorkUnit(operator.truediv, (1, 0)))


def test_failover_on_dead_worker(servers: list[WorkerServer], registry: Registry) -> None:
    servers[0].close(drop_clients=True)
    # worker 1 looks busier, so the dead worker 0 gets picked first
    registry.begin_task("1")

    policy = DispatchPolicy(backoff=Backoff(max_attempts=3, initial_delay_ms=10, multiplier=2))
    assert evaluate(registry, 2, WorkUnit(operator.add, (2, 3)), policy) == 5
    dead = registry.worker("0")
    assert (dead.connected, dead.connection, dead.active_tasks) == (False, None, 0)
    assert registry.worker("1").active_tasks == 1

    # worker 0 cannot come back, its server is gone
    with pytest.raises(ConnectError):
        reconnect(registry, "0", 1.0, connect)
    assert not registry.worker("0").connected


def test_reconnect_live_worker(registry: Registry) -> None:
    dropped = registry.mark_disconnected("1")
    assert dropped is not None
    dropped.close()
    reconnect(registry, "1", 5.0, connect)
    assert registry.worker("1").connected
    assert [w.name for w in registry.available_workers(1)] == ["0", "1"]
    assert evaluate(registry, 1, WorkUnit(operator.add, (2, 3))) == 5
