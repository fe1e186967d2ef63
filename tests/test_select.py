import random

import pytest

from kuzupy.dist import available_worker, build_registry
from kuzupy.ds import WorkerSpec
from kuzupy.errors import NoAvailableWorker
from kuzupy.poll import Backoff
from kuzupy.remote import LocalConnector

specs = [WorkerSpec("a", "h", 1), WorkerSpec("b", "h", 2), WorkerSpec("c", "h", 3)]


def test_least_loaded_selected() -> None:
    registry = build_registry(specs, 1.0, LocalConnector())
    for name, tasks in (("a", 2), ("b", 0), ("c", 1)):
        for _ in range(tasks):
            registry.begin_task(name)
    for seed in range(20):
        assert available_worker(registry, 5, rng=random.Random(seed)).name == "b"


def test_never_disconnected_nor_saturated() -> None:
    registry = build_registry(specs, 1.0, LocalConnector())
    registry.mark_disconnected("a")
    registry.begin_task("b")
    registry.begin_task("b")
    registry.begin_task("c")
    for seed in range(20):
        w = available_worker(registry, 2, rng=random.Random(seed))
        assert w.name == "c"
        assert w.connected
        assert w.active_tasks < 2


def test_ties_broken_at_random() -> None:
    registry = build_registry(specs, 1.0, LocalConnector())
    chosen = {available_worker(registry, 1, rng=random.Random(seed)).name for seed in range(100)}
    assert chosen == {"a", "b", "c"}


def test_no_available_worker() -> None:
    registry = build_registry(specs, 1.0, LocalConnector())
    for name in registry.names():
        registry.mark_disconnected(name)
    slept: list[float] = []
    backoff = Backoff(max_attempts=5, initial_delay_ms=10, multiplier=2, sleep=slept.append)
    with pytest.raises(NoAvailableWorker) as e:
        available_worker(registry, 1, backoff)
    assert e.value.waited_ms == backoff.window_ms == 310
    assert len(slept) == 5


def test_worker_becoming_available_while_polling() -> None:
    registry = build_registry(specs[:1], 1.0, LocalConnector())
    registry.begin_task("a")

    def sleep(_: float) -> None:
        registry.end_task("a")

    assert available_worker(registry, 1, Backoff(sleep=sleep)).name == "a"
