"""
Dispatch and the distributed map / filter / reduce built on top of it.

`evaluate` sends one WorkUnit to the least loaded available worker. If the worker turns out to be gone (the transport
raises one of `DispatchPolicy.failover_on`, TransportError by default), it is marked disconnected and the whole
evaluation starts over on another worker. A unit may thus run more than once -- at-least-once, not exactly-once.
Retrying ends only when selection gives up with NoAvailableWorker, or after `max_failovers` when set.

`pmap` / `pfilter` / `preduce` partition the input into chunks and evaluate one unit per chunk, each on its own thread.
All chunks are submitted at call time. `pmap` / `pfilter` return an iterator yielding results in input order, lazily:
consuming waits on the chunks one by one, while the later ones keep computing in the background. `preduce` blocks until
every chunk is done.

`f` travels to the workers along with the chunks, so with the tcp transport it must be picklable -- a module level
function, not a lambda.
"""

import logging
import random
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import reduce
from itertools import chain
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

from kuzupy.config import Config
from kuzupy.dist.registry import Registry, build_registry, reconnect
from kuzupy.dist.select import available_worker
from kuzupy.ds import WorkUnit
from kuzupy.errors import EvaluationFailure, InvalidArgument, RetryExhausted, TransportError
from kuzupy.it import chunks, consume, flatmap
from kuzupy.poll import Backoff
from kuzupy.remote import tcp
from kuzupy.remote.core import Connector

logger = logging.getLogger(__name__)

TA = TypeVar("TA")
TB = TypeVar("TB")


@dataclass
class DispatchPolicy:
    backoff: Backoff = field(default_factory=Backoff)
    failover_on: tuple[type[BaseException], ...] = (TransportError,)
    max_failovers: Optional[int] = None  # None for unlimited
    max_threads: Optional[int] = None  # None for a thread per chunk

    rng: Optional[random.Random] = None


def _check_positive(what: str, v: int) -> None:
    if v < 1:
        raise InvalidArgument(f"{what} must be positive, got {v}")


def evaluate(registry: Registry, concurrency: int, unit: WorkUnit, policy: Optional[DispatchPolicy] = None) -> Any:
    """Evaluates `unit` on an available worker and returns its value. Raises EvaluationFailure when the worker yields
    none, NoAvailableWorker when no worker is left to try."""
    policy = policy or DispatchPolicy()
    _check_positive("concurrency", concurrency)
    failovers = 0
    while True:
        worker = available_worker(registry, concurrency, policy.backoff, policy.rng)
        # the selected snapshot may be stale by now, dispatch on the connection the task is counted against
        connection = registry.begin_task(worker.name)
        if connection is None:
            logger.debug(f"worker {worker.name} went away before dispatch, selecting again")
            continue
        try:
            response = connection.execute(unit)
        except policy.failover_on as e:
            dropped = registry.mark_disconnected(worker.name, connection)
            if dropped is not None:
                dropped.close()
            failovers += 1
            logger.warning(f"transport failure on worker {worker.name} ({e}), failover #{failovers}")
            if policy.max_failovers is not None and failovers > policy.max_failovers:
                raise RetryExhausted(f"gave up after {failovers} failovers") from e
            continue
        except Exception:
            registry.end_task(worker.name, connection)
            raise
        registry.end_task(worker.name, connection)
        if not response.ok:
            raise EvaluationFailure(f"evaluation on worker {worker.name} failed: {response.error}", response)
        return response.values[0]


def _map_chunk(f: Callable[[TA], TB], chunk: list[TA]) -> list[TB]:
    return list(map(f, chunk))


def _filter_chunk(f: Callable[[TA], Any], chunk: list[TA]) -> list[TA]:
    return list(filter(f, chunk))


def _reduce_chunk(f: Callable[[TA, TA], TA], chunk: list[TA]) -> TA:
    return reduce(f, chunk)


def _submit(
    registry: Registry,
    concurrency: int,
    chunk_size: int,
    chunk_fn: Callable[..., Any],
    f: Callable,
    s: Iterable,
    policy: Optional[DispatchPolicy],
) -> tuple[list[Future], int]:
    """Submits one evaluation per chunk, returns their futures in input order, and the head-start window."""
    policy = policy or DispatchPolicy()
    _check_positive("concurrency", concurrency)
    _check_positive("chunk size", chunk_size)
    units = [WorkUnit(chunk_fn, (f, chunk)) for chunk in chunks(s, chunk_size)]
    window = concurrency * len(registry.available_workers(concurrency))
    executor = ThreadPoolExecutor(max_workers=policy.max_threads or max(1, len(units)), thread_name_prefix="kuzupy")
    futures = [executor.submit(evaluate, registry, concurrency, unit, policy) for unit in units]
    # submitted ones still run to completion
    executor.shutdown(wait=False)
    logger.debug(f"submitted {len(units)} chunks of {chunk_fn.__name__}, window {window}")
    return futures, window


def _ordered(futures: list[Future], window: int) -> Iterator[Any]:
    """Results in input order. Every chunk is already running when this is called, the window throttles nothing: the
    first `window` futures are the head start the workers had at submission, the rest are drained after them, in
    order, each one possibly finished long before its turn."""
    head, tail = consume(iter(futures), window)
    return chain(flatmap(Future.result, head), flatmap(Future.result, tail))


def pmap(
    registry: Registry,
    concurrency: int,
    chunk_size: int,
    f: Callable[[TA], TB],
    s: Iterable[TA],
    policy: Optional[DispatchPolicy] = None,
) -> Iterator[TB]:
    """Same as `map(f, s)`, distributed in chunks of `chunk_size`. Single pass -- iterating again means calling again."""
    return _ordered(*_submit(registry, concurrency, chunk_size, _map_chunk, f, s, policy))


def pfilter(
    registry: Registry,
    concurrency: int,
    chunk_size: int,
    f: Callable[[TA], Any],
    s: Iterable[TA],
    policy: Optional[DispatchPolicy] = None,
) -> Iterator[TA]:
    """Same as `filter(f, s)`, distributed in chunks of `chunk_size`."""
    return _ordered(*_submit(registry, concurrency, chunk_size, _filter_chunk, f, s, policy))


def preduce(
    registry: Registry,
    concurrency: int,
    chunk_size: int,
    f: Callable[[TA, TA], TA],
    s: Iterable[TA],
    policy: Optional[DispatchPolicy] = None,
) -> TA:
    """Same as `functools.reduce(f, s)` without an initial value; `f` must be associative. Each chunk is reduced on
    a worker, the partial results locally."""
    futures, _ = _submit(registry, concurrency, chunk_size, _reduce_chunk, f, s, policy)
    if not futures:
        raise InvalidArgument("reduce of empty sequence with no initial value")
    return reduce(f, [future.result() for future in futures])


@dataclass
class Cluster:
    """Registry and defaults bundled together. Each method takes per call overrides of the config defaults."""

    registry: Registry
    config: Config = field(default_factory=Config)
    policy: DispatchPolicy = field(default_factory=DispatchPolicy)
    connect: Connector = tcp.connect

    @classmethod
    def from_config(
        cls, config: Config, connect: Connector = tcp.connect, policy: Optional[DispatchPolicy] = None
    ) -> "Cluster":
        registry = build_registry(config.servers, config.timeout_s, connect)
        return cls(registry, config, policy or DispatchPolicy(), connect)

    def _concurrency(self, concurrency: Optional[int]) -> int:
        return concurrency if concurrency is not None else self.config.concurrency

    def _chunk_size(self, chunk_size: Optional[int]) -> int:
        return chunk_size if chunk_size is not None else self.config.chunk_size

    def eval(self, unit: WorkUnit, concurrency: Optional[int] = None) -> Any:
        return evaluate(self.registry, self._concurrency(concurrency), unit, self.policy)

    def call(self, fn: Callable[..., TB], *args: Any) -> TB:
        return self.eval(WorkUnit(fn, args))

    def map(
        self, f: Callable[[TA], TB], s: Iterable[TA], concurrency: Optional[int] = None, chunk_size: Optional[int] = None
    ) -> Iterator[TB]:
        c, n = self._concurrency(concurrency), self._chunk_size(chunk_size)
        return pmap(self.registry, c, n, f, s, self.policy)

    def filter(
        self, f: Callable[[TA], Any], s: Iterable[TA], concurrency: Optional[int] = None, chunk_size: Optional[int] = None
    ) -> Iterator[TA]:
        c, n = self._concurrency(concurrency), self._chunk_size(chunk_size)
        return pfilter(self.registry, c, n, f, s, self.policy)

    def reduce(
        self, f: Callable[[TA, TA], TA], s: Iterable[TA], concurrency: Optional[int] = None, chunk_size: Optional[int] = None
    ) -> TA:
        c, n = self._concurrency(concurrency), self._chunk_size(chunk_size)
        return preduce(self.registry, c, n, f, s, self.policy)

    def reconnect(self, name: str) -> None:
        reconnect(self.registry, name, self.config.timeout_s, self.connect)
