"""
Distributed evaluation over a fixed pool of remote workers, load-balanced by the number of tasks each currently runs,
with automatic failover when a worker disconnects. Four primitives, all built on one dispatch operation:
 - evaluate -- a single WorkUnit on one worker,
 - pmap / pfilter -- lazy, order preserving, input split into chunks evaluated concurrently,
 - preduce -- chunks reduced remotely, partial results locally.

Typical use:
```
registry = build_registry(config.servers, config.timeout_s, tcp.connect)
squares = list(pmap(registry, 4, 100, square, range(10_000)))
```
or the same through `Cluster.from_config(config).map(square, range(10_000))`.

The registry is the only shared state. A worker whose connection breaks mid-dispatch is marked disconnected and stays
so until `reconnect` is called for it; nothing reconnects on its own.
"""

from kuzupy.dist.core import Cluster, DispatchPolicy, evaluate, pfilter, pmap, preduce  # noqa: F401
from kuzupy.dist.registry import Registry, build_registry, reconnect  # noqa: F401
from kuzupy.dist.select import available_worker  # noqa: F401
