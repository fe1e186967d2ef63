"""
Static configuration: the ordered list of workers, and the timeout used when connecting to them. Loading it from
wherever (a file, an env, a notebook cell) is up to the caller; `Config.from_dict` accepts the plain shape

    {"timeout": 20000, "servers": [{"name": "1", "host": "127.0.0.1", "port": 52001}, ...]}

with the timeout in milliseconds.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from kuzupy.ds import WorkerSpec
from kuzupy.errors import InvalidArgument


@dataclass
class Config:
    servers: list[WorkerSpec] = field(default_factory=list)
    timeout_s: float = 20.0

    # defaults for the Cluster methods, each call can override
    concurrency: int = 1
    chunk_size: int = 100

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for spec in self.servers:
            if spec.name in seen:
                raise InvalidArgument(f"duplicate worker name {spec.name!r}")
            seen.add(spec.name)
        if self.concurrency < 1:
            raise InvalidArgument(f"concurrency must be positive, got {self.concurrency}")
        if self.chunk_size < 1:
            raise InvalidArgument(f"chunk size must be positive, got {self.chunk_size}")

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Config":
        try:
            servers = [WorkerSpec(name=str(s["name"]), host=s["host"], port=int(s["port"])) for s in d["servers"]]
        except KeyError as e:
            raise InvalidArgument(f"missing key {e} in server configuration") from e
        extra = {k: d[k] for k in ("concurrency", "chunk_size") if k in d}
        if "timeout" in d:
            extra["timeout_s"] = d["timeout"] / 1000
        return cls(servers=servers, **extra)
