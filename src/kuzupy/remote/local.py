"""
In-process transport: units are executed right in the calling thread. Useful for development and tests -- the dispatch
layer above behaves exactly as with real workers, including load accounting. A LocalConnection can be severed by hand
to simulate a worker going away.
"""

import logging
from typing import Optional

from kuzupy.ds import Response, WorkUnit, run_unit
from kuzupy.errors import ConnectError, TransportError
from kuzupy.remote.core import Serializer

logger = logging.getLogger(__name__)


class LocalConnection:
    def __init__(self, name: str, serializer: Optional[Serializer] = None) -> None:
        self.name = name
        self.serializer = serializer
        self.severed = False
        self.executed = 0

    def execute(self, unit: WorkUnit) -> Response:
        if self.severed:
            raise TransportError(f"local worker {self.name} is gone")
        if self.serializer is not None:
            # round trip to catch units that would not survive a real transport
            unit = self.serializer.loads(self.serializer.dumps(unit))
        self.executed += 1
        return run_unit(unit)

    def sever(self) -> None:
        self.severed = True

    def close(self) -> None:
        self.severed = True


class LocalConnector:
    """Connector for LocalConnection. Hosts listed in `unreachable` refuse to connect."""

    def __init__(self, serializer: Optional[Serializer] = None) -> None:
        self.serializer = serializer
        self.unreachable: set[tuple[str, int]] = set()
        self.connections: list[LocalConnection] = []

    def __call__(self, host: str, port: int, timeout_s: float) -> LocalConnection:
        if (host, port) in self.unreachable:
            raise ConnectError(f"{host}:{port} unreachable")
        conn = LocalConnection(f"{host}:{port}", self.serializer)
        self.connections.append(conn)
        logger.debug(f"local connection to {host}:{port} established")
        return conn
