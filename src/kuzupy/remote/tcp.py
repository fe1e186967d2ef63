"""
TCP transport, built on `multiprocessing.connection` message framing. A WorkUnit goes out serialized, a Response comes
back serialized; the serializer is pluggable and defaults to `pickle` (so both the callable and its arguments must be
importable/picklable on the worker side, just like with a process pool).

Client side, a TcpConnection is the handle the registry stores for one worker. Since several dispatches may target
the same worker at once, it keeps a small pool of sockets: one request in flight per socket, a new socket opened
whenever all are busy. Any socket-level error -- refused, reset, EOF, broken pipe -- surfaces as TransportError.

Server side, WorkerServer accepts connections and serves each on its own thread until the client hangs up. There is no
authentication nor encryption, bind to trusted interfaces only.
"""

import logging
import pickle
import socket
import threading
import traceback
from contextlib import suppress
from multiprocessing.connection import Connection as _Channel
from multiprocessing.connection import Listener
from typing import Optional

from kuzupy.ds import Response, WorkUnit, run_unit
from kuzupy.errors import ConnectError, TransportError
from kuzupy.remote.core import Serializer

logger = logging.getLogger(__name__)

_listen_backlog = 64


class TcpConnection:
    def __init__(self, host: str, port: int, timeout_s: float, serializer: Serializer = pickle) -> None:
        self.host = host
        self.port = port
        self.timeout_s = timeout_s
        self.serializer = serializer
        self._idle: list[_Channel] = []
        self._lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return f"TcpConnection({self.host}:{self.port})"

    def _open(self) -> _Channel:
        s = socket.create_connection((self.host, self.port), timeout=self.timeout_s)
        # the timeout applies to connecting only, evaluation may take arbitrarily long
        s.settimeout(None)
        return _Channel(s.detach())

    def _checkout(self) -> _Channel:
        with self._lock:
            if self._closed:
                raise TransportError(f"connection to {self.host}:{self.port} is closed")
            if self._idle:
                return self._idle.pop()
        try:
            return self._open()
        except OSError as e:
            raise TransportError(f"cannot reach {self.host}:{self.port}: {e}") from e

    def _checkin(self, channel: _Channel) -> None:
        with self._lock:
            if not self._closed:
                self._idle.append(channel)
                return
        channel.close()

    def execute(self, unit: WorkUnit) -> Response:
        payload = self.serializer.dumps(unit)
        channel = self._checkout()
        try:
            channel.send_bytes(payload)
            data = channel.recv_bytes()
        except (OSError, EOFError) as e:
            channel.close()
            raise TransportError(f"connection to {self.host}:{self.port} lost: {e!r}") from e
        self._checkin(channel)
        return self.serializer.loads(data)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for channel in idle:
            channel.close()


def connect(host: str, port: int, timeout_s: float, serializer: Serializer = pickle) -> TcpConnection:
    conn = TcpConnection(host, port, timeout_s, serializer)
    try:
        conn._checkin(conn._open())
    except OSError as e:
        raise ConnectError(f"cannot connect to {host}:{port} within {timeout_s} s: {e}") from e
    logger.info(f"connected to {host}:{port}")
    return conn


class WorkerServer:
    """Executes units sent by TcpConnection clients. `port=0` binds an ephemeral port, see `address`."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0, serializer: Serializer = pickle) -> None:
        self.serializer = serializer
        self._listener = Listener((host, port), backlog=_listen_backlog)
        self._address: tuple[str, int] = self._listener.address
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._clients: set[_Channel] = set()
        self._clients_lock = threading.Lock()

    @property
    def address(self) -> tuple[str, int]:
        return self._address

    def _handle(self, channel: _Channel) -> None:
        try:
            self._serve_client(channel)
        finally:
            with self._clients_lock:
                self._clients.discard(channel)
            channel.close()

    def _serve_client(self, channel: _Channel) -> None:
        while True:
            try:
                data = channel.recv_bytes()
            except (OSError, EOFError):
                logger.debug(f"client of {self.address} hung up")
                return
            try:
                payload = self.serializer.dumps(run_unit(self.serializer.loads(data)))
            except Exception:
                # undecodable unit or unencodable result, still an evaluation failure for the client
                payload = self.serializer.dumps(Response(values=[], error=traceback.format_exc()))
            try:
                channel.send_bytes(payload)
            except OSError:
                logger.debug(f"client of {self.address} hung up before the reply")
                return

    def serve_forever(self) -> None:
        logger.info(f"worker serving on {self.address}")
        while True:
            try:
                channel = self._listener.accept()
            except OSError:
                if self._closed:
                    return
                raise
            if self._closed:
                channel.close()
                return
            with self._clients_lock:
                self._clients.add(channel)
            threading.Thread(target=self._handle, args=(channel,), daemon=True).start()

    def start(self) -> "WorkerServer":
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()
        return self

    def close(self, drop_clients: bool = False) -> None:
        """Stops accepting. Connections already being served run until their clients hang up, unless `drop_clients`,
        in which case they are shut down -- to the clients this looks like the worker went away."""
        if self._closed:
            return
        self._closed = True
        # wake up a blocked accept
        with suppress(OSError):
            socket.create_connection(self._address, timeout=1).close()
        self._listener.close()
        if drop_clients:
            with self._clients_lock:
                clients = list(self._clients)
            for channel in clients:
                with suppress(OSError):
                    s = socket.fromfd(channel.fileno(), socket.AF_INET, socket.SOCK_STREAM)
                    s.shutdown(socket.SHUT_RDWR)
                    s.close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "WorkerServer":
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.close()
