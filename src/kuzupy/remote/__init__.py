"""
The boundary to the remote execution service. The dispatch layer only ever sees a `Connection` (something that can
`execute` a WorkUnit and hand back a Response, or raise TransportError when the worker is gone) and a `Connector`
(something that establishes one, or raises ConnectError).

Implementations:
 - tcp -- real workers, `WorkerServer` on the remote side, `connect` on the dispatching side,
 - local -- in-process, for development and tests.
"""

from kuzupy.remote.core import Connection, Connector, Serializer  # noqa: F401
from kuzupy.remote.local import LocalConnection, LocalConnector  # noqa: F401
from kuzupy.remote.tcp import TcpConnection, WorkerServer, connect  # noqa: F401
