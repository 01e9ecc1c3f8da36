# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Cross-process SSO client and service host over Arrow IPC.

The client talks to a separately running service through a *Link*: a Unix
domain socket carrying Arrow IPC frames.  Operations are ``async`` on the
client side, bounded in time, and safe to cancel.

Method Kinds (derived from the ``SsoService`` Protocol signatures)
-----------------------------------------------------------------
- **Two-phase**: takes an ``AuthCallback``.  The service first delivers an
  outcome (accepted or rejected) and, if accepted, the resulting
  ``Account``.  The client folds both deliveries into one ``Result``.
- **Fire-and-forget**: returns ``None``; only transport success is observed.
- **Query**: returns an ``Account``, ``None``, or a list of accounts.

Wire Protocol
-------------
Every frame is one complete IPC stream (schema + 1 batch + EOS).  Frames
are written back to back on the socket and routed by custom metadata on
the batch (``ssoapi.frame``, ``ssoapi.method``, ``ssoapi.call_id``,
``ssoapi.callback_id``).  See :mod:`ssoapi.ipc._wire`.

Timing
------
``ensure_connected()`` makes up to 3 bind attempts of 5 s each, 1 s apart
(worst case 17 s).  Two-phase operations are bounded by a 30 s outer
timeout measured from the remote call.  All bounds come from
:class:`ClientConfig`.
"""

from __future__ import annotations

import contextlib
import threading
from collections.abc import Iterator
from os import PathLike

from ssoapi.ipc._client import CONNECT_FAILED_MESSAGE, NOT_CONNECTED_MESSAGE, SsoApiClient
from ssoapi.ipc._common import (
    CALLBACK_TIMEOUT,
    CONNECTION_TIMEOUT,
    MAX_CONNECTION_RETRIES,
    RETRY_DELAY,
    SSO_SERVICE_ACTION,
    SSO_SERVICE_CLASS,
    SSO_SERVICE_PACKAGE,
    ClientConfig,
    ErrorKind,
    Failure,
    ProtocolError,
    Result,
    ServiceTarget,
    SsoError,
    Success,
    TransportError,
)
from ssoapi.ipc._connection import ConnectionManager, ConnectionState
from ssoapi.ipc._correlator import AuthCallbackCorrelator, Waiter
from ssoapi.ipc._protocol import AuthCallback, SsoService
from ssoapi.ipc._proxy import RemoteSsoService
from ssoapi.ipc._server import RemoteAuthCallback, SsoServiceHost, UnixServiceServer, serve_unix
from ssoapi.ipc._transport import (
    SOCKET_DIR_ENV,
    Link,
    ServiceBinder,
    ServiceConnection,
    UnixSocketBinder,
    default_socket_path,
)
from ssoapi.ipc._types import MethodKind, RemoteMethodInfo, remote_methods

__all__ = [
    # Client
    "SsoApiClient",
    "ClientConfig",
    "ServiceTarget",
    "connect",
    # Results and errors
    "Result",
    "Success",
    "Failure",
    "ErrorKind",
    "SsoError",
    "TransportError",
    "ProtocolError",
    "CONNECT_FAILED_MESSAGE",
    "NOT_CONNECTED_MESSAGE",
    # Interfaces
    "SsoService",
    "AuthCallback",
    "MethodKind",
    "RemoteMethodInfo",
    "remote_methods",
    # Internals exposed for composition and tests
    "ConnectionManager",
    "ConnectionState",
    "AuthCallbackCorrelator",
    "Waiter",
    "RemoteSsoService",
    # Transport
    "ServiceBinder",
    "ServiceConnection",
    "UnixSocketBinder",
    "Link",
    "default_socket_path",
    "SOCKET_DIR_ENV",
    # Service host
    "SsoServiceHost",
    "RemoteAuthCallback",
    "UnixServiceServer",
    "serve_unix",
    "serve_unix_thread",
    # Defaults
    "SSO_SERVICE_PACKAGE",
    "SSO_SERVICE_CLASS",
    "SSO_SERVICE_ACTION",
    "CONNECTION_TIMEOUT",
    "CALLBACK_TIMEOUT",
    "MAX_CONNECTION_RETRIES",
    "RETRY_DELAY",
]


def connect(
    socket_path: str | PathLike[str] | None = None,
    *,
    target: ServiceTarget | None = None,
    config: ClientConfig | None = None,
) -> SsoApiClient:
    """Create a client bound to a Unix socket service.

    Use as an async context manager::

        async with connect("/run/ssoapi/com.example.service.sock") as client:
            accounts = await client.get_all_accounts()

    Args:
        socket_path: Socket to connect to.  Defaults to
            :func:`default_socket_path` of *target*.
        target: Service to bind to.
        config: Time bounds and retry policy.

    """
    cfg = config or ClientConfig()
    binder = UnixSocketBinder(
        socket_path,
        connect_timeout=cfg.connection_timeout,
        call_timeout=cfg.callback_timeout,
    )
    return SsoApiClient(binder, target=target, config=cfg)


@contextlib.contextmanager
def serve_unix_thread(host: SsoServiceHost, path: str | PathLike[str]) -> Iterator[UnixServiceServer]:
    """Serve *host* on *path* from a background thread for the duration of the block.

    Useful for tests and for embedding a service in a larger process.
    """
    server = UnixServiceServer(host, path)
    thread = threading.Thread(target=server.serve_forever, name="ssoapi-server", daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)
