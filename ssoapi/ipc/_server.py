"""Service host: the server half of the Link protocol over Unix sockets."""

from __future__ import annotations

import contextlib
import logging
import os
import socket
import socketserver
import threading
import time
import uuid
from io import BufferedReader, BufferedWriter
from pathlib import Path

import pyarrow as pa

from ssoapi.ipc._common import ProtocolError, ServiceTarget, _server_logger
from ssoapi.ipc._protocol import SsoService
from ssoapi.ipc._types import MethodKind, RemoteMethodInfo, _validate_implementation, remote_methods
from ssoapi.ipc._wire import (
    Frame,
    FrameKind,
    read_call_kwargs,
    read_frame,
    write_callback,
    write_error,
    write_frame,
    write_return,
)
from ssoapi.metadata import TARGET_ACTION_KEY, TARGET_CLASS_KEY, TARGET_PACKAGE_KEY
from ssoapi.models import Account, Outcome
from ssoapi.utils import ArrowSerializableDataclass, IPCError


def _log_method_error(method_name: str, server_id: str, exc: BaseException) -> None:
    _server_logger.error(
        "Error in SsoService.%s: %s",
        method_name,
        exc,
        exc_info=True,
        extra={"server_id": server_id, "method": method_name, "error_type": type(exc).__name__},
    )


class _Session:
    """One accepted client connection: buffered streams plus a write lock."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.reader = BufferedReader(socket.SocketIO(sock, "rb"))
        self.writer = BufferedWriter(socket.SocketIO(sock, "wb"))
        self.write_lock = threading.Lock()
        self.closed = False

    def send_callback(self, callback_id: int, method: str, record: ArrowSerializableDataclass) -> bool:
        """Write a ``callback`` frame; return ``False`` when the client is gone."""
        if self.closed:
            _server_logger.debug("Callback %s to closed session dropped", method)
            return False
        try:
            with self.write_lock:
                write_callback(self.writer, callback_id, method, record)
        except (OSError, ValueError, pa.ArrowInvalid) as exc:
            _server_logger.debug("Callback %s could not be delivered: %s", method, exc)
            return False
        return True

    def close(self) -> None:
        self.closed = True
        with contextlib.suppress(OSError, ValueError):
            self.writer.close()
        with contextlib.suppress(OSError, ValueError):
            self.reader.close()


class RemoteAuthCallback:
    """``AuthCallback`` handed to the implementation; forwards deliveries to the client.

    Safe to call from any thread and after the originating call returned.
    """

    def __init__(self, session: _Session, callback_id: int) -> None:
        """Bind the stub to the client session and its callback id."""
        self._session = session
        self._callback_id = callback_id

    def on_outcome(self, outcome: Outcome) -> None:
        """Send the phase-1 outcome."""
        self._session.send_callback(self._callback_id, "on_outcome", outcome)

    def on_data_received(self, account: Account) -> None:
        """Send the phase-2 account."""
        self._session.send_callback(self._callback_id, "on_data_received", account)


class SsoServiceHost:
    """Dispatches Link frames to an :class:`SsoService` implementation.

    Each connection must open with a ``bind`` frame naming exactly this
    host's target; any mismatch is answered with ``refused``.
    """

    def __init__(
        self,
        implementation: object,
        target: ServiceTarget | None = None,
        *,
        server_id: str | None = None,
    ) -> None:
        """Initialize the host.

        Raises:
            TypeError: If *implementation* does not provide every
                :class:`SsoService` method.

        """
        self._impl = implementation
        self._target = target or ServiceTarget()
        self._methods = remote_methods(SsoService)
        self._server_id = server_id if server_id is not None else uuid.uuid4().hex[:12]
        _validate_implementation(SsoService, implementation, self._methods)

    @property
    def target(self) -> ServiceTarget:
        """The target this host answers to."""
        return self._target

    @property
    def server_id(self) -> str:
        """Identifier used in log records."""
        return self._server_id

    def serve(self, sock: socket.socket) -> None:
        """Serve one client connection until it closes."""
        session = _Session(sock)
        try:
            if not self._handshake(session):
                return
            while True:
                try:
                    frame = read_frame(session.reader)
                except EOFError:
                    break
                if frame.kind is not FrameKind.CALL:
                    raise ProtocolError(f"Expected call frame, got {frame.kind.value}")
                self._dispatch(session, frame)
        except (IPCError, pa.ArrowInvalid, ProtocolError) as exc:
            _server_logger.warning("Connection ended: %s", exc, extra={"server_id": self._server_id})
        except (BrokenPipeError, ConnectionResetError):
            _server_logger.debug("Client went away", extra={"server_id": self._server_id})
        finally:
            session.close()

    def _handshake(self, session: _Session) -> bool:
        try:
            frame = read_frame(session.reader)
        except EOFError:
            return False
        if frame.kind is not FrameKind.BIND:
            raise ProtocolError(f"Expected bind frame, got {frame.kind.value}")
        requested = (
            frame.get(TARGET_PACKAGE_KEY),
            frame.get(TARGET_CLASS_KEY),
            frame.get(TARGET_ACTION_KEY),
        )
        expected = (self._target.package, self._target.class_name, self._target.action)
        with session.write_lock:
            if requested != expected:
                _server_logger.warning(
                    "Refused bind for %s/%s (action %s)", *requested, extra={"server_id": self._server_id}
                )
                write_frame(session.writer, FrameKind.REFUSED)
                return False
            write_frame(session.writer, FrameKind.BOUND)
        _server_logger.info("Bound client to %s", self._target, extra={"server_id": self._server_id})
        return True

    def _dispatch(self, session: _Session, frame: Frame) -> None:
        call_id = frame.call_id
        info: RemoteMethodInfo | None = self._methods.get(frame.method)
        if info is None:
            available = sorted(self._methods)
            exc: Exception = AttributeError(f"Unknown method: '{frame.method}'. Available methods: {available}")
            with session.write_lock:
                write_error(session.writer, frame.method, call_id, exc)
            return

        start = time.monotonic()
        try:
            kwargs: dict[str, object] = dict(read_call_kwargs(frame, info))
            if info.kind is MethodKind.TWO_PHASE and info.callback_param:
                kwargs[info.callback_param] = RemoteAuthCallback(session, frame.callback_id)
            result = getattr(self._impl, info.name)(**kwargs)
            with session.write_lock:
                write_return(session.writer, info, call_id, result)
        except (BrokenPipeError, ConnectionResetError):
            raise
        except Exception as exc:
            _log_method_error(info.name, self._server_id, exc)
            with session.write_lock:
                write_error(session.writer, info.name, call_id, exc)
            return
        if _server_logger.isEnabledFor(logging.DEBUG):
            _server_logger.debug(
                "SsoService.%s ok in %.1fms",
                info.name,
                (time.monotonic() - start) * 1000,
                extra={"server_id": self._server_id, "method": info.name},
            )


# ---------------------------------------------------------------------------
# Unix socket server
# ---------------------------------------------------------------------------


class _Handler(socketserver.BaseRequestHandler):
    server: UnixServiceServer

    def handle(self) -> None:
        self.server.host.serve(self.request)


class UnixServiceServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    """Threaded Unix socket server: one thread per client connection."""

    daemon_threads = True
    block_on_close = False

    def __init__(self, host: SsoServiceHost, path: str | os.PathLike[str]) -> None:
        """Bind and listen on *path*, replacing a stale socket file."""
        self.host = host
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
        super().__init__(str(self.path), _Handler)

    def server_close(self) -> None:
        """Close the listening socket and remove the socket file."""
        super().server_close()
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()


def serve_unix(host: SsoServiceHost, path: str | os.PathLike[str]) -> None:
    """Serve *host* on a Unix socket at *path* until interrupted."""
    with UnixServiceServer(host, path) as server:
        _server_logger.info("Serving %s on %s", host.target, path, extra={"server_id": host.server_id})
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            _server_logger.info("Shutting down", extra={"server_id": host.server_id})
