"""Link transport: binder protocol and the Unix socket implementation.

A *binder* opens a Link to an explicitly named :class:`ServiceTarget` and
reports its lifecycle through a :class:`ServiceConnection`.  Notifications
are delivered on the Link's reader thread; receivers that own state on
another thread must hand them off themselves.
"""

from __future__ import annotations

import concurrent.futures
import contextlib
import itertools
import logging
import os
import socket
import tempfile
import threading
from io import BufferedReader, BufferedWriter
from pathlib import Path
from typing import Protocol, runtime_checkable

import pyarrow as pa

from ssoapi.ipc._common import ProtocolError, ServiceTarget, TransportError
from ssoapi.ipc._debug import wire_callback_logger, wire_transport_logger
from ssoapi.ipc._protocol import AuthCallback, SsoService
from ssoapi.ipc._types import RemoteMethodInfo
from ssoapi.ipc._wire import (
    Frame,
    FrameKind,
    read_callback_record,
    read_error,
    read_frame,
    write_call,
    write_frame,
)
from ssoapi.metadata import TARGET_ACTION_KEY, TARGET_CLASS_KEY, TARGET_PACKAGE_KEY
from ssoapi.models import Account, AuthResult, SaResultData
from ssoapi.utils import IPCError

_TRANSPORT_ERRORS = (
    BrokenPipeError,
    ConnectionResetError,
    ConnectionAbortedError,
    EOFError,
    pa.ArrowInvalid,
    IPCError,
)

SOCKET_DIR_ENV = "SSOAPI_SOCKET_DIR"
"""Environment variable naming the directory that holds service sockets."""

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_CALL_TIMEOUT = 30.0


# ---------------------------------------------------------------------------
# Binder protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ServiceConnection(Protocol):
    """Receiver of Link lifecycle notifications."""

    def on_service_connected(self, target: ServiceTarget, handle: SsoService) -> None:
        """The service accepted the bind; *handle* issues remote calls."""
        ...

    def on_service_disconnected(self, target: ServiceTarget) -> None:
        """An established Link was lost without an explicit ``unbind()``."""
        ...

    def on_null_binding(self, target: ServiceTarget) -> None:
        """The service refused the bind; no handle will follow."""
        ...


@runtime_checkable
class ServiceBinder(Protocol):
    """Opens and releases the Link to a remote service."""

    def bind(self, target: ServiceTarget, connection: ServiceConnection) -> bool:
        """Start binding to *target*.

        Returns ``True`` when the bind was accepted and a notification will
        follow on *connection*, ``False`` when the target cannot be reached.

        Raises:
            PermissionError: If the caller may not reach the target.

        """
        ...

    def unbind(self) -> None:
        """Release the current Link without a disconnect notification."""
        ...


def default_socket_path(target: ServiceTarget) -> Path:
    """Resolve the Unix socket path a service for *target* listens on.

    Uses ``$SSOAPI_SOCKET_DIR``, then ``$XDG_RUNTIME_DIR/ssoapi``, then the
    system temp directory, joined with ``<package>.sock``.
    """
    base = os.environ.get(SOCKET_DIR_ENV)
    if base:
        directory = Path(base)
    elif os.environ.get("XDG_RUNTIME_DIR"):
        directory = Path(os.environ["XDG_RUNTIME_DIR"]) / "ssoapi"
    else:
        directory = Path(tempfile.gettempdir()) / "ssoapi"
    return directory / f"{target.package}.sock"


# ---------------------------------------------------------------------------
# Link
# ---------------------------------------------------------------------------


class Link:
    """One open connection to the service: multiplexed calls and callbacks.

    Writers are serialised by a lock.  A daemon reader thread routes
    ``return``/``error`` frames to the waiting call by ``call_id`` and
    ``callback`` frames to the registered :class:`AuthCallback` by
    ``callback_id``.  When the stream ends, pending calls fail with
    :class:`TransportError` and registered callbacks are dropped.
    """

    def __init__(
        self,
        sock: socket.socket,
        target: ServiceTarget,
        connection: ServiceConnection,
        *,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        """Wrap a connected socket; call :meth:`start` to begin the handshake."""
        self._sock = sock
        self._target = target
        self._connection = connection
        self._call_timeout = call_timeout
        self._reader = BufferedReader(socket.SocketIO(sock, "rb"))
        self._writer = BufferedWriter(socket.SocketIO(sock, "wb"))
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._pending: dict[int, concurrent.futures.Future[Frame]] = {}
        self._callbacks: dict[int, AuthCallback] = {}
        self._bound = False
        self._closed = False
        self._thread = threading.Thread(target=self._read_loop, name=f"ssoapi-link-{target.package}", daemon=True)

    @property
    def target(self) -> ServiceTarget:
        """The target this Link was bound to."""
        return self._target

    @property
    def closed(self) -> bool:
        """Whether the Link has been released or lost."""
        return self._closed

    def start(self) -> None:
        """Send the ``bind`` frame and start the reader thread.

        Raises:
            TransportError: If the ``bind`` frame cannot be written.

        """
        md = {
            TARGET_PACKAGE_KEY: self._target.package.encode(),
            TARGET_CLASS_KEY: self._target.class_name.encode(),
            TARGET_ACTION_KEY: self._target.action.encode(),
        }
        try:
            with self._write_lock:
                write_frame(self._writer, FrameKind.BIND, None, md)
        except (*_TRANSPORT_ERRORS, OSError) as exc:
            raise TransportError(f"Failed to send bind to {self._target}: {exc}") from exc
        self._thread.start()

    # -- calls ----------------------------------------------------------------

    def register_callback(self, callback: AuthCallback) -> int:
        """Register a callback target and return its wire id."""
        with self._state_lock:
            callback_id = next(self._ids)
            self._callbacks[callback_id] = callback
        return callback_id

    def unregister_callback(self, callback: AuthCallback) -> None:
        """Drop every registration of *callback*; later deliveries to it are discarded."""
        with self._state_lock:
            for cid in [cid for cid, cb in self._callbacks.items() if cb is callback]:
                del self._callbacks[cid]

    def call(
        self,
        info: RemoteMethodInfo,
        kwargs: dict[str, str],
        callback_id: int | None = None,
    ) -> Frame:
        """Send a ``call`` frame and block until its ``return`` frame arrives.

        Raises:
            TransportError: On I/O failure, Link loss, a reply timeout, or
                an ``error`` frame from the service.

        """
        future: concurrent.futures.Future[Frame] = concurrent.futures.Future()
        with self._state_lock:
            if self._closed:
                raise TransportError(f"Link to {self._target} is closed")
            call_id = next(self._ids)
            self._pending[call_id] = future
        try:
            with self._write_lock:
                write_call(self._writer, info, kwargs, call_id, callback_id)
        except (*_TRANSPORT_ERRORS, OSError) as exc:
            with self._state_lock:
                self._pending.pop(call_id, None)
            raise TransportError(f"Transport failed during call to '{info.name}': {exc}") from exc

        try:
            frame = future.result(timeout=self._call_timeout)
        except concurrent.futures.TimeoutError:
            with self._state_lock:
                self._pending.pop(call_id, None)
            raise TransportError(f"No reply to '{info.name}' within {self._call_timeout}s") from None

        if frame.kind is FrameKind.ERROR:
            error_type, message = read_error(frame)
            raise TransportError(f"Service raised {error_type} in '{info.name}': {message}", error_type=error_type)
        return frame

    # -- teardown -------------------------------------------------------------

    def close(self) -> None:
        """Release the Link.  No disconnect notification is delivered."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("Link closing: target=%s", self._target)
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        self._fail_pending("Link closed")
        with contextlib.suppress(OSError, ValueError):
            self._writer.close()
        with contextlib.suppress(OSError, ValueError):
            self._sock.close()

    def _fail_pending(self, reason: str) -> None:
        with self._state_lock:
            pending = list(self._pending.values())
            self._pending.clear()
            self._callbacks.clear()
        for future in pending:
            if not future.done():
                future.set_exception(TransportError(f"{reason} before reply from {self._target}"))

    # -- reader thread --------------------------------------------------------

    def _read_loop(self) -> None:
        try:
            while True:
                frame = read_frame(self._reader)
                if not self._dispatch(frame):
                    break
        except EOFError:
            pass
        except (*_TRANSPORT_ERRORS, OSError, ValueError) as exc:
            if not self._closed:
                wire_transport_logger.debug("Link read failed: target=%s, error=%s", self._target, exc)
        except ProtocolError as exc:
            wire_transport_logger.warning("Protocol error on link to %s: %s", self._target, exc)

        with self._state_lock:
            lost = not self._closed
            self._closed = True
        self._fail_pending("Link lost")
        with contextlib.suppress(OSError, ValueError):
            self._reader.close()
        with contextlib.suppress(OSError, ValueError):
            self._writer.close()
        with contextlib.suppress(OSError):
            self._sock.close()
        if lost and self._bound:
            if wire_transport_logger.isEnabledFor(logging.DEBUG):
                wire_transport_logger.debug("Link lost: target=%s", self._target)
            self._connection.on_service_disconnected(self._target)

    def _dispatch(self, frame: Frame) -> bool:
        """Route one frame; return ``False`` to stop reading."""
        kind = frame.kind
        if kind is FrameKind.BOUND and not self._bound:
            from ssoapi.ipc._proxy import RemoteSsoService

            self._bound = True
            if wire_transport_logger.isEnabledFor(logging.DEBUG):
                wire_transport_logger.debug("Link bound: target=%s", self._target)
            self._connection.on_service_connected(self._target, RemoteSsoService(self))
            return True
        if kind is FrameKind.REFUSED and not self._bound:
            if wire_transport_logger.isEnabledFor(logging.DEBUG):
                wire_transport_logger.debug("Link refused: target=%s", self._target)
            with self._state_lock:
                self._closed = True
            self._connection.on_null_binding(self._target)
            return False
        if not self._bound:
            raise ProtocolError(f"Expected bound or refused from {self._target}, got {kind.value}")
        if kind in (FrameKind.RETURN, FrameKind.ERROR):
            with self._state_lock:
                future = self._pending.pop(frame.call_id, None)
            if future is None:
                wire_transport_logger.debug("Dropping reply for unknown call_id=%d", frame.call_id)
            elif not future.done():
                future.set_result(frame)
            return True
        if kind is FrameKind.CALLBACK:
            self._deliver_callback(frame)
            return True
        raise ProtocolError(f"Unexpected {kind.value} frame from {self._target}")

    def _deliver_callback(self, frame: Frame) -> None:
        callback_id = frame.callback_id
        with self._state_lock:
            callback = self._callbacks.get(callback_id)
        if callback is None:
            wire_callback_logger.debug("Discarding %s for released callback_id=%d", frame.method, callback_id)
            return
        record = read_callback_record(frame)
        if wire_callback_logger.isEnabledFor(logging.DEBUG):
            wire_callback_logger.debug(
                "Callback: callback_id=%d, method=%s, record=%s", callback_id, frame.method, type(record).__name__
            )
        try:
            if frame.method == "on_outcome" and isinstance(record, (AuthResult, SaResultData)):
                callback.on_outcome(record)
            elif frame.method == "on_data_received" and isinstance(record, Account):
                callback.on_data_received(record)
            else:
                raise ProtocolError(f"Callback {frame.method!r} cannot carry {type(record).__name__}")
        except ProtocolError:
            raise
        except Exception:
            wire_callback_logger.warning("Callback %s raised", frame.method, exc_info=True)


# ---------------------------------------------------------------------------
# UnixSocketBinder
# ---------------------------------------------------------------------------


class UnixSocketBinder:
    """Binds to services listening on Unix domain sockets.

    Holds at most one Link; binding again replaces the previous one.
    """

    def __init__(
        self,
        socket_path: str | os.PathLike[str] | None = None,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        """Initialize the binder.

        Args:
            socket_path: Socket to connect to.  Defaults to
                :func:`default_socket_path` of the bound target.
            connect_timeout: Seconds the socket ``connect()`` may take.
            call_timeout: Seconds a blocking call waits for its reply.

        """
        self._socket_path = Path(socket_path) if socket_path is not None else None
        self._connect_timeout = connect_timeout
        self._call_timeout = call_timeout
        self._lock = threading.Lock()
        self._link: Link | None = None

    @property
    def link(self) -> Link | None:
        """The current Link, if any."""
        return self._link

    def bind(self, target: ServiceTarget, connection: ServiceConnection) -> bool:
        """Connect to the target's socket and send the ``bind`` frame.

        Raises:
            PermissionError: If the socket exists but may not be opened.

        """
        path = self._socket_path or default_socket_path(target)
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("Binding: target=%s, path=%s", target, path)

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(self._connect_timeout)
            sock.connect(str(path))
            sock.settimeout(None)
        except PermissionError:
            sock.close()
            raise
        except (FileNotFoundError, ConnectionRefusedError, TimeoutError) as exc:
            sock.close()
            wire_transport_logger.debug("Bind failed: target=%s, path=%s, error=%s", target, path, exc)
            return False

        link = Link(sock, target, connection, call_timeout=self._call_timeout)
        with self._lock:
            previous, self._link = self._link, link
        if previous is not None:
            previous.close()
        try:
            link.start()
        except TransportError as exc:
            wire_transport_logger.debug("Bind failed: %s", exc)
            link.close()
            return False
        return True

    def unbind(self) -> None:
        """Close the current Link, if any."""
        with self._lock:
            link, self._link = self._link, None
        if link is not None:
            link.close()
