"""Connection state machine: bind, retry, and track the Link to the service."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from ssoapi.ipc._common import ClientConfig, ServiceTarget, _connection_logger
from ssoapi.ipc._protocol import SsoService
from ssoapi.ipc._transport import ServiceBinder


class ConnectionState(Enum):
    """Lifecycle of the Link as seen by the client."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionManager:
    """Owns the Link to one :class:`ServiceTarget`.

    Implements :class:`~ssoapi.ipc._transport.ServiceConnection`.  Binder
    notifications may arrive on any thread; they are handed to the event
    loop with ``call_soon_threadsafe`` so that state, handle and the
    pending-connection future are only ever mutated on the loop.  Attempt
    sequences are single-flight behind an ``asyncio.Lock``.
    """

    def __init__(
        self,
        binder: ServiceBinder,
        target: ServiceTarget | None = None,
        config: ClientConfig | None = None,
        *,
        _sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize disconnected.

        Args:
            binder: Opens the Link.
            target: Service to bind to.
            config: Attempt count, per-attempt timeout and retry delay.
            _sleep: Delay function between attempts (overridable in tests).

        """
        self._binder = binder
        self._target = target or ServiceTarget()
        self._config = config or ClientConfig()
        self._sleep = _sleep
        self._lock = asyncio.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._state = ConnectionState.DISCONNECTED
        self._handle: SsoService | None = None
        self._pending: asyncio.Future[bool] | None = None
        self.attempts = 0
        self.connection_timeouts = 0

    @property
    def target(self) -> ServiceTarget:
        """The service this manager binds to."""
        return self._target

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def handle(self) -> SsoService | None:
        """Proxy for the bound service, or ``None`` when not connected."""
        return self._handle

    @property
    def is_connected(self) -> bool:
        """``True`` when connected and a handle is available."""
        return self._state is ConnectionState.CONNECTED and self._handle is not None

    async def ensure_connected(self) -> bool:
        """Return ``True`` once a Link is established, binding if needed.

        Makes up to ``max_connection_retries`` attempts, each bounded by
        ``connection_timeout`` and separated by ``retry_delay``.  Concurrent
        callers share one attempt sequence.
        """
        if self.is_connected:
            return True
        async with self._lock:
            if self.is_connected:
                return True
            self._loop = asyncio.get_running_loop()
            retries = self._config.max_connection_retries
            for attempt in range(1, retries + 1):
                if await self._attempt(attempt):
                    return True
                if attempt < retries:
                    await self._sleep(self._config.retry_delay)
            _connection_logger.warning("Could not connect to %s after %d attempt(s)", self._target, retries)
            return False

    async def _attempt(self, attempt: int) -> bool:
        assert self._loop is not None
        self.attempts += 1
        self._state = ConnectionState.CONNECTING
        future: asyncio.Future[bool] = self._loop.create_future()
        self._pending = future
        _connection_logger.debug("Bind attempt %d/%d to %s", attempt, self._config.max_connection_retries, self._target)
        connected = False
        try:
            connected = await asyncio.wait_for(self._bind_and_wait(future), self._config.connection_timeout)
        except TimeoutError:
            self.connection_timeouts += 1
            _connection_logger.info(
                "Bind attempt %d to %s timed out after %.1fs", attempt, self._target, self._config.connection_timeout
            )
        except OSError as exc:
            _connection_logger.info("Bind attempt %d to %s failed: %s", attempt, self._target, exc)
        except Exception:
            _connection_logger.warning("Bind attempt %d to %s raised", attempt, self._target, exc_info=True)
        finally:
            if self._pending is future:
                self._pending = None
            if not connected and self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DISCONNECTED
        return connected and self.is_connected

    async def _bind_and_wait(self, future: asyncio.Future[bool]) -> bool:
        if not await asyncio.to_thread(self._binder.bind, self._target, self):
            _connection_logger.info("Bind to %s was not accepted", self._target)
            return False
        return await future

    def unbind(self) -> None:
        """Release the Link and reset to ``DISCONNECTED``.

        No link-loss handling runs.  Must be called on the event loop thread.
        """
        self._binder.unbind()
        self._handle = None
        self._state = ConnectionState.DISCONNECTED
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.set_result(False)
        _connection_logger.debug("Unbound from %s", self._target)

    # -- ServiceConnection (any thread) ---------------------------------------

    def on_service_connected(self, target: ServiceTarget, handle: SsoService) -> None:
        """Hand the new handle to the loop."""
        self._post(self._connected, handle)

    def on_service_disconnected(self, target: ServiceTarget) -> None:
        """Hand the Link loss to the loop."""
        self._post(self._disconnected)

    def on_null_binding(self, target: ServiceTarget) -> None:
        """Hand the refusal to the loop."""
        self._post(self._refused)

    def _post(self, fn: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None:
            _connection_logger.debug("Notification before any bind attempt ignored")
            return
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(fn, *args)

    # -- loop-thread handlers -------------------------------------------------

    def _connected(self, handle: SsoService) -> None:
        self._handle = handle
        self._state = ConnectionState.CONNECTED
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.set_result(True)
        _connection_logger.info("Connected to %s", self._target)

    def _refused(self) -> None:
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.set_result(False)
        _connection_logger.warning("Service %s refused the binding", self._target)

    def _disconnected(self) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return
        _connection_logger.warning("Link to %s lost", self._target)
        self._handle = None
        self._state = ConnectionState.DISCONNECTED
