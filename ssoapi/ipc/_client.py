# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Async client for the SSO service: connection gating and bounded requests."""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Any

from ssoapi.ipc._common import (
    ClientConfig,
    ErrorKind,
    Failure,
    Result,
    ServiceTarget,
    Success,
    TransportError,
    _logger,
)
from ssoapi.ipc._connection import ConnectionManager, ConnectionState
from ssoapi.ipc._correlator import AuthCallbackCorrelator, Waiter
from ssoapi.ipc._protocol import SsoService
from ssoapi.ipc._transport import ServiceBinder, UnixSocketBinder
from ssoapi.models import Account, Disposition, SaResultData, disposition_of

CONNECT_FAILED_MESSAGE = "Could not connect to SSO Service. Please ensure the service is installed."
NOT_CONNECTED_MESSAGE = "Service not connected."

_TIMEOUT_LABELS = {
    "login": "Login",
    "register": "Register",
    "fetch_token": "FetchToken",
    "fetch_account_info": "FetchAccountInfo",
}


class SsoApiClient:
    """Client for a separately running SSO service.

    Every operation connects on demand and returns a :data:`Result` (or,
    for queries, a plain default) instead of raising.  Two-phase operations
    complete when the service delivers the account, rejects the request, or
    ``callback_timeout`` elapses, whichever comes first.  No operation is
    retried; only the connection is.

    Example::

        async with SsoApiClient() as client:
            result = await client.login("a@b.com", "secret")
            if result.ok:
                print(result.value.guid)

    """

    def __init__(
        self,
        binder: ServiceBinder | None = None,
        *,
        target: ServiceTarget | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        """Initialize the client without connecting.

        Args:
            binder: Opens the Link.  Defaults to a :class:`UnixSocketBinder`
                using the configured time bounds.
            target: Service to bind to.
            config: Time bounds and retry policy.

        """
        self._config = config or ClientConfig()
        self._target = target or ServiceTarget()
        if binder is None:
            binder = UnixSocketBinder(
                connect_timeout=self._config.connection_timeout,
                call_timeout=self._config.callback_timeout,
            )
        self._connection = ConnectionManager(binder, self._target, self._config)

    @property
    def config(self) -> ClientConfig:
        """Time bounds and retry policy."""
        return self._config

    @property
    def target(self) -> ServiceTarget:
        """The service this client binds to."""
        return self._target

    @property
    def connection(self) -> ConnectionManager:
        """The underlying connection manager."""
        return self._connection

    @property
    def is_connected(self) -> bool:
        """Whether a Link is currently established."""
        return self._connection.is_connected

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._connection.state

    async def ensure_connected(self) -> bool:
        """Bind to the service if needed; see :meth:`ConnectionManager.ensure_connected`."""
        return await self._connection.ensure_connected()

    def close(self) -> None:
        """Release the Link.  The client reconnects on the next operation."""
        self._connection.unbind()

    async def __aenter__(self) -> SsoApiClient:
        """Enter the async context."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Release the Link."""
        self.close()

    # -- two-phase operations -------------------------------------------------

    async def login(self, mail: str, password: str) -> Result[Account]:
        """Sign in; the account is added to the service's account list."""
        _logger.info("login: mail=%s", mail)
        return await self._two_phase("login", mail=mail, password=password)

    async def register(self, mail: str, password: str) -> Result[Account]:
        """Create an account and sign it in."""
        _logger.info("register: mail=%s", mail)
        return await self._two_phase("register", mail=mail, password=password)

    async def fetch_token(self, mail: str, password: str) -> Result[Account]:
        """Obtain a session token without adding the account to the service."""
        _logger.info("fetch_token: mail=%s", mail)
        return await self._two_phase("fetch_token", mail=mail, password=password)

    async def fetch_account_info(self, guid: str, session_token: str) -> Result[Account]:
        """Fetch account details for an existing session."""
        _logger.info("fetch_account_info: guid=%s", guid)
        return await self._two_phase("fetch_account_info", guid=guid, session_token=session_token)

    async def _connected_handle(self) -> SsoService | Failure:
        if not await self._connection.ensure_connected():
            return Failure(ErrorKind.NOT_CONNECTED, CONNECT_FAILED_MESSAGE)
        handle = self._connection.handle
        if handle is None:
            return Failure(ErrorKind.NOT_CONNECTED, NOT_CONNECTED_MESSAGE)
        return handle

    async def _two_phase(self, method: str, **params: str) -> Result[Account]:
        handle = await self._connected_handle()
        if isinstance(handle, Failure):
            return handle

        waiter = Waiter()
        correlator = AuthCallbackCorrelator(waiter, on_release=getattr(handle, "release_callback", None))
        timeout = self._config.callback_timeout
        try:
            result = await asyncio.wait_for(self._issue(handle, method, params, correlator, waiter), timeout)
        except TimeoutError:
            waiter.cancel()
            _logger.warning("%s timed out after %.1fs", method, timeout)
            return Failure(ErrorKind.OPERATION_TIMEOUT, f"{_TIMEOUT_LABELS[method]} timeout")
        finally:
            correlator.release()
        if result.ok:
            _logger.info("%s succeeded", method)
        else:
            _logger.info("%s failed: %s", method, result.kind.value)
        return result

    async def _issue(
        self,
        handle: SsoService,
        method: str,
        params: dict[str, str],
        correlator: AuthCallbackCorrelator,
        waiter: Waiter,
    ) -> Result[Account]:
        try:
            reply = await asyncio.to_thread(getattr(handle, method), **params, callback=correlator)
        except TransportError as exc:
            waiter.resolve(Failure(ErrorKind.TRANSPORT_FAILURE, exc.message))
        except Exception as exc:
            _logger.warning("%s call failed", method, exc_info=True)
            waiter.resolve(Failure(ErrorKind.TRANSPORT_FAILURE, str(exc) or type(exc).__name__))
        else:
            if isinstance(reply, SaResultData) and disposition_of(reply) is Disposition.REJECTED:
                correlator.on_outcome(reply)
        return await waiter.wait()

    # -- fire-and-forget operations -------------------------------------------

    async def logout(self, guid: str) -> Result[None]:
        """Sign out the account with *guid*."""
        _logger.info("logout: guid=%s", guid)
        return await self._fire("logout", guid=guid)

    async def logout_all(self) -> Result[None]:
        """Sign out every account."""
        _logger.info("logout_all")
        return await self._fire("logout_all")

    async def switch_account(self, guid: str) -> Result[None]:
        """Make the account with *guid* the active one."""
        _logger.info("switch_account: guid=%s", guid)
        return await self._fire("switch_account", guid=guid)

    async def _fire(self, method: str, **params: str) -> Result[None]:
        handle = await self._connected_handle()
        if isinstance(handle, Failure):
            return handle
        try:
            await self._call(handle, method, params)
        except TransportError as exc:
            _logger.warning("%s failed: %s", method, exc.message)
            return Failure(ErrorKind.TRANSPORT_FAILURE, exc.message)
        except TimeoutError:
            _logger.warning("%s got no reply within %.1fs", method, self._config.callback_timeout)
            return Failure(ErrorKind.TRANSPORT_FAILURE, f"No reply to '{method}'")
        except Exception as exc:
            _logger.warning("%s failed", method, exc_info=True)
            return Failure(ErrorKind.TRANSPORT_FAILURE, str(exc) or type(exc).__name__)
        return Success(None)

    # -- queries --------------------------------------------------------------

    async def get_active_account(self) -> Account | None:
        """Return the active account, or ``None`` if there is none or the call failed."""
        value = await self._query("get_active_account")
        return value if isinstance(value, Account) else None

    async def get_all_accounts(self) -> list[Account]:
        """Return every signed-in account, or ``[]`` if the call failed."""
        value = await self._query("get_all_accounts")
        if not isinstance(value, list):
            return []
        return [a for a in value if a is not None]

    async def _query(self, method: str) -> Any:
        handle = await self._connected_handle()
        if isinstance(handle, Failure):
            _logger.info("%s skipped: %s", method, handle.message)
            return None
        try:
            return await self._call(handle, method, {})
        except TransportError as exc:
            _logger.warning("%s failed: %s", method, exc.message)
        except TimeoutError:
            _logger.warning("%s got no reply within %.1fs", method, self._config.callback_timeout)
        except Exception:
            _logger.warning("%s failed", method, exc_info=True)
        return None

    async def _call(self, handle: SsoService, method: str, params: dict[str, str]) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(getattr(handle, method), **params), self._config.callback_timeout)
