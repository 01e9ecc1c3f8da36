"""Bridging two-phase callback deliveries into a single awaited result."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Callable

from ssoapi.ipc._common import ErrorKind, Failure, Result, Success, _correlator_logger
from ssoapi.models import Account, Disposition, Outcome, disposition_of

UNKNOWN_ERROR = "Unknown error"


class Waiter:
    """At-most-once resolvable handle onto an ``asyncio.Future``.

    :meth:`resolve` may be called from any thread.  The first call to
    :meth:`resolve` or :meth:`cancel` wins; every later call is a no-op that
    returns ``False``.  The future itself is only ever touched on its loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Create the future on *loop* (default: the running loop)."""
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future[Result[Account]] = self._loop.create_future()
        self._lock = threading.Lock()
        self._resolved = False

    @property
    def future(self) -> asyncio.Future[Result[Account]]:
        """The future completed by the first resolution."""
        return self._future

    @property
    def resolved(self) -> bool:
        """Whether the waiter has been resolved or cancelled."""
        return self._resolved

    def resolve(self, result: Result[Account]) -> bool:
        """Resolve with *result* unless already resolved or cancelled."""
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(self._set_result, result)
        return True

    def cancel(self) -> bool:
        """Abandon the waiter; later resolutions are discarded."""
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(self._future.cancel)
        return True

    def _set_result(self, result: Result[Account]) -> None:
        if not self._future.done():
            self._future.set_result(result)

    async def wait(self) -> Result[Account]:
        """Wait for the resolution."""
        return await self._future


class AuthCallbackCorrelator:
    """``AuthCallback`` target for one two-phase operation.

    A rejected outcome resolves the waiter with ``REMOTE_REJECTED`` and
    leaves phase 2 dead.  An accepted outcome arms phase 2; the next account
    delivered resolves the waiter with ``Success``.  Anything else is
    discarded.
    """

    def __init__(self, waiter: Waiter, *, on_release: Callable[[AuthCallbackCorrelator], None] | None = None) -> None:
        """Bind the correlator to *waiter*.

        Args:
            waiter: Resolved by the deliveries.
            on_release: Called once by :meth:`release`, typically to
                unregister the correlator from the Link.

        """
        self._waiter: Waiter | None = waiter
        self._on_release = on_release
        self._lock = threading.Lock()
        self._accepted = False

    @property
    def accepted(self) -> bool:
        """Whether an accepted outcome arrived and phase 2 is pending."""
        return self._accepted

    def on_outcome(self, outcome: Outcome) -> None:
        """Phase 1: resolve on rejection, arm phase 2 on acceptance."""
        disposition = disposition_of(outcome)
        with self._lock:
            waiter = self._waiter
            if disposition is Disposition.ACCEPTED:
                self._accepted = True
        if waiter is None:
            _correlator_logger.debug("Outcome after release discarded: %s", disposition.value)
            return
        if disposition is Disposition.REJECTED:
            message = outcome.message or UNKNOWN_ERROR
            _correlator_logger.info("Request rejected: %s", message)
            waiter.resolve(Failure(ErrorKind.REMOTE_REJECTED, message))
        elif disposition is Disposition.ACCEPTED:
            _correlator_logger.debug("Request accepted, awaiting account")
        else:
            _correlator_logger.debug("Outcome with neither success nor fail set ignored")

    def on_data_received(self, account: Account) -> None:
        """Phase 2: resolve with *account* if an accepted outcome preceded it."""
        with self._lock:
            waiter = self._waiter
            armed = self._accepted
            self._accepted = False
        if waiter is None or not armed:
            _correlator_logger.debug("Account delivery without accepted outcome discarded: guid=%s", account.guid)
            return
        if waiter.resolve(Success(account)):
            _correlator_logger.debug("Account received: guid=%s", account.guid)

    def release(self) -> None:
        """Drop the waiter and detach from the Link.  Idempotent."""
        with self._lock:
            self._waiter = None
            self._accepted = False
            on_release, self._on_release = self._on_release, None
        if on_release is not None:
            on_release(self)
