# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for SsoApiClient request coordination against in-process doubles."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest

from ssoapi.ipc import (
    CONNECT_FAILED_MESSAGE,
    AuthCallback,
    ClientConfig,
    ConnectionState,
    ErrorKind,
    Failure,
    SsoApiClient,
    SsoError,
    Success,
)
from ssoapi.models import Account, AuthResult, SaResultData
from tests.fakes import ACCOUNT_G1, ACCOUNT_G2, BindMode, FakeBinder, FakeService, broken, later

_CONFIG = ClientConfig(connection_timeout=0.2, callback_timeout=0.5, max_connection_retries=3, retry_delay=0.05)


def _client(service: FakeService | None = None, **binder_kwargs: Any) -> tuple[SsoApiClient, FakeBinder]:
    binder = FakeBinder(service, **binder_kwargs)
    return SsoApiClient(binder, config=_CONFIG), binder


# ---------------------------------------------------------------------------
# Two-phase operations
# ---------------------------------------------------------------------------


class TestTwoPhase:
    """login / register / fetch_token / fetch_account_info."""

    def test_login_accepted_then_account(self) -> None:
        """Accepted outcome then account g1 at 200 ms gives Success(g1)."""
        service = FakeService(delay=0.2)
        client, _ = _client(service)

        async def run() -> tuple[Any, float]:
            start = time.monotonic()
            result = await client.login("a@b.com", "secret")
            return result, time.monotonic() - start

        result, elapsed = asyncio.run(run())
        assert result == Success(ACCOUNT_G1)
        assert result.unwrap().guid == "g1"
        assert 0.15 <= elapsed < _CONFIG.callback_timeout
        assert service.calls == [("login", ("a@b.com",))]

    def test_login_rejected(self) -> None:
        """A fail outcome 'invalid password' gives REMOTE_REJECTED."""
        client, _ = _client(FakeService(FakeService.reject("invalid password")))
        result = asyncio.run(client.login("a@b.com", "wrong"))
        assert result == Failure(ErrorKind.REMOTE_REJECTED, "invalid password")

    def test_login_synchronous_rejection(self) -> None:
        """A rejected SaResultData returned by login() resolves immediately."""
        client, _ = _client(FakeService(lambda cb: SaResultData.rejected("account blocked")))

        async def run() -> tuple[Any, float]:
            start = time.monotonic()
            result = await client.login("a@b.com", "x")
            return result, time.monotonic() - start

        result, elapsed = asyncio.run(run())
        assert result == Failure(ErrorKind.REMOTE_REJECTED, "account blocked")
        assert elapsed < _CONFIG.callback_timeout / 2

    def test_synchronous_acceptance_is_informational(self) -> None:
        """An accepted SaResultData return value neither resolves nor arms phase 2."""

        def script(cb: AuthCallback) -> SaResultData:
            later(0.05, cb.on_data_received, ACCOUNT_G2)
            return SaResultData.accepted()

        client, _ = _client(FakeService(script))
        result = asyncio.run(client.login("a@b.com", "x"))
        assert result == Failure(ErrorKind.OPERATION_TIMEOUT, "Login timeout")

    def test_register_fetch_token_and_account_info(self) -> None:
        """The other two-phase operations share the same flow."""
        service = FakeService(delay=0.05)
        client, _ = _client(service)

        async def run() -> list[Any]:
            return [
                await client.register("a@b.com", "pw"),
                await client.fetch_token("a@b.com", "pw"),
                await client.fetch_account_info("g1", "tok-1"),
            ]

        assert asyncio.run(run()) == [Success(ACCOUNT_G1)] * 3
        assert [name for name, _ in service.calls] == ["register", "fetch_token", "fetch_account_info"]

    @pytest.mark.parametrize(
        ("method", "label"),
        [("login", "Login"), ("register", "Register"), ("fetch_token", "FetchToken")],
    )
    def test_outer_timeout(self, method: str, label: str) -> None:
        """No delivery: OPERATION_TIMEOUT after callback_timeout, never earlier."""
        client, _ = _client(FakeService(FakeService.silent))

        async def run() -> tuple[Any, float]:
            start = time.monotonic()
            result = await getattr(client, method)("a@b.com", "pw")
            return result, time.monotonic() - start

        result, elapsed = asyncio.run(run())
        assert result == Failure(ErrorKind.OPERATION_TIMEOUT, f"{label} timeout")
        assert _CONFIG.callback_timeout * 0.95 <= elapsed < _CONFIG.callback_timeout + 0.5

    def test_fetch_account_info_timeout_label(self) -> None:
        """fetch_account_info times out with its own message."""
        client, _ = _client(FakeService(FakeService.silent))
        result = asyncio.run(client.fetch_account_info("g1", "tok"))
        assert result == Failure(ErrorKind.OPERATION_TIMEOUT, "FetchAccountInfo timeout")

    def test_accepted_but_account_too_late(self) -> None:
        """A late account from a timed-out login does not resolve the next login."""
        scripts = [FakeService.accept_then(ACCOUNT_G1, 0.75), FakeService.accept_then(ACCOUNT_G2, 0.3)]
        service = FakeService(lambda callback: scripts.pop(0)(callback))
        client, _ = _client(service)

        async def run() -> tuple[Any, Any]:
            first = await client.login("a@b.com", "pw")
            # g1 lands after the second login was accepted and before g2 arrives.
            second = await client.login("c@d.com", "pw")
            return first, second

        first, second = asyncio.run(run())
        assert first == Failure(ErrorKind.OPERATION_TIMEOUT, "Login timeout")
        assert second == Success(ACCOUNT_G2)
        assert len(service.released) == 2

    def test_transport_failure_is_immediate(self) -> None:
        """A TransportError from the call resolves TRANSPORT_FAILURE at once."""
        client, _ = _client(FakeService(fail_with=broken("Broken pipe")))

        async def run() -> tuple[Any, float]:
            start = time.monotonic()
            result = await client.login("a@b.com", "pw")
            return result, time.monotonic() - start

        result, elapsed = asyncio.run(run())
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.TRANSPORT_FAILURE
        assert "Broken pipe" in result.message
        assert elapsed < _CONFIG.callback_timeout / 2

    def test_unexpected_exception_is_transport_failure(self) -> None:
        """Any other exception from the handle is reported, not raised."""
        client, _ = _client(FakeService(fail_with=RuntimeError("boom")))
        result = asyncio.run(client.register("a@b.com", "pw"))
        assert result == Failure(ErrorKind.TRANSPORT_FAILURE, "boom")

    def test_no_operation_retry(self) -> None:
        """A failed operation is not re-issued."""
        service = FakeService(fail_with=broken())
        client, _ = _client(service)
        asyncio.run(client.login("a@b.com", "pw"))
        assert len(service.calls) == 1

    def test_not_connected(self) -> None:
        """No Link: NOT_CONNECTED and the remote is never called."""
        service = FakeService()
        client, binder = _client(service, modes=[BindMode.UNREACHABLE])
        result = asyncio.run(client.login("a@b.com", "pw"))
        assert result == Failure(ErrorKind.NOT_CONNECTED, CONNECT_FAILED_MESSAGE)
        assert service.calls == []
        assert binder.bind_count == _CONFIG.max_connection_retries

    def test_binder_error_is_not_connected(self) -> None:
        """A binder raising an unexpected error is reported, not raised."""
        service = FakeService()
        client, binder = _client(service, modes=[BindMode.BROKEN])

        async def run() -> tuple[Any, Account | None]:
            return await client.login("a@b.com", "pw"), await client.get_active_account()

        result, active = asyncio.run(run())
        assert result == Failure(ErrorKind.NOT_CONNECTED, CONNECT_FAILED_MESSAGE)
        assert active is None
        assert client.state is ConnectionState.DISCONNECTED
        assert service.calls == []
        assert binder.bind_count == 2 * _CONFIG.max_connection_retries

    def test_cancelled_during_connect(self) -> None:
        """Cancelling an operation while binding leaves the client DISCONNECTED."""
        client, _ = _client(modes=[BindMode.SILENT])

        async def run() -> None:
            task = asyncio.create_task(client.login("a@b.com", "pw"))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert client.state is ConnectionState.DISCONNECTED

    def test_correlator_released_after_success(self) -> None:
        """Every operation detaches its callback target from the handle."""
        service = FakeService(delay=0.05)
        client, _ = _client(service)
        asyncio.run(client.login("a@b.com", "pw"))
        assert len(service.released) == 1

    def test_concurrent_operations_are_independent(self) -> None:
        """Two operations in flight resolve with their own results."""

        seen: list[AuthCallback] = []

        def script(cb: AuthCallback) -> None:
            seen.append(cb)
            # Reject the first caller, accept the second.
            if len(seen) == 1:
                later(0.1, cb.on_outcome, AuthResult(fail=True, message="first"))
            else:
                later(0.05, cb.on_outcome, AuthResult(success=True))
                later(0.1, cb.on_data_received, ACCOUNT_G2)

        client, binder = _client(FakeService(script))

        async def run() -> list[Any]:
            assert await client.ensure_connected()
            first = asyncio.create_task(client.login("a@b.com", "pw"))
            await asyncio.sleep(0.02)
            second = asyncio.create_task(client.login("c@d.com", "pw"))
            return [await first, await second]

        assert asyncio.run(run()) == [Failure(ErrorKind.REMOTE_REJECTED, "first"), Success(ACCOUNT_G2)]
        assert binder.bind_count == 1

    def test_caller_cancellation(self) -> None:
        """Cancelling the caller propagates and releases the correlator."""
        service = FakeService(FakeService.silent)
        client, _ = _client(service)

        async def run() -> None:
            task = asyncio.create_task(client.login("a@b.com", "pw"))
            await asyncio.sleep(0.1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert len(service.released) == 1


# ---------------------------------------------------------------------------
# Fire-and-forget and queries
# ---------------------------------------------------------------------------


class TestFireAndForget:
    """logout / logout_all / switch_account."""

    def test_success(self) -> None:
        """Completed calls give Success(None)."""
        service = FakeService()
        client, _ = _client(service)

        async def run() -> list[Any]:
            return [await client.logout("g1"), await client.logout_all(), await client.switch_account("g2")]

        assert asyncio.run(run()) == [Success(None)] * 3
        assert service.calls == [("logout", ("g1",)), ("logout_all", ()), ("switch_account", ("g2",))]

    def test_transport_failure(self) -> None:
        """A TransportError becomes TRANSPORT_FAILURE."""
        client, _ = _client(FakeService(fail_with=broken("reset")))
        result = asyncio.run(client.logout("g1"))
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.TRANSPORT_FAILURE

    def test_not_connected(self) -> None:
        """No Link gives NOT_CONNECTED."""
        client, _ = _client(modes=[BindMode.UNREACHABLE])
        result = asyncio.run(client.logout_all())
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.NOT_CONNECTED

    def test_unwrap_raises_sso_error(self) -> None:
        """Failure.unwrap() raises SsoError carrying the kind."""
        client, _ = _client(modes=[BindMode.UNREACHABLE])
        result = asyncio.run(client.switch_account("g1"))
        with pytest.raises(SsoError) as exc_info:
            result.unwrap()
        assert exc_info.value.kind is ErrorKind.NOT_CONNECTED


class TestQueries:
    """get_active_account / get_all_accounts."""

    def test_active_and_all(self) -> None:
        """Queries return the service's values, dropping null entries."""
        client, _ = _client(FakeService(accounts=[ACCOUNT_G1, None, ACCOUNT_G2]))

        async def run() -> tuple[Account | None, list[Account]]:
            return await client.get_active_account(), await client.get_all_accounts()

        active, everything = asyncio.run(run())
        assert active == ACCOUNT_G1
        assert everything == [ACCOUNT_G1, ACCOUNT_G2]

    def test_failures_give_defaults(self) -> None:
        """Any failure yields None / [] rather than raising."""
        client, _ = _client(FakeService(fail_with=broken()))

        async def run() -> tuple[Account | None, list[Account]]:
            return await client.get_active_account(), await client.get_all_accounts()

        assert asyncio.run(run()) == (None, [])

    def test_not_connected_gives_defaults(self) -> None:
        """No Link yields None / []."""
        client, _ = _client(modes=[BindMode.UNREACHABLE])

        async def run() -> tuple[Account | None, list[Account]]:
            return await client.get_active_account(), await client.get_all_accounts()

        assert asyncio.run(run()) == (None, [])


class TestLifecycle:
    """Context manager and connection reuse."""

    def test_context_manager_unbinds(self) -> None:
        """Leaving the async context releases the Link."""
        binder = FakeBinder()

        async def run() -> None:
            async with SsoApiClient(binder, config=_CONFIG) as client:
                assert await client.get_active_account() == ACCOUNT_G1
                assert client.is_connected

        asyncio.run(run())
        assert binder.unbind_count == 1

    def test_link_reused_across_operations(self) -> None:
        """Several operations bind once."""
        client, binder = _client(FakeService(delay=0.02))

        async def run() -> None:
            await client.login("a@b.com", "pw")
            await client.get_all_accounts()
            await client.logout("g1")

        asyncio.run(run())
        assert binder.bind_count == 1

    def test_password_never_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Credentials do not appear in any log record."""
        client, _ = _client(FakeService(delay=0.02))
        with caplog.at_level("DEBUG", logger="ssoapi"):
            asyncio.run(client.login("a@b.com", "hunter2"))
            asyncio.run(client.fetch_account_info("g1", "tok-secret"))
        assert "a@b.com" in caplog.text
        assert "hunter2" not in caplog.text
        assert "tok-secret" not in caplog.text
