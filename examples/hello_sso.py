"""Minimal ssoapi example: host a service and sign in through the client.

The service runs in a background thread on a temporary Unix socket; the
client binds to it, logs in, and lists the signed-in accounts.

Run::

    python examples/hello_sso.py
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import threading
import uuid

from ssoapi import Account, AuthCallback, SaResultData
from ssoapi.ipc import Failure, SsoServiceHost, connect, serve_unix_thread


# 1. Implement the SsoService interface.  Two-phase methods report an
#    outcome first and, once accepted, the account.
class DemoSsoService:
    """Accepts any password and keeps accounts in memory."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}

    def login(self, mail: str, password: str, callback: AuthCallback) -> SaResultData | None:
        """Accept the login and deliver the account from another thread."""
        account = Account(guid=uuid.uuid4().hex[:8], mail=mail, profile_image=None, session_token="demo", is_active=True)
        self._accounts[account.guid] = account
        callback.on_outcome(SaResultData.accepted())
        timer = threading.Timer(0.05, callback.on_data_received, (account,))
        timer.daemon = True
        timer.start()
        return SaResultData.accepted()

    def register(self, mail: str, password: str, callback: AuthCallback) -> None:
        """Registration is closed in the demo."""
        callback.on_outcome(SaResultData.rejected("registration closed"))

    def fetch_token(self, mail: str, password: str, callback: AuthCallback) -> None:
        """Tokens are not issued in the demo."""
        callback.on_outcome(SaResultData.rejected("not supported"))

    def fetch_account_info(self, guid: str, session_token: str, callback: AuthCallback) -> None:
        """Account info is not available in the demo."""
        callback.on_outcome(SaResultData.rejected("not supported"))

    def logout(self, guid: str) -> None:
        """Forget one account."""
        self._accounts.pop(guid, None)

    def logout_all(self) -> None:
        """Forget every account."""
        self._accounts.clear()

    def switch_account(self, guid: str) -> None:
        """No-op: the most recent login stays active."""

    def get_active_account(self) -> Account | None:
        """Return the most recent login."""
        return next(reversed(self._accounts.values()), None)

    def get_all_accounts(self) -> list[Account]:
        """Return every account."""
        return list(self._accounts.values())


# 2. Serve it and call it through the async client.
def main() -> None:
    """Run the example."""
    path = os.path.join(tempfile.gettempdir(), f"hello-sso-{uuid.uuid4().hex[:8]}.sock")

    async def run() -> None:
        async with connect(path) as client:
            result = await client.login("demo@example.com", "secret")
            if isinstance(result, Failure):
                print(f"login failed: {result.kind.value}: {result.message}")
                return
            print(f"Signed in: {result.value.mail}")
            rejected = await client.register("new@example.com", "secret")
            if isinstance(rejected, Failure):
                print(f"Register refused: {rejected.message}")
            print(f"Accounts: {[a.mail for a in await client.get_all_accounts()]}")

    with serve_unix_thread(SsoServiceHost(DemoSsoService()), path):
        asyncio.run(run())


if __name__ == "__main__":
    main()
