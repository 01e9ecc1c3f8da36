"""Service and callback interfaces shared by the client proxy and the service host."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ssoapi.models import Account, Outcome, SaResultData


@runtime_checkable
class AuthCallback(Protocol):
    """Receiver of the two-phase result of an authentication request.

    ``on_outcome`` is delivered once with the disposition; ``on_data_received``
    follows with the account only after an accepted outcome.
    """

    def on_outcome(self, outcome: Outcome) -> None:
        """Phase 1: the request was accepted or rejected."""
        ...

    def on_data_received(self, account: Account) -> None:
        """Phase 2: the account produced by an accepted request."""
        ...


class SsoService(Protocol):
    """Operations offered by the SSO service process."""

    def login(self, mail: str, password: str, callback: AuthCallback) -> SaResultData | None:
        """Sign in and add the account to the service's account list."""
        ...

    def register(self, mail: str, password: str, callback: AuthCallback) -> None:
        """Create an account and sign it in."""
        ...

    def logout(self, guid: str) -> None:
        """Sign out the account with *guid*."""
        ...

    def logout_all(self) -> None:
        """Sign out every account."""
        ...

    def switch_account(self, guid: str) -> None:
        """Make the account with *guid* the active one."""
        ...

    def get_active_account(self) -> Account | None:
        """Return the active account, if any."""
        ...

    def get_all_accounts(self) -> list[Account]:
        """Return every signed-in account."""
        ...

    def fetch_token(self, mail: str, password: str, callback: AuthCallback) -> None:
        """Fetch a session token without storing the account."""
        ...

    def fetch_account_info(self, guid: str, session_token: str, callback: AuthCallback) -> None:
        """Fetch account details for a session without storing anything."""
        ...
