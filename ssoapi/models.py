# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Value records exchanged with the SSO service.

All records are frozen dataclasses that cross the process boundary by value
as single-row Arrow batches (see :class:`~ssoapi.utils.ArrowSerializableDataclass`).

Two outcome records exist because two revisions of the service contract
are in the wild:

- :class:`AuthResult` is the terse ``success``/``fail``/``message`` record
  delivered through ``AuthCallback.on_outcome``.
- :class:`SaResultData` is the richer accepted/rejected record, which the
  service may also return synchronously from ``login``.

Both are read through :func:`disposition_of`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ssoapi.utils import ArrowSerializableDataclass

__all__ = [
    "Account",
    "AuthResult",
    "Disposition",
    "Outcome",
    "SaResultData",
    "disposition_of",
]


@dataclass(frozen=True)
class Account(ArrowSerializableDataclass):
    """A signed-in account as reported by the service.

    Attributes:
        guid: Server-assigned unique identifier.
        mail: Account e-mail address.
        profile_image: Profile image URL, or ``None`` when the account has none.
        session_token: Opaque session token issued by the service.
        is_active: Whether this is the service's currently active account.

    """

    guid: str
    mail: str
    profile_image: str | None
    session_token: str
    is_active: bool = False

    def __repr__(self) -> str:
        """Return a representation that does not leak the session token."""
        return (
            f"Account(guid={self.guid!r}, mail={self.mail!r}, profile_image={self.profile_image!r}, "
            f"session_token='***', is_active={self.is_active!r})"
        )


@dataclass(frozen=True)
class AuthResult(ArrowSerializableDataclass):
    """Terse outcome record: ``fail`` wins, ``message`` usually holds error details."""

    success: bool = False
    fail: bool = False
    message: str | None = None


@dataclass(frozen=True)
class SaResultData(ArrowSerializableDataclass):
    """Accepted/rejected outcome record.

    ``success=True`` means the request was accepted and the account will
    follow through ``on_data_received``; ``fail=True`` means it was rejected
    immediately and ``message`` holds the reason.
    """

    success: bool
    fail: bool
    message: str

    @classmethod
    def accepted(cls, msg: str = "Login request accepted") -> SaResultData:
        """Build an accepted record."""
        return cls(success=True, fail=False, message=msg)

    @classmethod
    def rejected(cls, msg: str) -> SaResultData:
        """Build a rejected record carrying *msg* as the reason."""
        return cls(success=False, fail=True, message=msg)


Outcome = AuthResult | SaResultData
"""Either outcome record variant."""


class Disposition(Enum):
    """How a phase-1 outcome record is to be read."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    UNDECIDED = "undecided"


def disposition_of(outcome: Outcome) -> Disposition:
    """Classify an outcome record.

    ``fail`` takes precedence over ``success``; a record with neither flag
    set is ``UNDECIDED``.
    """
    if outcome.fail:
        return Disposition.REJECTED
    if outcome.success:
        return Disposition.ACCEPTED
    return Disposition.UNDECIDED
