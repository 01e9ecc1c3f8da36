"""Constants, errors, results, and configuration for the SSO client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Final, Generic, NoReturn, TypeAlias, TypeVar

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_logger = logging.getLogger("ssoapi.client")
_connection_logger = logging.getLogger("ssoapi.connection")
_correlator_logger = logging.getLogger("ssoapi.correlator")
_server_logger = logging.getLogger("ssoapi.server")

SSO_SERVICE_PACKAGE: Final = "com.example.service"
SSO_SERVICE_CLASS: Final = "com.example.service.SsoService"
SSO_SERVICE_ACTION: Final = "com.example.service.SSO_SERVICE"

CONNECTION_TIMEOUT: Final = 5.0
CALLBACK_TIMEOUT: Final = 30.0
MAX_CONNECTION_RETRIES: Final = 3
RETRY_DELAY: Final = 1.0


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceTarget:
    """Exact identity of the remote service a client binds to.

    The client never looks a service up implicitly: all three parts must
    match what the service host registered, or the bind is refused.

    Attributes:
        package: Identity of the process hosting the service.
        class_name: Fully qualified name of the service interface.
        action: Action string the service answers to.

    """

    package: str = SSO_SERVICE_PACKAGE
    class_name: str = SSO_SERVICE_CLASS
    action: str = SSO_SERVICE_ACTION

    def __post_init__(self) -> None:
        """Validate that no part of the target is empty."""
        for name in ("package", "class_name", "action"):
            if not getattr(self, name):
                raise ValueError(f"ServiceTarget.{name} must be non-empty")

    def __str__(self) -> str:
        """Return ``package/class_name`` like a component name."""
        return f"{self.package}/{self.class_name}"


@dataclass(frozen=True)
class ClientConfig:
    """Time bounds and retry policy for :class:`~ssoapi.ipc.SsoApiClient`.

    Attributes:
        connection_timeout: Seconds a single bind attempt may take.
        callback_timeout: Seconds an operation may wait for its result,
            measured from the remote call being issued.
        max_connection_retries: Bind attempts per ``ensure_connected()``.
        retry_delay: Fixed pause between bind attempts (none after the last).

    Raises:
        ValueError: If a timeout is not positive, *max_connection_retries*
            < 1, or *retry_delay* < 0.

    """

    connection_timeout: float = CONNECTION_TIMEOUT
    callback_timeout: float = CALLBACK_TIMEOUT
    max_connection_retries: int = MAX_CONNECTION_RETRIES
    retry_delay: float = RETRY_DELAY

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.connection_timeout <= 0:
            raise ValueError(f"connection_timeout must be > 0, got {self.connection_timeout}")
        if self.callback_timeout <= 0:
            raise ValueError(f"callback_timeout must be > 0, got {self.callback_timeout}")
        if self.max_connection_retries < 1:
            raise ValueError(f"max_connection_retries must be >= 1, got {self.max_connection_retries}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")

    @property
    def worst_case_connect_time(self) -> float:
        """Upper bound of a failing ``ensure_connected()`` in seconds."""
        return self.max_connection_retries * self.connection_timeout + (self.max_connection_retries - 1) * (
            self.retry_delay
        )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorKind(Enum):
    """Classification of every failure the client can report."""

    NOT_CONNECTED = "NotConnected"
    CONNECTION_TIMEOUT = "ConnectionTimeout"
    TRANSPORT_FAILURE = "TransportFailure"
    OPERATION_TIMEOUT = "OperationTimeout"
    REMOTE_REJECTED = "RemoteRejected"


class SsoError(Exception):
    """Base error carrying an :class:`ErrorKind` and a human-readable message."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        """Initialize with the failure kind and message."""
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")


class TransportError(SsoError):
    """Raised by the proxy when a remote call fails at the transport level.

    Attributes:
        error_type: Remote exception type name for service-side errors,
            ``"TransportError"`` for local I/O failures.

    """

    def __init__(self, message: str, *, error_type: str = "TransportError") -> None:
        """Initialize with the failure message and optional remote type."""
        self.error_type = error_type
        super().__init__(ErrorKind.TRANSPORT_FAILURE, message)


class ProtocolError(Exception):
    """Raised when a frame is malformed or arrives where it is not expected."""


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful operation result."""

    value: T

    @property
    def ok(self) -> bool:
        """Always ``True``."""
        return True

    def unwrap(self) -> T:
        """Return the value."""
        return self.value


@dataclass(frozen=True)
class Failure:
    """Failed operation result.

    Attributes:
        kind: What went wrong.
        message: Human-readable detail (the service's reason for rejections).

    """

    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        """Always ``False``."""
        return False

    def as_exception(self) -> SsoError:
        """Return the equivalent :class:`SsoError`."""
        return SsoError(self.kind, self.message)

    def unwrap(self) -> NoReturn:
        """Raise the equivalent :class:`SsoError`."""
        raise self.as_exception()


Result: TypeAlias = "Success[T] | Failure"
"""Outcome of every public client operation."""
