# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Async client for a separately running SSO service, over Arrow IPC."""

import logging

from ssoapi.ipc import (
    AuthCallback,
    ClientConfig,
    ConnectionState,
    ErrorKind,
    Failure,
    ProtocolError,
    Result,
    ServiceTarget,
    SsoApiClient,
    SsoError,
    SsoService,
    SsoServiceHost,
    Success,
    TransportError,
    UnixSocketBinder,
    connect,
    serve_unix,
)
from ssoapi.metadata import REQUEST_VERSION
from ssoapi.models import Account, AuthResult, Disposition, Outcome, SaResultData, disposition_of
from ssoapi.utils import ArrowSerializableDataclass, IPCError

__all__ = [
    # Client
    "SsoApiClient",
    "ClientConfig",
    "ServiceTarget",
    "ConnectionState",
    "UnixSocketBinder",
    "connect",
    # Results and errors
    "Result",
    "Success",
    "Failure",
    "ErrorKind",
    "SsoError",
    "TransportError",
    "ProtocolError",
    "IPCError",
    # Records
    "Account",
    "AuthResult",
    "SaResultData",
    "Outcome",
    "Disposition",
    "disposition_of",
    "ArrowSerializableDataclass",
    # Service side
    "SsoService",
    "AuthCallback",
    "SsoServiceHost",
    "serve_unix",
    # Wire
    "REQUEST_VERSION",
]

# Attach NullHandler to the package logger so library users don't get
# "No handler found" warnings.
logging.getLogger("ssoapi").addHandler(logging.NullHandler())
