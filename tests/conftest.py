"""Shared test fixtures for ssoapi tests."""

from __future__ import annotations

import os
import socket
import subprocess
import sys
import tempfile
import time
import uuid
from collections.abc import Iterator
from pathlib import Path

import pytest

from ssoapi.ipc import ClientConfig, SsoServiceHost, UnixServiceServer, serve_unix_thread
from tests.fixture_service import InMemorySsoService

_SERVE_FIXTURE_UNIX = str(Path(__file__).parent / "serve_fixture_unix.py")
_REPO_ROOT = str(Path(__file__).resolve().parent.parent)

FAST_CONFIG = ClientConfig(connection_timeout=0.5, callback_timeout=2.0, max_connection_retries=2, retry_delay=0.05)
"""Shrunk time bounds for tests that talk to a real socket."""


def _short_unix_path(prefix: str) -> str:
    """Return a socket path short enough for ``sun_path`` (108 bytes on Linux)."""
    return os.path.join(tempfile.gettempdir(), f"{prefix}-{uuid.uuid4().hex[:8]}.sock")


def _wait_for_unix(path: str, timeout: float = 5.0) -> None:
    """Poll until the Unix socket server is accepting connections."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(path)
            return
        except (FileNotFoundError, ConnectionRefusedError):
            time.sleep(0.05)
        finally:
            sock.close()
    raise TimeoutError(f"Unix socket server at {path} did not start within {timeout}s")


@pytest.fixture()
def service() -> InMemorySsoService:
    """A fresh in-memory service implementation."""
    return InMemorySsoService(delay=0.05)


@pytest.fixture()
def unix_server(service: InMemorySsoService) -> Iterator[UnixServiceServer]:
    """Serve *service* in-process on a fresh Unix socket for one test."""
    with serve_unix_thread(SsoServiceHost(service), _short_unix_path("sso")) as server:
        yield server


@pytest.fixture()
def subprocess_server_path() -> Iterator[str]:
    """Spawn the fixture service in a child process for the duration of one test."""
    path = _short_unix_path("ssosub")
    proc = subprocess.Popen(
        [sys.executable, _SERVE_FIXTURE_UNIX, path],
        stdout=subprocess.PIPE,
        env={**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [_REPO_ROOT, os.environ.get("PYTHONPATH")]))},
    )
    try:
        assert proc.stdout is not None
        line = proc.stdout.readline().decode().strip()
        assert line == f"UNIX:{path}", f"Expected UNIX:{path}, got: {line!r}"
        _wait_for_unix(path)
        yield path
    finally:
        proc.terminate()
        proc.wait(timeout=5)
