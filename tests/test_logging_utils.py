# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for SsoJsonFormatter and configure_logging."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator

import pytest

from ssoapi.logging_utils import SsoJsonFormatter, configure_logging


def _record(msg: str = "hello %s", args: tuple[object, ...] = ("world",), **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("ssoapi.test", logging.INFO, __file__, 1, msg, args, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


class TestSsoJsonFormatter:
    """JSON output shape."""

    def test_base_fields(self) -> None:
        """timestamp, level, logger and the rendered message are always present."""
        obj = json.loads(SsoJsonFormatter().format(_record()))
        assert obj["level"] == "INFO"
        assert obj["logger"] == "ssoapi.test"
        assert obj["message"] == "hello world"
        assert "timestamp" in obj

    def test_extra_fields_included(self) -> None:
        """Fields passed via extra= appear at the top level."""
        obj = json.loads(SsoJsonFormatter().format(_record(server_id="abc", method="login")))
        assert obj["server_id"] == "abc"
        assert obj["method"] == "login"

    def test_reserved_keys_not_overwritten(self) -> None:
        """An extra named 'level' cannot replace the real level."""
        obj = json.loads(SsoJsonFormatter().format(_record(level="bogus")))
        assert obj["level"] == "INFO"

    def test_non_serializable_coerced(self) -> None:
        """Values json cannot encode are stringified."""
        obj = json.loads(SsoJsonFormatter().format(_record(target=object())))
        assert obj["target"].startswith("<object object")

    def test_exception(self) -> None:
        """Exception text lands under 'exception'."""
        try:
            raise KeyError("unknown account")
        except KeyError:
            record = logging.LogRecord("ssoapi.test", logging.ERROR, __file__, 1, "boom", (), sys.exc_info())
        obj = json.loads(SsoJsonFormatter().format(record))
        assert "KeyError" in obj["exception"]


class TestConfigureLogging:
    """configure_logging attaches one stderr handler to 'ssoapi'."""

    @pytest.fixture(autouse=True)
    def _restore(self) -> Iterator[None]:
        logger = logging.getLogger("ssoapi")
        handlers, level = list(logger.handlers), logger.level
        yield
        logger.handlers[:] = handlers
        logger.setLevel(level)

    def test_default_is_warning_text(self) -> None:
        """Without flags: WARNING level and a plain formatter."""
        handler = configure_logging()
        assert handler in logging.getLogger("ssoapi").handlers
        assert logging.getLogger("ssoapi").level == logging.WARNING
        assert not isinstance(handler.formatter, SsoJsonFormatter)

    def test_verbose_json(self) -> None:
        """verbose and json_logs switch to DEBUG and JSON."""
        handler = configure_logging(verbose=True, json_logs=True)
        assert logging.getLogger("ssoapi").level == logging.DEBUG
        assert isinstance(handler.formatter, SsoJsonFormatter)
