# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for frame encoding, decoding, and validation."""

from __future__ import annotations

import io

import pyarrow as pa
import pytest

from ssoapi.ipc import ProtocolError, SsoService, remote_methods
from ssoapi.ipc._types import MethodKind
from ssoapi.ipc._wire import (
    FrameKind,
    decode_result,
    encode_result,
    read_call_kwargs,
    read_callback_record,
    read_error,
    read_frame,
    write_call,
    write_callback,
    write_error,
    write_frame,
    write_return,
)
from ssoapi.metadata import FRAME_KEY, REQUEST_VERSION_KEY, encode_metadata
from ssoapi.models import Account, AuthResult, SaResultData
from ssoapi.utils import IPCError, serialize_record_batch
from tests.fakes import ACCOUNT_G1, ACCOUNT_G2

_METHODS = remote_methods(SsoService)


def _reader(buf: io.BytesIO) -> io.BufferedReader:
    return io.BufferedReader(io.BytesIO(buf.getvalue()))


# ---------------------------------------------------------------------------
# Method introspection
# ---------------------------------------------------------------------------


class TestRemoteMethods:
    """Signatures classify into call patterns."""

    def test_all_nine_methods(self) -> None:
        """Every service operation is discovered."""
        assert sorted(_METHODS) == sorted(
            [
                "fetch_account_info",
                "fetch_token",
                "get_active_account",
                "get_all_accounts",
                "login",
                "logout",
                "logout_all",
                "register",
                "switch_account",
            ]
        )

    def test_kinds(self) -> None:
        """Callback-taking methods are two-phase; None-returning ones fire-and-forget."""
        assert _METHODS["login"].kind is MethodKind.TWO_PHASE
        assert _METHODS["fetch_account_info"].kind is MethodKind.TWO_PHASE
        assert _METHODS["logout"].kind is MethodKind.FIRE_AND_FORGET
        assert _METHODS["get_all_accounts"].kind is MethodKind.QUERY
        assert _METHODS["get_all_accounts"].result_is_list

    def test_callback_not_on_the_wire(self) -> None:
        """Only string parameters are carried in the request batch."""
        info = _METHODS["login"]
        assert info.param_names == ["mail", "password"]
        assert info.callback_param == "callback"
        assert info.result_record is SaResultData


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


class TestFrames:
    """Frame round trips through a byte stream."""

    def test_call_frame(self) -> None:
        """A call carries method, ids, and its arguments."""
        buf = io.BytesIO()
        info = _METHODS["fetch_account_info"]
        write_call(buf, info, {"guid": "g1", "session_token": "t"}, call_id=7, callback_id=3)
        frame = read_frame(_reader(buf))
        assert frame.kind is FrameKind.CALL
        assert frame.method == "fetch_account_info"
        assert frame.call_id == 7
        assert frame.callback_id == 3
        assert read_call_kwargs(frame, info) == {"guid": "g1", "session_token": "t"}

    def test_call_without_params(self) -> None:
        """A parameterless call decodes to no arguments."""
        buf = io.BytesIO()
        info = _METHODS["logout_all"]
        write_call(buf, info, {}, call_id=1)
        frame = read_frame(_reader(buf))
        assert read_call_kwargs(frame, info) == {}
        with pytest.raises(ProtocolError, match="callback_id"):
            _ = frame.callback_id

    def test_back_to_back_frames(self) -> None:
        """Consecutive frames on one stream are read in order, then EOF."""
        buf = io.BytesIO()
        write_frame(buf, FrameKind.BOUND)
        write_return(buf, _METHODS["get_active_account"], 2, ACCOUNT_G1)
        reader = _reader(buf)
        assert read_frame(reader).kind is FrameKind.BOUND
        second = read_frame(reader)
        assert second.kind is FrameKind.RETURN
        assert decode_result(_METHODS["get_active_account"], second.batch) == ACCOUNT_G1
        with pytest.raises(EOFError):
            read_frame(reader)

    def test_error_frame(self) -> None:
        """Error frames carry the exception type and message."""
        buf = io.BytesIO()
        write_error(buf, "logout", 5, KeyError("unknown account"))
        frame = read_frame(_reader(buf))
        assert frame.kind is FrameKind.ERROR
        error_type, message = read_error(frame)
        assert error_type == "KeyError"
        assert "unknown account" in message

    @pytest.mark.parametrize(
        ("method", "record"),
        [
            ("on_outcome", AuthResult(fail=True, message=None)),
            ("on_outcome", SaResultData.accepted()),
            ("on_data_received", ACCOUNT_G2),
        ],
    )
    def test_callback_frame(self, method: str, record: AuthResult | SaResultData | Account) -> None:
        """Callback frames name the record type they carry."""
        buf = io.BytesIO()
        write_callback(buf, 9, method, record)
        frame = read_frame(_reader(buf))
        assert frame.kind is FrameKind.CALLBACK
        assert frame.callback_id == 9
        assert frame.method == method
        assert read_callback_record(frame) == record

    def test_version_mismatch(self) -> None:
        """A frame with another protocol version is refused."""
        buf = io.BytesIO()
        md = encode_metadata({FRAME_KEY: b"bound", REQUEST_VERSION_KEY: b"99"})
        serialize_record_batch(buf, pa.RecordBatch.from_pydict({"x": [1]}), md)
        with pytest.raises(ProtocolError, match="version"):
            read_frame(_reader(buf))

    def test_unknown_kind(self) -> None:
        """An unrecognised frame kind is a protocol error."""
        buf = io.BytesIO()
        md = encode_metadata({FRAME_KEY: b"teleport", REQUEST_VERSION_KEY: b"1"})
        serialize_record_batch(buf, pa.RecordBatch.from_pydict({"x": [1]}), md)
        with pytest.raises(ProtocolError, match="Unknown frame kind"):
            read_frame(_reader(buf))

    def test_garbage(self) -> None:
        """Bytes that are not Arrow IPC raise IPCError."""
        with pytest.raises(IPCError):
            read_frame(io.BufferedReader(io.BytesIO(b"definitely not arrow ipc data")))


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TestResults:
    """Reply encoding per return shape."""

    def test_none_results(self) -> None:
        """None encodes as zero rows and decodes back to None."""
        for name in ("logout", "get_active_account", "login"):
            info = _METHODS[name]
            batch = encode_result(info, None)
            assert batch.num_rows == 0
            assert decode_result(info, batch) is None

    def test_list_drops_nulls(self) -> None:
        """None entries in a list result are not sent."""
        info = _METHODS["get_all_accounts"]
        batch = encode_result(info, [ACCOUNT_G1, None, ACCOUNT_G2])
        assert decode_result(info, batch) == [ACCOUNT_G1, ACCOUNT_G2]

    def test_wrong_record_type(self) -> None:
        """Returning the wrong record type is a TypeError."""
        with pytest.raises(TypeError, match="expected Account"):
            encode_result(_METHODS["get_active_account"], SaResultData.accepted())

    def test_synchronous_login_reply(self) -> None:
        """login's SaResultData reply survives the wire."""
        info = _METHODS["login"]
        assert decode_result(info, encode_result(info, SaResultData.rejected("blocked"))) == SaResultData.rejected(
            "blocked"
        )
