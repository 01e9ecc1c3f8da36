# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the value records and their Arrow serialization."""

from __future__ import annotations

import pyarrow as pa
import pytest

from ssoapi.models import Account, AuthResult, Disposition, SaResultData, disposition_of
from tests.fakes import ACCOUNT_G1, ACCOUNT_G2


class TestAccount:
    """Account crosses the boundary by value."""

    def test_roundtrip_without_profile_image(self) -> None:
        """A missing profile image stays None, not an empty string."""
        restored = Account.deserialize_from_bytes(ACCOUNT_G1.serialize_to_bytes())
        assert restored == ACCOUNT_G1
        assert restored.profile_image is None

    def test_roundtrip_with_profile_image(self) -> None:
        """Every field survives, including is_active defaulting to False."""
        restored = Account.deserialize_from_bytes(ACCOUNT_G2.serialize_to_bytes())
        assert restored == ACCOUNT_G2
        assert restored.is_active is False

    def test_schema(self) -> None:
        """Only profile_image is nullable."""
        schema = Account.ARROW_SCHEMA
        assert schema.names == ["guid", "mail", "profile_image", "session_token", "is_active"]
        assert schema.field("profile_image").nullable
        assert not schema.field("guid").nullable
        assert schema.field("is_active").type == pa.bool_()

    def test_list_roundtrip(self) -> None:
        """A multi-row batch decodes to the same list."""
        batch = Account.batch_of([ACCOUNT_G1, ACCOUNT_G2])
        assert batch.num_rows == 2
        assert Account.list_from_batch(batch) == [ACCOUNT_G1, ACCOUNT_G2]

    def test_empty_list(self) -> None:
        """Zero rows decode to an empty list."""
        assert Account.list_from_batch(Account.batch_of([])) == []

    def test_single_row_required(self) -> None:
        """deserialize_from_batch rejects multi-row batches."""
        with pytest.raises(ValueError, match="single-row"):
            Account.deserialize_from_batch(Account.batch_of([ACCOUNT_G1, ACCOUNT_G2]))

    def test_missing_field(self) -> None:
        """A batch lacking a required column is rejected."""
        batch = pa.RecordBatch.from_pydict({"guid": ["g"], "mail": ["m"]})
        with pytest.raises(ValueError, match="Missing fields"):
            Account.deserialize_from_batch(batch)

    def test_repr_masks_session_token(self) -> None:
        """The session token never appears in repr()."""
        assert "tok-1" not in repr(ACCOUNT_G1)
        assert "g1" in repr(ACCOUNT_G1)


class TestOutcomes:
    """AuthResult and SaResultData."""

    def test_auth_result_defaults_roundtrip(self) -> None:
        """The terse record with a null message survives the wire."""
        original = AuthResult()
        restored = AuthResult.deserialize_from_bytes(original.serialize_to_bytes())
        assert restored == original
        assert restored.message is None

    def test_sa_result_factories(self) -> None:
        """accepted() and rejected() set the flags and message."""
        assert SaResultData.accepted() == SaResultData(success=True, fail=False, message="Login request accepted")
        assert SaResultData.rejected("nope") == SaResultData(success=False, fail=True, message="nope")

    @pytest.mark.parametrize(
        ("outcome", "expected"),
        [
            (AuthResult(success=True), Disposition.ACCEPTED),
            (AuthResult(fail=True), Disposition.REJECTED),
            (AuthResult(success=True, fail=True), Disposition.REJECTED),
            (AuthResult(), Disposition.UNDECIDED),
            (SaResultData.accepted(), Disposition.ACCEPTED),
            (SaResultData.rejected("x"), Disposition.REJECTED),
        ],
    )
    def test_disposition(self, outcome: AuthResult | SaResultData, expected: Disposition) -> None:
        """fail wins; neither flag is undecided."""
        assert disposition_of(outcome) is expected
