"""Tests for Alpaca request parameter parsing."""

from __future__ import annotations

import pytest

from alpacapi.alpaca.errors import AlpacaErrorCode, InvalidValueError
from alpacapi.alpaca.request import (
    CaseInsensitiveParams,
    RequestContext,
    parse_uint32,
)


class TestCaseInsensitiveParams:
    def test_lookup_ignores_case(self) -> None:
        params = CaseInsensitiveParams({"RightAscension": "10.5"})

        assert params["rightascension"] == "10.5"
        assert params["RIGHTASCENSION"] == "10.5"
        assert "rightAscension" in params

    def test_first_occurrence_wins(self) -> None:
        params = CaseInsensitiveParams([("Id", "1"), ("ID", "2")])

        assert params["id"] == "1"
        assert len(params) == 1

    def test_iteration_keeps_original_names(self) -> None:
        params = CaseInsensitiveParams([("ClientID", "3"), ("Connected", "true")])

        assert list(params) == ["ClientID", "Connected"]

    def test_from_query_prefers_earlier_chunks(self) -> None:
        params = CaseInsensitiveParams.from_query(
            b"Connected=true&ClientTransactionID=9", "connected=false&Extra=1"
        )

        assert params["Connected"] == "true"
        assert params["ClientTransactionID"] == "9"
        assert params["extra"] == "1"

    def test_from_query_keeps_blank_values(self) -> None:
        params = CaseInsensitiveParams.from_query("Parameters=&Action=setsafe")

        assert params["Parameters"] == ""

    def test_from_query_skips_empty_chunks(self) -> None:
        assert len(CaseInsensitiveParams.from_query(b"", "")) == 0


class TestTypedAccessors:
    def test_get_float(self) -> None:
        assert CaseInsensitiveParams({"Rate": "-1.5"}).get_float("rate") == -1.5

    @pytest.mark.parametrize("raw", ["abc", ""])
    def test_get_float_rejects_text(self, raw: str) -> None:
        with pytest.raises(InvalidValueError) as exc_info:
            CaseInsensitiveParams({"Rate": raw}).get_float("Rate")

        assert exc_info.value.error_number == int(AlpacaErrorCode.INVALID_VALUE)

    def test_missing_parameter(self) -> None:
        with pytest.raises(InvalidValueError, match="Missing parameter Position"):
            CaseInsensitiveParams().get_int("Position")

    def test_get_int_strips_whitespace(self) -> None:
        assert CaseInsensitiveParams({"Position": " 42 "}).get_int("Position") == 42

    def test_get_int_rejects_float_text(self) -> None:
        with pytest.raises(InvalidValueError):
            CaseInsensitiveParams({"Position": "4.2"}).get_int("Position")

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("true", True), ("True", True), ("1", True), ("false", False), ("FALSE", False)],
    )
    def test_get_bool(self, raw: str, expected: bool) -> None:
        assert CaseInsensitiveParams({"Connected": raw}).get_bool("Connected") is expected

    def test_get_bool_rejects_other_text(self) -> None:
        with pytest.raises(InvalidValueError):
            CaseInsensitiveParams({"Connected": "maybe"}).get_bool("Connected")


class TestParseUint32:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, 0),
            ("17", 17),
            (" 4294967295 ", 4294967295),
            ("4294967296", 0),
            ("-1", 0),
            ("abc", 0),
        ],
    )
    def test_values(self, raw: str | None, expected: int) -> None:
        assert parse_uint32(raw) == expected


class TestRequestContext:
    def test_build_normalizes_names(self) -> None:
        params = CaseInsensitiveParams({"ClientID": "12", "ClientTransactionID": "34"})

        context = RequestContext.build("put", "Telescope", 0, "SlewToCoordinates", params)

        assert context.method == "PUT"
        assert context.device_type == "telescope"
        assert context.action == "slewtocoordinates"
        assert context.client_id == 12
        assert context.client_transaction_id == 34
        assert context.is_put

    def test_missing_ids_default_to_zero(self) -> None:
        context = RequestContext.build("GET", "focuser", 1, "position", CaseInsensitiveParams())

        assert context.client_id == 0
        assert context.client_transaction_id == 0
        assert not context.is_put
