"""Unit tests for Indotel reply normalisation."""

import json

import pytest

from billpay.adapters.indotel_replies import (
    decode_body,
    normalize_reply,
    parse_amount,
    parse_delimited,
)
from billpay.exceptions import GatewayRejected
from billpay.schemas.gateway import GatewayOutcome


class TestParseDelimited:
    def test_pipe_separated_colon_pairs(self):
        pairs = parse_delimited("STATUS:SUKSES|REF:ABC123|MSG:Token 1234")
        assert pairs == {"status": "SUKSES", "ref": "ABC123", "msg": "Token 1234"}

    def test_newline_and_equals(self):
        pairs = parse_delimited("status=00\nsaldo = 1.500.000\n")
        assert pairs == {"status": "00", "saldo": "1.500.000"}

    def test_ampersand_query_style(self):
        assert parse_delimited("rc=68&msg=proses") == {"rc": "68", "msg": "proses"}

    def test_keys_normalised(self):
        assert parse_delimited("Serial Number: 99") == {"serial_number": "99"}

    def test_segments_without_separator_ignored(self):
        assert parse_delimited("hello|STATUS:OK") == {"status": "OK"}

    def test_first_occurrence_wins(self):
        assert parse_delimited("status:ok|status:gagal") == {"status": "ok"}


class TestDecodeBody:
    def test_json_object(self):
        assert decode_body('{"status": "success"}') == {"status": "success"}

    def test_plain_text_falls_back_to_pairs(self):
        assert decode_body("STATUS:OK") == {"status": "OK"}

    @pytest.mark.parametrize("body", ["", "   ", "<html>Bad Gateway</html>", '"just a string"'])
    def test_nothing_usable(self, body):
        assert decode_body(body) is None


class TestParseAmount:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (50500, 50500),
            (50500.0, 50500),
            ("50500", 50500),
            ("50.500", 50500),
            ("Rp 50.500", 50500),
            ("50500.00", 50500),
            ("1,250,000", 1250000),
            (None, None),
            ("", None),
            ("n/a", None),
            (True, None),
        ],
    )
    def test_formats(self, value, expected):
        assert parse_amount(value) == expected


class TestNormalizeJson:
    def test_success_with_ref_and_amount(self):
        body = json.dumps(
            {"status": "success", "message": "OK", "data": {"ref_id": "REF123", "amount": 50500}}
        )
        result = normalize_reply(body)
        assert result.outcome == GatewayOutcome.SUCCESS
        assert result.succeeded
        assert result.provider_ref == "REF123"
        assert result.amount == 50500
        assert result.message == "OK"
        assert result.raw_payload["data"]["ref_id"] == "REF123"

    @pytest.mark.parametrize("status", ["SUKSES", "ok", "00", "0", 200, True, "Berhasil"])
    def test_success_tokens(self, status):
        assert normalize_reply(json.dumps({"status": status})).succeeded

    def test_nested_data_status_overrides_envelope(self):
        body = json.dumps({"status": 200, "data": {"status": "GAGAL", "keterangan": "Nomor salah"}})
        with pytest.raises(GatewayRejected) as exc_info:
            normalize_reply(body)
        assert exc_info.value.message == "Nomor salah"
        assert exc_info.value.raw_payload["data"]["status"] == "GAGAL"

    @pytest.mark.parametrize("status", ["pending", "PROSES", "68", "waiting"])
    def test_pending_is_failure_outcome(self, status):
        result = normalize_reply(json.dumps({"status": status, "ref": "R9"}))
        assert result.outcome == GatewayOutcome.FAILURE
        assert result.provider_ref == "R9"

    def test_pending_without_message_gets_default(self):
        result = normalize_reply(json.dumps({"status": "pending"}))
        assert result.message == "Gateway reply pending"

    @pytest.mark.parametrize("status", ["failed", "GAGAL", "error", "14"])
    def test_failure_statuses_raise(self, status):
        with pytest.raises(GatewayRejected):
            normalize_reply(json.dumps({"status": status, "message": "Produk gangguan"}))

    def test_rejection_without_message(self):
        with pytest.raises(GatewayRejected, match="Gateway rejected the request"):
            normalize_reply(json.dumps({"rc": "99"}))

    def test_missing_status_is_failure_not_exception(self):
        result = normalize_reply(json.dumps({"message": "hello"}))
        assert result.outcome == GatewayOutcome.FAILURE
        assert result.message == "hello"

    def test_unknown_status_token(self):
        result = normalize_reply(json.dumps({"status": "maybe"}))
        assert result.outcome == GatewayOutcome.FAILURE
        assert result.message == "Unrecognised gateway reply"

    def test_json_list_is_unrecognised(self):
        result = normalize_reply("[1, 2, 3]")
        assert result.outcome == GatewayOutcome.FAILURE
        assert result.raw_payload == [1, 2, 3]


class TestNormalizeDelimited:
    def test_success_text_reply(self):
        body = "STATUS:SUKSES|REF:ABC123|MSG:Token 1234-5678"
        result = normalize_reply(body)
        assert result.succeeded
        assert result.provider_ref == "ABC123"
        assert result.message == "Token 1234-5678"
        assert result.raw_payload == body

    def test_failure_text_reply(self):
        with pytest.raises(GatewayRejected, match="Saldo tidak cukup"):
            normalize_reply("STATUS=GAGAL;MSG=Saldo tidak cukup")

    def test_message_keeps_semicolons_and_ampersands(self):
        body = "STATUS:GAGAL|MSG:Saldo tidak cukup; sisa Rp 1.000 & limit harian"
        with pytest.raises(GatewayRejected) as exc_info:
            normalize_reply(body)
        assert exc_info.value.message == "Saldo tidak cukup; sisa Rp 1.000 & limit harian"
        assert exc_info.value.raw_payload == body

    def test_message_keeps_colons(self):
        result = normalize_reply("STATUS:PROSES|MSG:Antrian: nomor 3; estimasi: 5 menit|REF:Q7")
        assert result.message == "Antrian: nomor 3; estimasi: 5 menit"
        assert result.provider_ref == "Q7"

    def test_unparseable_body_preserved(self):
        result = normalize_reply("<html>oops</html>")
        assert result.outcome == GatewayOutcome.FAILURE
        assert result.raw_payload == "<html>oops</html>"
        assert result.provider_ref is None
