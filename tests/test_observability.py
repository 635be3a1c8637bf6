"""Tests for observability utilities (redaction, correlation, JSON logs)."""

import json
import logging

from shopledger.observability.correlation import (
    MAX_CORRELATION_ID_LENGTH,
    bound_correlation_id,
    get_correlation_id,
)
from shopledger.observability.logging import JsonFormatter, get_logger
from shopledger.observability.redaction import (
    mask_phone,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    def test_redact_phone_number(self):
        result = redact_string("call +91 98765 43210 now")
        assert "98765" not in result
        assert "[REDACTED]" in result

    def test_redact_email(self):
        result = redact_string("Email: owner@shop.in")
        assert "owner@shop.in" not in result

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"body": "Sold tea ₹40", "from": "919876543210"})
        assert "Sold tea" not in result
        assert "body" in result

    def test_redact_value_bytes_only_len(self):
        assert redact_value(b"raw webhook body") == "bytes(len=16)"

    def test_safe_log_context_stringifies(self):
        ctx = safe_log_context(phone="+919876543210", count=42, ok=True, missing=None)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"
        assert ctx["ok"] == "true"
        assert ctx["missing"] == "null"

    def test_secret_keys_never_logged(self):
        ctx = safe_log_context(access_token="EAAG123", app_secret="s3cr3t", signature_header="sha256=ab")
        assert set(ctx.values()) == {"[REDACTED]"}


class TestMaskPhone:
    def test_keeps_last_four(self):
        assert mask_phone("919876543210") == "********3210"

    def test_short_value_fully_masked(self):
        assert mask_phone("1234") == "****"

    def test_empty(self):
        assert mask_phone("") == ""
        assert mask_phone(None) == ""

    def test_masked_value_survives_safe_log_context(self):
        assert safe_log_context(sender=mask_phone("919876543210"))["sender"] == "********3210"


class TestCorrelation:
    def test_reuses_inbound_id(self):
        with bound_correlation_id("req-123") as cid:
            assert cid == "req-123"
            assert get_correlation_id() == "req-123"
        assert get_correlation_id() == ""

    def test_generates_when_missing(self):
        with bound_correlation_id(None) as cid:
            assert len(cid) == 36

    def test_oversized_inbound_id_replaced(self):
        with bound_correlation_id("x" * (MAX_CORRELATION_ID_LENGTH + 1)) as cid:
            assert cid != "x" * (MAX_CORRELATION_ID_LENGTH + 1)

    def test_nested_scopes_restore(self):
        with bound_correlation_id("outer"):
            with bound_correlation_id("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("shopledger.test", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_includes_extra_fields_and_correlation_id(self):
        record = self._record(extra_fields={"sender": "********3210"})

        with bound_correlation_id("cid-1"):
            line = JsonFormatter().format(record)

        data = json.loads(line)
        assert data["message"] == "hello"
        assert data["severity"] == "INFO"
        assert data["correlationId"] == "cid-1"
        assert data["sender"] == "********3210"

    def test_no_correlation_id_outside_request(self):
        data = json.loads(JsonFormatter().format(self._record()))
        assert "correlationId" not in data


class TestGetLogger:
    def test_nests_under_package_logger(self):
        assert get_logger("scripts.tool").name == "shopledger.scripts.tool"
        assert get_logger("shopledger.domain.pipeline").name == "shopledger.domain.pipeline"

    def test_single_handler_on_package_logger(self):
        package_logger = logging.getLogger("shopledger")
        get_logger("shopledger.a")
        before = list(package_logger.handlers)
        get_logger("shopledger.b")

        assert package_logger.handlers == before
        json_handlers = [h for h in package_logger.handlers if isinstance(h.formatter, JsonFormatter)]
        assert len(json_handlers) == 1
