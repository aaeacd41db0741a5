"""Tests for log redaction and context binding."""

from __future__ import annotations

import logging

import structlog

from ethsim.observability.logger import _redact_processor, _ScrubFilter, log_context, scrub

TOKEN = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"


class TestRedaction:
    def test_secret_keys_are_replaced(self) -> None:
        event = _redact_processor(None, "info", {"event": "x", "bot_token": TOKEN, "Token": "abc"})
        assert event["bot_token"] == "***REDACTED***"
        assert event["Token"] == "***REDACTED***"

    def test_token_inside_url_is_scrubbed(self) -> None:
        url = f"https://api.telegram.org/bot{TOKEN}/sendMessage"
        event = _redact_processor(None, "error", {"event": "bot.request_failed", "url": url})
        assert TOKEN not in event["url"]
        assert event["url"] == "https://api.telegram.org/bot***/sendMessage"

    def test_non_secret_values_untouched(self) -> None:
        event = _redact_processor(None, "info", {"event": "x", "price": "2390.5", "tick_id": 3})
        assert event == {"event": "x", "price": "2390.5", "tick_id": 3}
        assert scrub("user 42 bought 1 ETH") == "user 42 bought 1 ETH"

    def test_stdlib_records_are_scrubbed(self) -> None:
        record = logging.LogRecord(
            "httpx", logging.WARNING, __file__, 1,
            "HTTP Request: POST %s", (f"https://api.telegram.org/bot{TOKEN}/getUpdates",), None,
        )
        assert _ScrubFilter().filter(record)
        assert TOKEN not in record.getMessage()


class TestLogContext:
    def test_binds_and_restores(self) -> None:
        with log_context(tick_id=5):
            assert structlog.contextvars.get_contextvars()["tick_id"] == 5
            with log_context(user_id="42"):
                assert structlog.contextvars.get_contextvars() == {"tick_id": 5, "user_id": "42"}
            assert "user_id" not in structlog.contextvars.get_contextvars()
        assert "tick_id" not in structlog.contextvars.get_contextvars()
