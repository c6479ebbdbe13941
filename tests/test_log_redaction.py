"""Tests for signal_relay.log_redaction."""

from __future__ import annotations

import logging

from signal_relay.log_redaction import LogRedactionFilter, redact_secrets


class TestRedactSecrets:

    def test_telegram_token_in_url(self):
        url = "POST https://api.telegram.org/bot123456789:AAH-abcdefghijklmnopqrstuvwxyz012345/sendMessage"
        out = redact_secrets(url)
        assert "AAH-abc" not in out
        assert out.endswith("/bot***REDACTED***/sendMessage")

    def test_bearer_header(self):
        assert "wtoken" not in redact_secrets("Authorization: Bearer wtoken")

    def test_session_cookie(self):
        out = redact_secrets("cookie sessionid=abc123; path=/")
        assert "abc123" not in out

    def test_query_token(self):
        assert "xyz" not in redact_secrets("GET /news?token=xyz&tag=GOLD")

    def test_plain_text_untouched(self):
        msg = "Trading signal relayed: BUY BTCUSD 45000"
        assert redact_secrets(msg) == msg


class TestLogRedactionFilter:

    def test_args_redacted_numbers_kept(self):
        record = logging.LogRecord(
            "httpx", logging.INFO, __file__, 1,
            "HTTP Request: %s %s (%d)",
            ("POST", "https://api.telegram.org/bot123:SECRETabc/sendPhoto", 200),
            None,
        )
        assert LogRedactionFilter().filter(record)
        text = record.getMessage()
        assert "SECRETabc" not in text
        assert text.endswith("(200)")
