"""Tests for signal_relay.formatting."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from signal_relay.common_types import NewsItem, TradingSignal
from signal_relay.formatting import (
    format_key,
    format_news_plain,
    format_news_telegram,
    format_number,
    format_signal_message,
    format_text_message,
)


class TestFormatNumber:

    @pytest.mark.parametrize("raw, expected", [
        ("44000.12340", "44000.1234"),
        ("45000", "45000"),
        ("45000.0000", "45000"),
        ("0.123456", "0.1235"),
        ("-0.5", "-0.5"),
        ("12.", "12"),
        (1.5, "1.5"),
        (7, "7"),
    ])
    def test_numeric(self, raw, expected):
        assert format_number(raw) == expected

    @pytest.mark.parametrize("raw", ["1e5", "abc", "1,000", "BTC 45000"])
    def test_non_numeric_passthrough(self, raw):
        assert format_number(raw) == raw

    def test_none_and_bool(self):
        assert format_number(None) == ""
        assert format_number(True) == "true"


class TestFormatKey:

    def test_strips_and_uppercases(self):
        assert format_key("stopLoss") == "STOPLOSS"
        assert format_key("take-profit 1") == "TAKEPROFIT1"


class TestSignalMessage:

    def test_layout_without_extras(self):
        sig = TradingSignal("SkippALGO", "2024-01-15T10:30:00Z", "BUY", "BTCUSD", "45000")
        assert format_signal_message(sig) == "SkippALGO\n2024-01-15T10:30:00Z\n\nBUY BTCUSD 45000"

    def test_extras_after_blank_line_in_order(self):
        sig = TradingSignal(
            "T", "ts", "SELL", "ETHUSD", "2500.50",
            extra_fields={"stopLoss": "44000.12340", "note": "tight"},
        )
        lines = format_signal_message(sig).split("\n")
        assert lines[3] == "SELL ETHUSD 2500.5"
        assert lines[4] == ""
        assert lines[5:] == ["STOPLOSS: 44000.1234", "NOTE: tight"]

    def test_text_message(self):
        assert format_text_message("Breakout", "AAPL") == "Breakout\nSymbol: AAPL"


class TestNewsFormats:

    def _item(self, **kw):
        base = dict(
            item_id="n1",
            headline="Altın *rekor* kırdı",
            summary="Ons_altın 2.400 doları aştı",
            published_at=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
        )
        base.update(kw)
        return NewsItem(**base)

    def test_telegram_markdown_escaped_and_local_time(self):
        text = format_news_telegram(self._item())
        assert text.startswith("📰 *Altın \\*rekor\\* kırdı*")
        assert "Ons\\_altın" in text
        # Europe/Istanbul is UTC+3
        assert text.endswith("📅 *Tarih:* 15.01.2024 12:00:00")

    def test_plain_has_no_markdown(self):
        text = format_news_plain(self._item())
        assert text.split("\n")[0] == "📰 Altın *rekor* kırdı"
        assert text.endswith("📅 Tarih: 15.01.2024 12:00:00")

    def test_missing_date_label(self):
        text = format_news_plain(self._item(published_at=None))
        assert text.endswith("Tarih bilgisi yok")

    def test_empty_summary_skipped(self):
        text = format_news_plain(self._item(summary=""))
        assert text.split("\n") == ["📰 Altın *rekor* kırdı", "", "📅 Tarih: 15.01.2024 12:00:00"]
