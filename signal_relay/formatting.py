"""Message formatting for trading signals and news items."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from .common_types import NewsItem, TradingSignal

# Numbers as TradingView sends them: "45000", "-0.5", "44000.12340", "12."
_NUMERIC_RE = re.compile(r"^-?\d+\.?\d*$")
_KEY_STRIP_RE = re.compile(r"[^A-Z0-9]")
_MARKDOWN_SPECIAL_RE = re.compile(r"([_*`\[])")

NEWS_TZ = ZoneInfo("Europe/Istanbul")
NO_DATE_LABEL = "Tarih bilgisi yok"


def format_number(value: Any, max_decimals: int = 4) -> str:
    """Render numeric-looking values with at most *max_decimals*, trailing zeros trimmed.

    Anything that does not look like a plain decimal is returned as-is
    (stripped).
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    if not _NUMERIC_RE.match(text):
        return text
    try:
        rendered = f"{float(text):.{max_decimals}f}"
    except ValueError:
        return text
    if "." in rendered:
        rendered = rendered.rstrip("0").rstrip(".")
    return rendered


def format_key(key: str) -> str:
    """``stopLoss`` → ``STOPLOSS``, ``take-profit 1`` → ``TAKEPROFIT1``."""
    return _KEY_STRIP_RE.sub("", str(key).upper())


def format_signal_message(signal: TradingSignal) -> str:
    """Build the outbound signal text.

    Layout::

        <title>
        <timestamp>

        <ACTION> <SYMBOL> <PRICE>

        KEY: value
        ...
    """
    lines = [
        signal.title,
        signal.timestamp,
        "",
        f"{signal.action} {signal.symbol} {format_number(signal.price)}",
    ]
    if signal.extra_fields:
        lines.append("")
        for key, value in signal.extra_fields.items():
            lines.append(f"{format_key(key)}: {format_number(value)}")
    return "\n".join(lines)


def format_text_message(msg: str, symbol: str) -> str:
    """Free-text alert format (``msg`` + ``symbol`` payloads)."""
    return f"{msg}\nSymbol: {symbol}"


# ── News ────────────────────────────────────────────────────────

def _escape_markdown(text: str) -> str:
    return _MARKDOWN_SPECIAL_RE.sub(r"\\\1", text)


def _format_published(published_at: datetime | None) -> str:
    if published_at is None:
        return NO_DATE_LABEL
    return published_at.astimezone(NEWS_TZ).strftime("%d.%m.%Y %H:%M:%S")


def format_news_telegram(item: NewsItem) -> str:
    """Telegram (legacy Markdown) rendering of a news item."""
    headline = _escape_markdown(item.headline or "Haber")
    parts = [f"📰 *{headline}*", ""]
    if item.summary:
        parts += [_escape_markdown(item.summary), ""]
    parts.append(f"📅 *Tarih:* {_format_published(item.published_at)}")
    return "\n".join(parts)


def format_news_plain(item: NewsItem) -> str:
    """Plain-text rendering of a news item (WhatsApp)."""
    parts = [f"📰 {item.headline or 'Haber'}", ""]
    if item.summary:
        parts += [item.summary, ""]
    parts.append(f"📅 Tarih: {_format_published(item.published_at)}")
    return "\n".join(parts)
