"""Normalisation: raw news payloads → NewsItem.

Schema-tolerant on purpose: several field names are tried so that minor
API changes don't silently drop data.  The primary names match the Foreks
news API:

    _id / id, header, summary, content, publishDate (epoch ms), tag (list)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from dateutil import parser as dtparser

from .common_types import NewsItem

logger = logging.getLogger(__name__)

# Values above this are epoch milliseconds (1e11 s is year 5138).
_EPOCH_MS_THRESHOLD = 1e11

# Shortest sensible date string: "YYYYMMDD".
_MIN_DATE_LEN = 8

# Digit-only strings shorter than this are compact dates, not epoch values.
_MIN_EPOCH_DIGITS = 10


def parse_published(value: Any) -> datetime | None:
    """Epoch seconds/milliseconds or a date string → tz-aware UTC datetime.

    Returns ``None`` for missing or unparseable values.  Naive strings are
    taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None

    digits = value.strip() if isinstance(value, str) else ""
    if isinstance(value, (int, float)) or (digits.isdigit() and len(digits) >= _MIN_EPOCH_DIGITS):
        num = float(value)
        if num <= 0:
            return None
        if num > _EPOCH_MS_THRESHOLD:
            num /= 1000.0
        try:
            return datetime.fromtimestamp(num, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Out-of-range publish timestamp %r", value)
            return None

    text = str(value).strip()
    if len(text) < _MIN_DATE_LEN:
        logger.warning("Date string too short (%d chars): %r", len(text), text)
        return None
    try:
        dt = dtparser.parse(text)
    except (ValueError, OverflowError):
        logger.warning("Unparseable publish date %r", text[:80])
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _extract_tags(it: Dict[str, Any]) -> List[str]:
    tags = it.get("tag") or it.get("tags") or []
    if isinstance(tags, str):
        return [t.strip().upper() for t in tags.split(",") if t.strip()]
    if isinstance(tags, list):
        out: List[str] = []
        for t in tags:
            if isinstance(t, dict):
                t = t.get("name") or t.get("code") or ""
            if isinstance(t, str) and t.strip():
                out.append(t.strip().upper())
        return out
    return []


def normalize_foreks(it: Dict[str, Any]) -> NewsItem:
    """Normalise one Foreks news payload.

    A missing id yields an item with an empty ``item_id``; the poller
    skips those (``NewsItem.is_valid``).
    """
    item_id = it.get("_id") or it.get("id") or ""
    headline = (it.get("header") or it.get("title") or it.get("headline") or "").strip()
    summary = (it.get("summary") or it.get("teaser") or "").strip()
    body = it.get("content") or it.get("url") or ""

    raw_date = it.get("publishDate", it.get("publishedDate"))
    published = parse_published(raw_date)
    if published is None and raw_date not in (None, ""):
        logger.warning("News %s has an invalid publishDate %r", item_id or "<no id>", raw_date)

    return NewsItem(
        item_id=str(item_id).strip(),
        headline=headline,
        summary=summary,
        published_at=published,
        category_tags=_extract_tags(it),
        body_reference=body if isinstance(body, str) else "",
        raw=it,
    )
