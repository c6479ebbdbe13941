"""News poller: fetch → filter → relay → mark, on a fixed schedule.

One cycle walks the configured tags in order.  Items older than the
retention window are dropped without being marked; items already in the
dedup store are skipped; everything else is fanned out to the news
targets, one candidate at a time with a short pause in between.

The loop runs as a single asyncio task so cycles never overlap.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence

from .common_types import ChannelTarget, NewsItem, OutboundMessage
from .fanout import FanOut
from .formatting import format_news_plain, format_news_telegram
from .ingest_news import NewsSource
from .store_sqlite import SqliteStore

logger = logging.getLogger(__name__)

_SECRET_RE = re.compile(r"(apikey|token)=[^&\s]+", re.IGNORECASE)


@dataclass
class PollSummary:
    """Counters for one ``poll_once`` cycle."""

    relayed: int = 0  # candidates attempted
    delivered: int = 0  # candidates with >= 1 channel success
    skipped_stale: int = 0
    skipped_seen: int = 0
    skipped_invalid: int = 0
    failed_tags: list[str] = field(default_factory=list)
    undelivered: list[str] = field(default_factory=list)

    def describe(self) -> str:
        text = (
            f"{self.relayed} relayed ({self.delivered} delivered), "
            f"{self.skipped_seen} seen, {self.skipped_stale} stale"
        )
        if self.failed_tags:
            text += f", failed tags: {','.join(self.failed_tags)}"
        return text


class NewsPoller:
    """Relay fresh news items from a ``NewsSource`` to the news targets.

    Parameters
    ----------
    source : NewsSource
    store : SqliteStore
        Dedup store shared with nothing else; reached via ``asyncio.to_thread``.
    fanout : FanOut
    targets : sequence of ChannelTarget
        News recipients across all channel kinds.  Empty → every cycle is
        a logged no-op.
    tags : sequence of str
        Category tags, polled in this order.
    mark_on_success : bool
        Only mark items that reached at least one channel.  Undelivered
        items are retried until they leave the retention window.
    clock : callable
        Returns "now" as a tz-aware datetime (tests pin it).
    """

    def __init__(
        self,
        source: NewsSource,
        store: SqliteStore,
        fanout: FanOut,
        targets: Sequence[ChannelTarget],
        *,
        tags: Sequence[str] = ("CURRENCY", "GOLD", "CRYPTO", "PRODUCT"),
        locale: str = "tr",
        batch_size: int = 10,
        retention_s: float = 2 * 86400,
        send_delay_s: float = 1.0,
        mark_on_success: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.source = source
        self.store = store
        self.fanout = fanout
        self.targets = list(targets)
        self.tags = list(tags)
        self.locale = locale
        self.batch_size = batch_size
        self.retention_s = retention_s
        self.send_delay_s = send_delay_s
        self.mark_on_success = mark_on_success
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Observable status (reported by /health)
        self.poll_count: int = 0
        self.last_poll_ts: float = 0.0
        self.last_poll_status: str = "not run yet"
        self.last_poll_error: str = ""
        self.total_relayed: int = 0

    # ── Filtering ───────────────────────────────────────────────

    async def _select(self, items: Sequence[NewsItem], summary: PollSummary) -> list[NewsItem]:
        cutoff = self._clock() - timedelta(seconds=self.retention_s)
        candidates: list[NewsItem] = []
        for item in items:
            if not item.is_valid:
                logger.warning("News item without id skipped: %r", item.headline[:80])
                summary.skipped_invalid += 1
                continue
            if item.published_at is None:
                logger.info("News %s has no publish date, relaying without date filter", item.item_id)
            elif item.published_at < cutoff:
                logger.debug("News %s older than retention window, skipped", item.item_id)
                summary.skipped_stale += 1
                continue
            if await asyncio.to_thread(self.store.has, item.item_id):
                summary.skipped_seen += 1
                continue
            candidates.append(item)
        return candidates

    # ── Relay ───────────────────────────────────────────────────

    @staticmethod
    def build_message(item: NewsItem) -> OutboundMessage:
        plain = format_news_plain(item)
        return OutboundMessage(
            text=plain,
            parse_mode="Markdown",
            variants={"telegram": format_news_telegram(item), "whatsapp": plain},
        )

    async def _relay(self, item: NewsItem, summary: PollSummary) -> None:
        result = await self.fanout.send(self.build_message(item), self.targets)
        summary.relayed += 1
        for failed in result.failed:
            logger.error("News %s not delivered to %s: %s", item.item_id, failed.channel_id, failed.error_message)

        if result.overall_success:
            summary.delivered += 1
            logger.info("News relayed: %s (%d/%d channels)", item.item_id, len(result.succeeded), len(result.outcomes))
        else:
            summary.undelivered.append(item.item_id)
            logger.error("News %s failed on every channel", item.item_id)

        if result.overall_success or not self.mark_on_success:
            await asyncio.to_thread(self.store.mark_sent, item.item_id, item.headline, item.category_tags)

    async def poll_once(self) -> PollSummary:
        """Run one fetch → filter → relay → mark cycle over every tag."""
        summary = PollSummary()
        if not self.targets:
            logger.info("No news recipients configured, skipping news check")
            return summary

        for tag in self.tags:
            try:
                items = await self.source.fetch_latest(self.locale, tag, self.batch_size)
            except Exception as exc:
                logger.error("News fetch for %s failed: %s", tag, exc)
                summary.failed_tags.append(tag)
                continue

            candidates = await self._select(items, summary)
            for i, item in enumerate(candidates):
                if i:
                    await asyncio.sleep(self.send_delay_s)
                await self._relay(item, summary)

        logger.info("News check complete: %s", summary.describe())
        return summary

    # ── Schedule ────────────────────────────────────────────────

    async def run_forever(
        self,
        interval_s: float = 1800.0,
        stop_event: asyncio.Event | None = None,
        startup_delay_s: float = 2.0,
    ) -> None:
        """One cycle after *startup_delay_s*, then one every *interval_s*.

        Returns once *stop_event* is set; cancellation also stops the loop.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("News poller started (interval %.0fs, tags %s)", interval_s, ",".join(self.tags))

        delay = startup_delay_s
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            delay = interval_s

            try:
                summary = await self.poll_once()
            except Exception as exc:
                safe = _SECRET_RE.sub(r"\1=***", str(exc))
                logger.exception("News check failed: %s", safe)
                self.last_poll_error = safe
                self.last_poll_status = "ERROR"
                self.last_poll_ts = time.time()
                continue

            self.poll_count += 1
            self.last_poll_ts = time.time()
            self.total_relayed += summary.relayed
            self.last_poll_error = ""
            self.last_poll_status = summary.describe()

        logger.info("News poller stopped")

    def status(self) -> dict[str, object]:
        return {
            "pollCount": self.poll_count,
            "lastPollTs": self.last_poll_ts,
            "lastPollStatus": self.last_poll_status,
            "lastPollError": self.last_poll_error,
            "totalRelayed": self.total_relayed,
        }
