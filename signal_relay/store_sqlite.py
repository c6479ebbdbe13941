"""SQLite-backed dedup store: one row per news item ever relayed.

Uses WAL mode + NORMAL synchronous for maximum write throughput while
retaining crash safety.

Reads fail open (an unreadable store means "not yet sent") and writes are
best-effort: a relay that already went out is never failed because the
marker could not be written.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from typing import Iterable, Optional

from .common_types import RelayedItemRecord

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS relayed (
  item_id TEXT PRIMARY KEY,
  relayed_at REAL NOT NULL,
  headline TEXT NOT NULL DEFAULT '',
  category_tags TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_relayed_at ON relayed(relayed_at);
"""


class SqliteStore:
    """Dedup store keyed by news ``item_id``.

    The connection is shared across threads (the poller reaches it through
    ``asyncio.to_thread``); a lock serialises statement execution.
    """

    def __init__(self, path: str) -> None:
        self.conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        self._lock = threading.Lock()
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute("PRAGMA synchronous=NORMAL;")
        self.conn.execute("PRAGMA busy_timeout=5000;")
        self.conn.executescript(SCHEMA)

    # ── Dedup ───────────────────────────────────────────────────

    def has(self, item_id: str) -> bool:
        """Return True iff *item_id* was already relayed.

        Any database error is logged and answered with False.
        """
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT 1 FROM relayed WHERE item_id=?", (item_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Dedup read failed for %s (treating as not sent): %s", item_id, exc)
            return False
        return row is not None

    def mark_sent(self, item_id: str, headline: str, category_tags: Iterable[str]) -> None:
        """Upsert the relayed marker for *item_id*; errors are logged, not raised.

        Re-marking keeps the original ``relayed_at``.
        """
        tags_json = json.dumps(list(category_tags), ensure_ascii=False)
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO relayed(item_id, relayed_at, headline, category_tags) VALUES(?,?,?,?) "
                    "ON CONFLICT(item_id) DO UPDATE SET headline=excluded.headline, "
                    "category_tags=excluded.category_tags",
                    (item_id, time.time(), headline or "", tags_json),
                )
        except sqlite3.Error as exc:
            logger.warning("Dedup write failed for %s (item may be re-sent): %s", item_id, exc)

    # ── Diagnostics ─────────────────────────────────────────────

    def get(self, item_id: str) -> Optional[RelayedItemRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT item_id, relayed_at, headline, category_tags FROM relayed WHERE item_id=?",
                (item_id,),
            ).fetchone()
        if row is None:
            return None
        try:
            tags = tuple(json.loads(row[3]))
        except (TypeError, ValueError):
            tags = ()
        return RelayedItemRecord(item_id=row[0], relayed_at=row[1], headline=row[2], category_tags=tags)

    def count(self) -> int:
        with self._lock:
            row = self.conn.execute("SELECT COUNT(*) FROM relayed").fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        with self._lock:
            self.conn.close()
