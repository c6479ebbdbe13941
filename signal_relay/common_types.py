"""Shared record types passed between the relay components.

Every news adapter normalises its raw payload into a ``NewsItem``; every
notifier receives an ``OutboundMessage`` and answers with a
``DeliveryReceipt``; every fan-out answers with a ``FanOutResult``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .notifiers import Notifier


# ── News ────────────────────────────────────────────────────────

@dataclass
class NewsItem:
    """Provider-agnostic news record (one poll cycle lifetime)."""

    item_id: str  # provider-unique stable identifier
    headline: str
    summary: str
    published_at: datetime | None  # tz-aware UTC; None when the source omits it
    category_tags: list[str] = field(default_factory=list)
    body_reference: str = ""  # article body text or URL
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        """Minimal sanity check before the poller accepts the item."""
        return bool(self.item_id)


@dataclass(frozen=True)
class RelayedItemRecord:
    """One persisted "already relayed" marker."""

    item_id: str
    relayed_at: float  # epoch seconds of the first attempt
    headline: str
    category_tags: tuple[str, ...]


# ── Signals ─────────────────────────────────────────────────────

@dataclass
class TradingSignal:
    """Validated webhook payload (one request lifetime)."""

    title: str
    timestamp: str
    action: str  # "BUY" | "SELL"
    symbol: str
    price: str
    extra_fields: dict[str, Any] = field(default_factory=dict)  # submission order


# ── Outbound messages ───────────────────────────────────────────

@dataclass(frozen=True)
class ChartImage:
    """Rendered chart bytes ready to upload."""

    data: bytes
    content_type: str = "image/png"
    filename: str = "chart.png"


@dataclass(frozen=True)
class OutboundMessage:
    """Text plus optional image, with optional per-channel-kind text variants."""

    text: str
    image: ChartImage | None = None
    parse_mode: str | None = None  # Telegram only ("Markdown", "HTML")
    variants: dict[str, str] = field(default_factory=dict)

    def text_for(self, kind: str) -> str:
        return self.variants.get(kind, self.text)


@dataclass(frozen=True)
class DeliveryReceipt:
    delivery_id: str | None = None


# ── Fan-out ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class ChannelTarget:
    """A notifier plus the recipient it should deliver to."""

    notifier: Notifier
    recipient: str

    @property
    def channel_id(self) -> str:
        return f"{self.notifier.name}:{self.recipient}"


@dataclass(frozen=True)
class ChannelOutcome:
    channel_id: str
    success: bool
    delivery_id: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"channel": self.channel_id, "success": self.success}
        if self.delivery_id is not None:
            out["deliveryId"] = self.delivery_id
        if self.error_message is not None:
            out["error"] = self.error_message
        return out


@dataclass
class FanOutResult:
    """Per-target outcomes in target input order."""

    outcomes: list[ChannelOutcome] = field(default_factory=list)

    @property
    def overall_success(self) -> bool:
        return any(o.success for o in self.outcomes)

    @property
    def succeeded(self) -> list[ChannelOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[ChannelOutcome]:
        return [o for o in self.outcomes if not o.success]
