"""Trading-signal relay: validate → chart → format → fan out per channel kind.

Each channel kind (telegram, whatsapp) is fanned out on its own and
reported on its own; the relay succeeds when any kind delivered.  A
missing or failing chart never fails the relay.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from .charts import ChartProvider
from .common_types import ChannelTarget, ChartImage, FanOutResult, OutboundMessage, TradingSignal
from .error_taxonomy import DeliveryFailedError, SignalValidationError
from .fanout import FanOut
from .formatting import format_signal_message, format_text_message
from .notifiers import Notifier

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("BUY", "SELL")

# field -> accepted aliases, first match wins
_CORE_FIELDS: dict[str, tuple[str, ...]] = {
    "title": ("title",),
    "action": ("action", "side"),
    "symbol": ("symbol", "ticker"),
    "price": ("price", "close"),
    "timestamp": ("datetime", "timestamp"),
}

CHART_SIZE = {"width": 800, "height": 600}

# Recipient overrides for every channel kind, configured or not.
CONTROL_FIELDS = ("chatId", "chatIds", "groupId", "groupIds")


@dataclass(frozen=True)
class ChannelKind:
    """One channel kind: its notifier, default recipients and override fields."""

    name: str
    notifier: Notifier
    default_recipients: tuple[str, ...] = ()
    override_fields: tuple[str, ...] = ()


@dataclass
class RelayOutcome:
    success: bool
    chart_attached: bool
    kinds: dict[str, FanOutResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)  # kind -> reason it was not attempted
    timestamp: str = ""

    @property
    def results(self) -> dict[str, bool]:
        out = {kind: False for kind in self.errors}
        out.update({kind: res.overall_success for kind, res in self.kinds.items()})
        return out

    def to_dict(self) -> dict[str, Any]:
        channels: dict[str, Any] = {
            kind: [o.to_dict() for o in res.outcomes] for kind, res in self.kinds.items()
        }
        for kind, reason in self.errors.items():
            channels[kind] = [{"channel": kind, "success": False, "error": reason}]
        return {
            "success": self.success,
            "chartIncluded": self.chart_attached,
            "results": self.results,
            "channels": channels,
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _first_present(payload: Mapping[str, Any], names: Sequence[str]) -> Any:
    for name in names:
        value = payload.get(name)
        if not _is_blank(value):
            return value
    return None


def parse_recipients(value: Any) -> list[str]:
    """Accept ``"a"``, ``"a, b"`` or ``["a", "b"]``; drop blanks."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(v) for v in value if v is not None]
    else:
        parts = str(value).split(",")
    return [p.strip() for p in parts if p.strip()]


def validate_signal(payload: Any, control_fields: Sequence[str] = ()) -> TradingSignal:
    """Turn a raw webhook payload into a :class:`TradingSignal`.

    ``CONTROL_FIELDS`` and any further *control_fields* (recipient
    overrides) are excluded from the rendered extra fields.
    """
    if not isinstance(payload, Mapping):
        raise SignalValidationError("Payload must be a JSON object", field="body")

    values: dict[str, Any] = {}
    for name in ("title", "action", "symbol", "price"):
        value = _first_present(payload, _CORE_FIELDS[name])
        if value is None:
            raise SignalValidationError(f"Missing required field: {name}", field=name)
        values[name] = str(value).strip()

    action = values["action"].upper()
    if action not in VALID_ACTIONS:
        raise SignalValidationError("Action must be either BUY or SELL", field="action")

    timestamp = _first_present(payload, _CORE_FIELDS["timestamp"])

    excluded = {alias.lower() for aliases in _CORE_FIELDS.values() for alias in aliases}
    excluded.update(f.lower() for f in (*CONTROL_FIELDS, *control_fields))
    extra = {
        key: value
        for key, value in payload.items()
        if str(key).lower() not in excluded and not _is_blank(value)
    }

    return TradingSignal(
        title=values["title"],
        timestamp=str(timestamp).strip() if timestamp is not None else _utc_now_iso(),
        action=action,
        symbol=values["symbol"],
        price=values["price"],
        extra_fields=extra,
    )


def is_text_payload(payload: Any) -> bool:
    """``{"msg": …, "symbol": …}`` free-text alerts."""
    return (
        isinstance(payload, Mapping)
        and not _is_blank(payload.get("msg"))
        and not _is_blank(payload.get("symbol"))
    )


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------


class SignalRelay:
    """Relay inbound signals to every configured channel kind.

    Parameters
    ----------
    channels : sequence of ChannelKind
        Configured channel kinds, in reporting order.
    fanout : FanOut
    chart_provider : ChartProvider, optional
        ``None`` disables chart images.
    chart_timeout_s : float
        Upper bound for one chart render; a timeout means "no image".
    disabled_kinds : sequence of str
        Known kinds without credentials; reported as failed, never attempted.
    """

    def __init__(
        self,
        channels: Sequence[ChannelKind],
        fanout: FanOut,
        chart_provider: ChartProvider | None = None,
        chart_timeout_s: float = 30.0,
        disabled_kinds: Sequence[str] = (),
    ) -> None:
        self.channels = list(channels)
        self.fanout = fanout
        self.chart_provider = chart_provider
        self.chart_timeout_s = chart_timeout_s
        self.disabled_kinds = [k for k in disabled_kinds if k not in {c.name for c in self.channels}]

    @property
    def control_fields(self) -> tuple[str, ...]:
        return tuple(f for kind in self.channels for f in kind.override_fields)

    def resolve_targets(self, payload: Mapping[str, Any]) -> tuple[dict[str, list[ChannelTarget]], dict[str, str]]:
        """Per-kind targets; a request override beats the configured defaults."""
        targets: dict[str, list[ChannelTarget]] = {}
        missing: dict[str, str] = {name: "channel not configured" for name in self.disabled_kinds}
        for kind in self.channels:
            override: list[str] = []
            for fname in kind.override_fields:
                override = parse_recipients(payload.get(fname))
                if override:
                    break
            recipients = override or list(kind.default_recipients)
            if recipients:
                targets[kind.name] = [ChannelTarget(kind.notifier, r) for r in recipients]
            else:
                missing[kind.name] = "no recipients configured"

        if not targets:
            raise SignalValidationError(
                "No recipients configured or provided for any channel", field="recipients",
            )
        return targets, missing

    async def acquire_chart(self, symbol: str, options: dict[str, Any]) -> ChartImage | None:
        """Best-effort chart render; every failure degrades to ``None``."""
        if self.chart_provider is None:
            return None
        try:
            image = await asyncio.wait_for(
                self.chart_provider.get(symbol, options), timeout=self.chart_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Chart for %s timed out after %.0fs, proceeding without chart", symbol, self.chart_timeout_s)
            return None
        except Exception as exc:
            logger.warning("Failed to generate chart for %s, proceeding without chart: %s", symbol, exc)
            return None
        if image is None or not image.data:
            return None
        return image

    async def _relay(
        self,
        message: OutboundMessage,
        targets: dict[str, list[ChannelTarget]],
        missing: dict[str, str],
    ) -> RelayOutcome:
        kinds = list(targets)
        results = await asyncio.gather(*(self.fanout.send(message, targets[k]) for k in kinds))
        by_kind = dict(zip(kinds, results))

        outcome = RelayOutcome(
            success=any(r.overall_success for r in by_kind.values()),
            chart_attached=message.image is not None,
            kinds=by_kind,
            errors=missing,
            timestamp=_utc_now_iso(),
        )
        for res in by_kind.values():
            for failed in res.failed:
                logger.error("Failed to send to %s: %s", failed.channel_id, failed.error_message)
        if not outcome.success:
            raise DeliveryFailedError("Failed to deliver to any channel", outcome=outcome)
        return outcome

    async def handle_signal(self, payload: Any) -> RelayOutcome:
        """Validate, chart, format and relay one trading signal."""
        signal = validate_signal(payload, self.control_fields)
        targets, missing = self.resolve_targets(payload)

        options = dict(CHART_SIZE, action=signal.action, price=signal.price, timestamp=signal.timestamp)
        image = await self.acquire_chart(signal.symbol, options)
        message = OutboundMessage(text=format_signal_message(signal), image=image)

        outcome = await self._relay(message, targets, missing)
        logger.info(
            "Trading signal relayed: %s %s %s chart=%s results=%s",
            signal.action, signal.symbol, signal.price, outcome.chart_attached, outcome.results,
        )
        return outcome

    async def handle_text_message(self, payload: Mapping[str, Any]) -> RelayOutcome:
        """Relay a free-text ``msg`` + ``symbol`` alert."""
        if not is_text_payload(payload):
            raise SignalValidationError("Missing required fields: msg, symbol", field="msg")
        msg = str(payload["msg"]).strip()
        symbol = str(payload["symbol"]).strip()
        targets, missing = self.resolve_targets(payload)

        image = await self.acquire_chart(symbol, dict(CHART_SIZE))
        message = OutboundMessage(text=format_text_message(msg, symbol), image=image)

        outcome = await self._relay(message, targets, missing)
        logger.info("Text message relayed for %s chart=%s results=%s", symbol, outcome.chart_attached, outcome.results)
        return outcome

    async def handle(self, payload: Any) -> RelayOutcome:
        """Dispatch on payload shape (free-text alert or trading signal)."""
        if is_text_payload(payload):
            return await self.handle_text_message(payload)
        return await self.handle_signal(payload)

    def health(self) -> dict[str, bool]:
        status = {name: False for name in self.disabled_kinds}
        status.update({kind.name: kind.notifier.is_configured() for kind in self.channels})
        status["chart"] = self.chart_provider is not None and self.chart_provider.is_configured()
        return status
