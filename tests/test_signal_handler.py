"""Tests for signal_relay.signal_handler: validate, chart, format, fan out."""

from __future__ import annotations

import asyncio

import pytest

from signal_relay.charts import ChartProvider
from signal_relay.common_types import ChartImage, DeliveryReceipt
from signal_relay.error_taxonomy import ChartUnavailableError, DeliveryFailedError, NotifierError, SignalValidationError
from signal_relay.fanout import FanOut
from signal_relay.notifiers import Notifier
from signal_relay.signal_handler import ChannelKind, SignalRelay, parse_recipients, validate_signal


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class _RecordingNotifier(Notifier):

    def __init__(self, name: str, fail=()):
        self.name = name
        self.fail = set(fail)
        self.sent: list[tuple[str, str, bool]] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, recipient, message):
        if recipient in self.fail or "*" in self.fail:
            raise NotifierError("down", channel=self.name)
        self.sent.append((recipient, message.text, message.image is not None))
        return DeliveryReceipt(f"{self.name}-{recipient}")


class _FakeChart(ChartProvider):

    def __init__(self, mode: str = "ok"):
        self.mode = mode
        self.calls: list[tuple[str, dict]] = []

    def is_configured(self) -> bool:
        return True

    async def get(self, symbol, options=None):
        self.calls.append((symbol, options))
        if self.mode == "error":
            raise ChartUnavailableError("render failed")
        if self.mode == "hang":
            await asyncio.sleep(10)
        if self.mode == "none":
            return None
        return ChartImage(data=b"PNG")


def _relay(tg_fail=(), wa_fail=(), chart=None, tg_default=("-100",), wa_default=("g1@g.us",)):
    tg = _RecordingNotifier("telegram", tg_fail)
    wa = _RecordingNotifier("whatsapp", wa_fail)
    relay = SignalRelay(
        [
            ChannelKind("telegram", tg, tuple(tg_default), ("chatId", "chatIds")),
            ChannelKind("whatsapp", wa, tuple(wa_default), ("groupId", "groupIds")),
        ],
        FanOut(send_timeout_s=1.0),
        chart_provider=chart,
        chart_timeout_s=0.1,
    )
    return relay, tg, wa


BASE = {
    "title": "SkippALGO",
    "datetime": "2024-01-15T10:30:00Z",
    "action": "buy",
    "symbol": "BTCUSD",
    "price": "45000",
}


def _run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateSignal:

    def test_action_normalised(self):
        sig = validate_signal(BASE)
        assert sig.action == "BUY"
        assert sig.timestamp == "2024-01-15T10:30:00Z"

    def test_hold_rejected(self):
        with pytest.raises(SignalValidationError, match="BUY or SELL") as exc_info:
            validate_signal({**BASE, "action": "HOLD"})
        assert exc_info.value.field == "action"

    @pytest.mark.parametrize("missing", ["title", "action", "symbol", "price"])
    def test_missing_field_rejected(self, missing):
        payload = {k: v for k, v in BASE.items() if k != missing}
        with pytest.raises(SignalValidationError) as exc_info:
            validate_signal(payload)
        assert exc_info.value.field == missing

    def test_blank_price_rejected(self):
        with pytest.raises(SignalValidationError):
            validate_signal({**BASE, "price": "  "})

    def test_aliases_accepted(self):
        sig = validate_signal({"title": "T", "side": "sell", "ticker": "ETHUSD", "close": 2500})
        assert (sig.action, sig.symbol, sig.price) == ("SELL", "ETHUSD", "2500")

    def test_default_timestamp_is_utc_iso(self):
        sig = validate_signal({k: v for k, v in BASE.items() if k != "datetime"})
        assert sig.timestamp.endswith("Z")
        assert "T" in sig.timestamp

    def test_non_object_rejected(self):
        with pytest.raises(SignalValidationError):
            validate_signal(["not", "a", "dict"])

    def test_extras_exclude_core_and_controls(self):
        payload = {**BASE, "stopLoss": "44000.12340", "empty": "", "none": None, "chatId": "-5", "Ticker": "X"}
        sig = validate_signal(payload, ("chatId",))
        assert sig.extra_fields == {"stopLoss": "44000.12340"}


def test_parse_recipients():
    assert parse_recipients("a, b,,") == ["a", "b"]
    assert parse_recipients(["a", " ", 5]) == ["a", "5"]
    assert parse_recipients(None) == []


# ---------------------------------------------------------------------------
# Relay
# ---------------------------------------------------------------------------


class TestHandleSignal:

    def test_buy_example_message(self):
        relay, tg, wa = _relay()
        outcome = _run(relay.handle_signal(BASE))

        assert outcome.success
        assert outcome.results == {"telegram": True, "whatsapp": True}
        assert tg.sent[0][1] == "SkippALGO\n2024-01-15T10:30:00Z\n\nBUY BTCUSD 45000"
        assert wa.sent[0][1] == tg.sent[0][1]

    def test_extra_field_rendered(self):
        relay, tg, _ = _relay()
        _run(relay.handle_signal({**BASE, "stopLoss": "44000.12340"}))
        assert tg.sent[0][1].endswith("\n\nSTOPLOSS: 44000.1234")

    def test_partial_failure_reported_not_raised(self):
        relay, tg, wa = _relay(wa_fail={"*"})
        outcome = _run(relay.handle_signal(BASE))
        assert outcome.success
        assert outcome.results == {"telegram": True, "whatsapp": False}
        assert outcome.to_dict()["channels"]["whatsapp"][0]["error"] == "down"

    def test_total_failure_raises_with_outcome(self):
        relay, _, _ = _relay(tg_fail={"*"}, wa_fail={"*"})
        with pytest.raises(DeliveryFailedError) as exc_info:
            _run(relay.handle_signal(BASE))
        assert exc_info.value.outcome.results == {"telegram": False, "whatsapp": False}

    def test_override_recipients(self):
        relay, tg, wa = _relay()
        _run(relay.handle_signal({**BASE, "chatIds": "-1,-2", "groupId": ["x@g.us"]}))
        assert sorted(r for r, _, _ in tg.sent) == ["-1", "-2"]
        assert [r for r, _, _ in wa.sent] == ["x@g.us"]
        assert "CHATIDS" not in tg.sent[0][1]

    def test_kind_without_recipients_reported_failed(self):
        relay, tg, wa = _relay(wa_default=())
        outcome = _run(relay.handle_signal(BASE))
        assert outcome.success
        assert outcome.results == {"telegram": True, "whatsapp": False}
        assert outcome.errors["whatsapp"] == "no recipients configured"
        assert wa.sent == []

    def test_no_recipients_anywhere_is_validation_error(self):
        relay, _, _ = _relay(tg_default=(), wa_default=())
        with pytest.raises(SignalValidationError) as exc_info:
            _run(relay.handle_signal(BASE))
        assert exc_info.value.field == "recipients"


class TestChartIsolation:

    def test_chart_attached_and_options(self):
        chart = _FakeChart()
        relay, tg, _ = _relay(chart=chart)
        outcome = _run(relay.handle_signal(BASE))
        assert outcome.chart_attached
        assert tg.sent[0][2] is True
        symbol, options = chart.calls[0]
        assert symbol == "BTCUSD"
        assert options["width"] == 800 and options["height"] == 600
        assert options["action"] == "BUY" and options["price"] == "45000"

    @pytest.mark.parametrize("mode", ["error", "hang", "none"])
    def test_chart_failure_sends_text_only(self, mode):
        relay, tg, wa = _relay(chart=_FakeChart(mode))
        outcome = _run(relay.handle_signal(BASE))
        assert outcome.success
        assert not outcome.chart_attached
        assert tg.sent[0][2] is False and wa.sent[0][2] is False

    def test_no_provider(self):
        relay, tg, _ = _relay(chart=None)
        assert not _run(relay.handle_signal(BASE)).chart_attached


class TestTextMessage:

    def test_msg_symbol_payload(self):
        relay, tg, _ = _relay()
        outcome = _run(relay.handle({"msg": "Breakout above range", "symbol": "AAPL"}))
        assert outcome.success
        assert tg.sent[0][1] == "Breakout above range\nSymbol: AAPL"

    def test_missing_symbol_falls_through_to_signal_validation(self):
        relay, _, _ = _relay()
        with pytest.raises(SignalValidationError):
            _run(relay.handle({"msg": "only text"}))

    def test_health(self):
        relay, _, _ = _relay(chart=_FakeChart())
        assert relay.health() == {"telegram": True, "whatsapp": True, "chart": True}


class TestDisabledKinds:

    def _telegram_only(self):
        tg = _RecordingNotifier("telegram")
        relay = SignalRelay(
            [ChannelKind("telegram", tg, ("-100",), ("chatId", "chatIds"))],
            FanOut(send_timeout_s=1.0),
            disabled_kinds=["whatsapp"],
        )
        return relay, tg

    def test_override_for_disabled_kind_not_rendered(self):
        relay, tg = self._telegram_only()
        _run(relay.handle_signal({**BASE, "groupId": "12036@g.us", "groupIds": ["a@g.us"]}))
        assert tg.sent[0][1] == "SkippALGO\n2024-01-15T10:30:00Z\n\nBUY BTCUSD 45000"

    def test_control_fields_excluded_without_explicit_list(self):
        sig = validate_signal({**BASE, "chatIds": "-1", "groupId": "x@g.us"})
        assert sig.extra_fields == {}

    def test_disabled_kind_reported_false(self):
        relay, _ = self._telegram_only()
        outcome = _run(relay.handle_signal(BASE))
        assert outcome.results == {"telegram": True, "whatsapp": False}
        assert outcome.to_dict()["channels"]["whatsapp"][0]["error"] == "channel not configured"

    def test_health_lists_disabled_kind(self):
        relay, _ = self._telegram_only()
        assert relay.health() == {"whatsapp": False, "telegram": True, "chart": False}

    def test_only_disabled_kinds_is_validation_error(self):
        relay = SignalRelay([], FanOut(send_timeout_s=1.0), disabled_kinds=["telegram", "whatsapp"])
        with pytest.raises(SignalValidationError) as exc_info:
            _run(relay.handle_signal(BASE))
        assert exc_info.value.field == "recipients"
