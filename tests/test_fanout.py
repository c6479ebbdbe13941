"""Tests for signal_relay.fanout: partial-failure fan-out."""

from __future__ import annotations

import asyncio

import pytest

from signal_relay.common_types import ChannelTarget, DeliveryReceipt, OutboundMessage
from signal_relay.error_taxonomy import NotifierError
from signal_relay.fanout import FanOut
from signal_relay.notifiers import Notifier


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class _FakeNotifier(Notifier):
    """Records sends; recipients listed in *fail* raise, in *hang* never return."""

    def __init__(self, name: str = "telegram", fail=(), hang=(), error: Exception | None = None):
        self.name = name
        self.fail = set(fail)
        self.hang = set(hang)
        self.error = error
        self.sent: list[tuple[str, str]] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, recipient, message):
        if recipient in self.hang:
            await asyncio.sleep(10)
        if recipient in self.fail:
            raise self.error or NotifierError(f"boom {recipient}", channel=self.name)
        self.sent.append((recipient, message.text_for(self.name)))
        return DeliveryReceipt(f"id-{recipient}")


MSG = OutboundMessage(text="hello")


def _run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestFanOut:

    def test_empty_targets_rejected(self):
        with pytest.raises(ValueError):
            _run(FanOut().send(MSG, []))

    def test_all_succeed(self):
        n = _FakeNotifier()
        result = _run(FanOut().send(MSG, [ChannelTarget(n, "a"), ChannelTarget(n, "b")]))
        assert result.overall_success
        assert [o.delivery_id for o in result.outcomes] == ["id-a", "id-b"]
        assert sorted(r for r, _ in n.sent) == ["a", "b"]

    def test_one_failure_does_not_block_others(self):
        n = _FakeNotifier(fail={"a"})
        result = _run(FanOut().send(MSG, [ChannelTarget(n, "a"), ChannelTarget(n, "b"), ChannelTarget(n, "c")]))
        assert result.overall_success
        assert [o.success for o in result.outcomes] == [False, True, True]
        assert result.outcomes[0].channel_id == "telegram:a"
        assert "boom a" in result.outcomes[0].error_message
        assert [r for r, _ in n.sent] == ["b", "c"]

    def test_all_fail(self):
        n = _FakeNotifier(fail={"a", "b"})
        result = _run(FanOut().send(MSG, [ChannelTarget(n, "a"), ChannelTarget(n, "b")]))
        assert not result.overall_success
        assert len(result.failed) == 2

    def test_single_target_degrades_to_its_result(self):
        n = _FakeNotifier(fail={"a"})
        result = _run(FanOut().send(MSG, [ChannelTarget(n, "a")]))
        assert not result.overall_success
        assert len(result.outcomes) == 1

    def test_unexpected_exception_captured(self):
        n = _FakeNotifier(fail={"a"}, error=RuntimeError())
        result = _run(FanOut().send(MSG, [ChannelTarget(n, "a"), ChannelTarget(n, "b")]))
        assert result.outcomes[0].error_message == "RuntimeError"
        assert result.outcomes[1].success

    def test_hanging_target_times_out_without_blocking(self):
        n = _FakeNotifier(hang={"slow"})
        result = _run(FanOut(send_timeout_s=0.05).send(
            MSG, [ChannelTarget(n, "slow"), ChannelTarget(n, "fast")],
        ))
        assert [o.success for o in result.outcomes] == [False, True]
        assert "timed out" in result.outcomes[0].error_message

    def test_mixed_channel_kinds(self):
        tg = _FakeNotifier("telegram", fail={"x"})
        wa = _FakeNotifier("whatsapp")
        result = _run(FanOut().send(MSG, [ChannelTarget(tg, "x"), ChannelTarget(wa, "y")]))
        assert [o.channel_id for o in result.outcomes] == ["telegram:x", "whatsapp:y"]
        assert [o.to_dict()["success"] for o in result.outcomes] == [False, True]
