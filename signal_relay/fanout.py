"""Multi-channel fan-out with partial-failure semantics.

Sends one message to every target concurrently.  A failing target never
stops the others, nothing is retried, and the aggregate succeeds when at
least one target delivered.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from .common_types import ChannelOutcome, ChannelTarget, FanOutResult, OutboundMessage

logger = logging.getLogger(__name__)


class FanOut:
    """Dispatch an ``OutboundMessage`` to a list of ``ChannelTarget``.

    Parameters
    ----------
    send_timeout_s : float
        Upper bound for a single target's ``send`` call.
    """

    def __init__(self, send_timeout_s: float = 8.0) -> None:
        self.send_timeout_s = send_timeout_s

    async def _attempt(self, target: ChannelTarget, message: OutboundMessage) -> ChannelOutcome:
        channel_id = target.channel_id
        try:
            receipt = await asyncio.wait_for(
                target.notifier.send(target.recipient, message),
                timeout=self.send_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Send to %s timed out after %.1fs", channel_id, self.send_timeout_s)
            return ChannelOutcome(
                channel_id, False, error_message=f"timed out after {self.send_timeout_s:.1f}s",
            )
        except Exception as exc:
            logger.warning("Send to %s failed: %s", channel_id, exc)
            return ChannelOutcome(channel_id, False, error_message=str(exc) or type(exc).__name__)
        return ChannelOutcome(channel_id, True, delivery_id=receipt.delivery_id)

    async def send(self, message: OutboundMessage, targets: Sequence[ChannelTarget]) -> FanOutResult:
        """Attempt every target; outcomes follow *targets* order."""
        if not targets:
            raise ValueError("fan-out needs at least one target")

        outcomes = await asyncio.gather(*(self._attempt(t, message) for t in targets))
        result = FanOutResult(list(outcomes))

        if len(targets) > 1:
            logger.info(
                "Fan-out: %d/%d targets delivered",
                len(result.succeeded), len(result.outcomes),
            )
        return result
