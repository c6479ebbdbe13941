"""Structured error taxonomy for the signal relay.

A small exception hierarchy so callers can catch specific failure modes
(bad webhook payloads, transport failures, news-source outages) without
resorting to bare ``Exception``.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .signal_handler import RelayOutcome


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class RelayError(Exception):
    """Base error for all signal_relay subsystems."""
    pass


class SignalValidationError(RelayError):
    """Inbound webhook payload is missing a field or carries a bad value."""

    def __init__(self, message: str, *, field: str = ""):
        self.field = field
        super().__init__(message)


class DeliveryFailedError(RelayError):
    """Every channel kind failed for one relay attempt."""

    def __init__(self, message: str, *, outcome: RelayOutcome):
        self.outcome = outcome
        super().__init__(message)


class NotifierError(RelayError):
    """A messaging transport rejected or failed to deliver a message."""

    def __init__(self, message: str, *, channel: str = "", status_code: int | None = None):
        self.channel = channel
        self.status_code = status_code
        super().__init__(message)


class ChartUnavailableError(RelayError):
    """The chart provider could not render an image."""
    pass


class NewsSourceError(RelayError):
    """The news API returned invalid data or could not be reached."""

    def __init__(self, message: str, *, tag: str = ""):
        self.tag = tag
        super().__init__(message)


class ConfigError(RelayError):
    """Invalid configuration value."""
    pass
