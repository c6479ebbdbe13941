"""Secret redaction for log output.

httpx logs every request URL at INFO, and the Telegram Bot API carries the
bot token in the URL path, so the root logger gets a redacting filter at
startup.

Provides:
  - ``redact_secrets(msg)``          : strip sensitive patterns from a string
  - ``LogRedactionFilter``           : ``logging.Filter`` that auto-redacts
  - ``apply_log_redaction(logger)``  : attach the filter to all handlers
  - ``apply_global_log_redaction()`` : attach the filter to the root logger

Usage::

    from signal_relay.log_redaction import apply_global_log_redaction
    apply_global_log_redaction()  # call once at startup
"""
from __future__ import annotations

import logging
import re

# ---------------------------------------------------------------------------
# Sensitive patterns (name, compiled regex)
# ---------------------------------------------------------------------------
_SENSITIVE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # Telegram bot token inside the API path: /bot123456:ABC-def_ghi/
    ("telegram_token", re.compile(r"(?<=/bot)\d+:[A-Za-z0-9_-]+")),
    # Bare Telegram bot token
    ("telegram_token_bare", re.compile(r"\b\d{6,}:[A-Za-z0-9_-]{30,}\b")),
    # API keys / tokens / secrets (key=value style)
    (
        "api_token",
        re.compile(
            r"(?:api[_-]?key|token|secret|password|sessionid(?:_sign)?)\s*[:=]\s*[\"']?([^\s'\"&]+)[\"']?",
            re.IGNORECASE,
        ),
    ),
    # Authorization / Bearer headers
    (
        "auth_header",
        re.compile(r"Authorization\s*[:=]\s*(?:Bearer\s+)?\S+|Bearer\s+\S+", re.IGNORECASE),
    ),
]

_REPLACEMENT = "***REDACTED***"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def redact_secrets(msg: str, replacement: str = _REPLACEMENT) -> str:
    """Return *msg* with all recognised secret patterns replaced."""
    if not msg:
        return msg
    result = msg
    for _name, pattern in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class LogRedactionFilter(logging.Filter):
    """Logging filter that automatically redacts sensitive data.

    Attach to a handler (not a logger) for best results::

        handler.addFilter(LogRedactionFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if record.msg and isinstance(record.msg, str):
            record.msg = redact_secrets(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact_secrets(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_secrets(str(v)) if not isinstance(v, (int, float)) else v
                    for v in record.args
                )
        return True


def apply_log_redaction(logger: logging.Logger) -> None:
    """Attach :class:`LogRedactionFilter` to every handler of *logger*."""
    filt = LogRedactionFilter()
    for handler in logger.handlers:
        handler.addFilter(filt)


def apply_global_log_redaction() -> None:
    """Attach :class:`LogRedactionFilter` to the **root** logger's handlers."""
    apply_log_redaction(logging.getLogger())
