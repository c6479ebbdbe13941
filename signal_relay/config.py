"""Global configuration for the signal relay.

Covers the two channel kinds (Telegram bot, WhatsApp via Whapi), the chart
provider, the news poller and the HTTP server.  All tunables can be
overridden via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_list(key: str, default: str = "") -> tuple[str, ...]:
    """Read a comma-separated env var as a tuple of non-empty, stripped values."""
    raw = os.getenv(key, default) or ""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


DEFAULT_NEWS_TAGS = "CURRENCY,GOLD,CRYPTO,PRODUCT"


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per process.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── Telegram (repr=False to prevent accidental logging) ─────
    telegram_bot_token: str = field(default_factory=lambda: os.getenv("TELEGRAM_BOT_TOKEN", ""), repr=False)
    telegram_chat_ids: tuple[str, ...] = field(default_factory=lambda: _env_list("TELEGRAM_CHAT_ID"))
    # TELEGRAM_ADDITIONAL_CHAT_ID is the older name.
    telegram_news_chat_ids: tuple[str, ...] = field(
        default_factory=lambda: _env_list("TELEGRAM_NEWS_CHAT_ID") or _env_list("TELEGRAM_ADDITIONAL_CHAT_ID"),
    )

    # ── WhatsApp via Whapi ──────────────────────────────────────
    whapi_token: str = field(default_factory=lambda: os.getenv("WHAPI_TOKEN", ""), repr=False)
    whapi_base_url: str = field(default_factory=lambda: os.getenv("WHAPI_BASE_URL", "https://gate.whapi.cloud"))
    # WHATSAPP_GROUPS wins; WHATSAPP_TO_NUMBERS is the older single-target name.
    whatsapp_groups: tuple[str, ...] = field(
        default_factory=lambda: _env_list("WHATSAPP_GROUPS") or _env_list("WHATSAPP_TO_NUMBERS"),
    )
    # WHATSAPP_NEWS_PHONE_NUMBER is the older name.
    whatsapp_news_recipients: tuple[str, ...] = field(
        default_factory=lambda: _env_list("WHATSAPP_NEWS_RECIPIENT") or _env_list("WHATSAPP_NEWS_PHONE_NUMBER"),
    )

    # ── Chart rendering ─────────────────────────────────────────
    # "hosted" (chart-img.com API), "browser" (Playwright screenshot) or "none".
    chart_provider: str = field(default_factory=lambda: os.getenv("CHART_PROVIDER", "hosted").strip().lower())
    chart_img_api_key: str = field(default_factory=lambda: os.getenv("CHART_IMG_API_KEY", ""), repr=False)
    tradingview_session_id: str = field(default_factory=lambda: os.getenv("TRADINGVIEW_SESSION_ID", ""), repr=False)
    tradingview_session_sign: str = field(
        default_factory=lambda: os.getenv("TRADINGVIEW_SESSION_ID_SIGN", ""), repr=False,
    )
    tradingview_layout_id: str = field(default_factory=lambda: os.getenv("TRADINGVIEW_LAYOUT_ID", "4atOlnQu"))

    # ── Timeouts ────────────────────────────────────────────────
    chart_timeout_s: float = field(default_factory=lambda: _env_float("CHART_TIMEOUT_S", 30.0))
    send_timeout_s: float = field(default_factory=lambda: _env_float("SEND_TIMEOUT_S", 8.0))
    news_fetch_timeout_s: float = field(default_factory=lambda: _env_float("NEWS_FETCH_TIMEOUT_S", 10.0))

    # ── News poller ─────────────────────────────────────────────
    news_enabled: bool = field(default_factory=lambda: os.getenv("NEWS_ENABLED", "1") == "1")
    news_interval_s: float = field(default_factory=lambda: _env_float("NEWS_INTERVAL_S", 1800.0))
    news_startup_delay_s: float = field(default_factory=lambda: _env_float("NEWS_STARTUP_DELAY_S", 2.0))
    news_tags: tuple[str, ...] = field(
        default_factory=lambda: tuple(t.upper() for t in _env_list("NEWS_TAGS", DEFAULT_NEWS_TAGS)),
    )
    news_locale: str = field(default_factory=lambda: os.getenv("NEWS_LOCALE", "tr"))
    news_batch_size: int = field(default_factory=lambda: _env_int("NEWS_BATCH_SIZE", 10))
    news_send_delay_s: float = field(default_factory=lambda: _env_float("NEWS_SEND_DELAY_S", 1.0))
    news_mark_on_success: bool = field(default_factory=lambda: os.getenv("NEWS_MARK_ON_SUCCESS", "0") == "1")

    # ── Retention ───────────────────────────────────────────────
    news_retention_s: float = field(default_factory=lambda: _env_float("NEWS_RETENTION_S", 2 * 86400))

    # ── State ───────────────────────────────────────────────────
    sqlite_path: str = field(default_factory=lambda: os.getenv("SQLITE_PATH", "signal_relay/state.db"))

    # ── HTTP server ─────────────────────────────────────────────
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 8000))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token)

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whapi_token)

    @property
    def has_any_channel(self) -> bool:
        return self.telegram_configured or self.whatsapp_configured

    @property
    def delivery_timeout_s(self) -> float:
        """Budget for one target: a send may chain two requests (photo, then text)."""
        return 2 * self.send_timeout_s
