"""Entry point: ``python -m signal_relay.run``

Starts the webhook server; the news poller runs inside it as a background
task unless ``NEWS_ENABLED=0``.
"""

from __future__ import annotations

import logging
import sys

import uvicorn

from .app import create_app
from .config import Config
from .log_redaction import apply_global_log_redaction


def main() -> None:
    cfg = Config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    apply_global_log_redaction()
    log = logging.getLogger(__name__)
    log.info(
        "Telegram: %s, WhatsApp: %s, chart provider: %s, news: %s",
        "on" if cfg.telegram_configured else "off",
        "on" if cfg.whatsapp_configured else "off",
        cfg.chart_provider or "none",
        "on" if cfg.news_enabled else "off",
    )
    if not cfg.has_any_channel:
        log.warning("No messaging channel configured; every webhook will be rejected")

    app = create_app(cfg)
    uvicorn.run(app, host=cfg.host, port=cfg.port, log_config=None)


if __name__ == "__main__":
    main()
