"""HTTP surface: ``POST /webhook``, ``GET /health`` and the WhatsApp helpers
``GET /whatsapp/groups`` / ``POST /whatsapp/send``.

``build_services`` wires every collaborator once from a ``Config``;
``create_app`` exposes them through FastAPI and runs the news poller as a
background task for the lifetime of the application.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .charts import ChartProvider, build_chart_provider
from .common_types import ChannelTarget
from .config import Config
from .error_taxonomy import DeliveryFailedError, NotifierError, SignalValidationError
from .fanout import FanOut
from .ingest_news import ForeksNewsAdapter, NewsSource
from .news_poller import NewsPoller
from .notifiers import Notifier, TelegramNotifier, WhapiNotifier
from .signal_handler import ChannelKind, SignalRelay, is_text_payload
from .store_sqlite import SqliteStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "signal-relay"

TELEGRAM_OVERRIDE_FIELDS = ("chatId", "chatIds")
WHATSAPP_OVERRIDE_FIELDS = ("groupId", "groupIds")


@dataclass
class Services:
    """Everything the HTTP layer and the poller share, closed together."""

    cfg: Config
    relay: SignalRelay
    poller: NewsPoller | None = None
    notifiers: list[Notifier] = field(default_factory=list)
    chart_provider: ChartProvider | None = None
    news_source: NewsSource | None = None
    store: SqliteStore | None = None

    @property
    def whatsapp(self) -> WhapiNotifier | None:
        for n in self.notifiers:
            if isinstance(n, WhapiNotifier):
                return n
        return None

    async def aclose(self) -> None:
        closers = [n.aclose() for n in self.notifiers]
        if self.chart_provider is not None:
            closers.append(self.chart_provider.aclose())
        if self.news_source is not None:
            closers.append(self.news_source.aclose())
        for closer in closers:
            try:
                await closer
            except Exception as exc:
                logger.warning("Error while closing resource: %s", exc)
        if self.store is not None:
            self.store.close()


def build_services(cfg: Config) -> Services:
    """Construct notifiers, chart provider, relay and (optionally) the poller."""
    notifiers: list[Notifier] = []
    channels: list[ChannelKind] = []
    disabled: list[str] = []
    news_targets: list[ChannelTarget] = []

    if cfg.telegram_configured:
        tg = TelegramNotifier(cfg.telegram_bot_token, timeout=cfg.send_timeout_s)
        notifiers.append(tg)
        channels.append(ChannelKind("telegram", tg, cfg.telegram_chat_ids, TELEGRAM_OVERRIDE_FIELDS))
        news_targets += [ChannelTarget(tg, chat) for chat in cfg.telegram_news_chat_ids]
    else:
        logger.warning("TELEGRAM_BOT_TOKEN not set, Telegram channel disabled")
        disabled.append("telegram")

    if cfg.whatsapp_configured:
        wa = WhapiNotifier(cfg.whapi_token, cfg.whapi_base_url, timeout=cfg.send_timeout_s)
        notifiers.append(wa)
        channels.append(ChannelKind("whatsapp", wa, cfg.whatsapp_groups, WHATSAPP_OVERRIDE_FIELDS))
        news_targets += [ChannelTarget(wa, r) for r in cfg.whatsapp_news_recipients]
    else:
        logger.warning("WHAPI_TOKEN not set, WhatsApp channel disabled")
        disabled.append("whatsapp")

    fanout = FanOut(send_timeout_s=cfg.delivery_timeout_s)
    chart_provider = build_chart_provider(cfg)
    relay = SignalRelay(
        channels, fanout, chart_provider, chart_timeout_s=cfg.chart_timeout_s, disabled_kinds=disabled,
    )
    services = Services(cfg=cfg, relay=relay, notifiers=notifiers, chart_provider=chart_provider)

    if cfg.news_enabled:
        db_dir = os.path.dirname(cfg.sqlite_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        services.store = SqliteStore(cfg.sqlite_path)
        services.news_source = ForeksNewsAdapter(timeout=cfg.news_fetch_timeout_s)
        services.poller = NewsPoller(
            services.news_source,
            services.store,
            fanout,
            news_targets,
            tags=cfg.news_tags,
            locale=cfg.news_locale,
            batch_size=cfg.news_batch_size,
            retention_s=cfg.news_retention_s,
            send_delay_s=cfg.news_send_delay_s,
            mark_on_success=cfg.news_mark_on_success,
        )
    return services


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_body(raw: bytes) -> Any:
    """JSON regardless of content-type; TradingView posts JSON as text/plain."""
    if not raw.strip():
        return None
    return json.loads(raw)


def create_app(cfg: Config | None = None, services: Services | None = None, *, run_poller: bool = True) -> FastAPI:
    """Build the FastAPI application.

    *services* replaces the wiring from ``build_services`` (tests inject
    fakes); *run_poller* = False keeps the news loop from starting.
    """
    if services is None:
        services = build_services(cfg or Config())
    cfg = services.cfg

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s (channels: %s)", SERVICE_NAME, ", ".join(k.name for k in services.relay.channels) or "none")
        stop_event = asyncio.Event()
        task: asyncio.Task | None = None
        if services.poller is not None and run_poller:
            task = asyncio.create_task(
                services.poller.run_forever(cfg.news_interval_s, stop_event, cfg.news_startup_delay_s),
                name="news-poller",
            )

        yield

        logger.info("Shutting down %s...", SERVICE_NAME)
        stop_event.set()
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await services.aclose()
        logger.info("Shutdown complete")

    app = FastAPI(title="Signal Relay", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse({"error": "Route not found"}, status_code=404)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.post("/webhook")
    async def webhook(request: Request):
        raw = await request.body()
        logger.info("Webhook received (%d bytes, content-type %s)", len(raw), request.headers.get("content-type", "-"))
        try:
            payload = _parse_body(raw)
        except ValueError:
            return JSONResponse(
                {"success": False, "error": "Request body must be valid JSON", "field": "body"},
                status_code=400,
            )

        text_alert = is_text_payload(payload)
        try:
            outcome = await services.relay.handle(payload)
        except SignalValidationError as exc:
            logger.warning("Webhook rejected: %s", exc)
            return JSONResponse({"success": False, "error": str(exc), "field": exc.field}, status_code=400)
        except DeliveryFailedError as exc:
            body = exc.outcome.to_dict()
            body["message"] = "Failed to deliver to any channel"
            body["error"] = str(exc)
            return JSONResponse(body, status_code=502)
        except Exception:
            logger.exception("Error processing webhook")
            return JSONResponse({"error": "Internal server error"}, status_code=500)

        body = outcome.to_dict()
        body["message"] = "Message sent successfully" if text_alert else "Signal sent successfully"
        return JSONResponse(body, status_code=200)

    @app.get("/health")
    async def health():
        poller = services.poller
        news: dict[str, Any] = {"enabled": poller is not None}
        if poller is not None:
            news.update(poller.status())
        return {
            "status": "healthy",
            "timestamp": _utc_now_iso(),
            "service": SERVICE_NAME,
            "services": services.relay.health(),
            "news": news,
        }

    # ── WhatsApp helpers ────────────────────────────────────────

    def _whatsapp_unavailable() -> JSONResponse:
        return JSONResponse({"success": False, "error": "WhatsApp channel not configured"}, status_code=503)

    @app.get("/whatsapp/groups")
    async def whatsapp_groups():
        wa = services.whatsapp
        if wa is None:
            return _whatsapp_unavailable()
        try:
            groups = await wa.list_groups()
        except NotifierError as exc:
            logger.error("Failed to retrieve WhatsApp groups: %s", exc)
            return JSONResponse({"success": False, "error": str(exc)}, status_code=502)
        return {
            "success": True,
            "groups": groups,
            "count": len(groups),
            "configured": list(cfg.whatsapp_groups),
        }

    @app.post("/whatsapp/send")
    async def whatsapp_send(request: Request):
        try:
            payload = _parse_body(await request.body())
        except ValueError:
            payload = None
        group_id = payload.get("groupId") if isinstance(payload, dict) else None
        message = payload.get("message") if isinstance(payload, dict) else None
        if not group_id or not message:
            return JSONResponse({"success": False, "error": "Missing required fields: groupId, message"}, status_code=400)

        wa = services.whatsapp
        if wa is None:
            return _whatsapp_unavailable()
        try:
            receipt = await wa.send_text(str(group_id), str(message))
        except NotifierError as exc:
            logger.error("Failed to send message to WhatsApp group %s: %s", group_id, exc)
            return JSONResponse({"success": False, "error": str(exc)}, status_code=502)
        return {"success": True, "result": {"to": str(group_id), "deliveryId": receipt.delivery_id}}

    return app
