"""Chart image providers.

Two interchangeable strategies behind :class:`ChartProvider`:

    HostedChartProvider: chart-img.com TradingView rendering API (httpx)
    BrowserChartProvider: screenshot of a TradingView layout through a
        headless Chromium driven by Playwright

Chart images are best-effort: ``get`` returns ``None`` when the provider
is not configured and raises :class:`ChartUnavailableError` when rendering
fails.  The signal relay treats both as "send without image".
"""
from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import httpx

from .common_types import ChartImage
from .config import Config
from .error_taxonomy import ChartUnavailableError, ConfigError

logger = logging.getLogger(__name__)

_CRYPTO_PREFIXES = ("BTC", "ETH", "ADA", "DOT", "LINK", "UNI", "AAVE", "SOL", "AVAX", "MATIC", "ATOM", "XRP")


def format_symbol(symbol: str) -> str:
    """Qualify a bare symbol as ``EXCHANGE:SYMBOL`` for TradingView."""
    sym = symbol.strip().upper()
    if ":" in sym:
        return sym
    if sym.startswith(_CRYPTO_PREFIXES):
        return f"BINANCE:{sym}"
    if len(sym) <= 5 and re.fullmatch(r"[A-Z]+", sym):
        return f"NASDAQ:{sym}"
    if re.fullmatch(r"[A-Z]{6}", sym):
        return f"FX:{sym}"
    return f"BINANCE:{sym}"


class ChartProvider(ABC):
    """Render a chart image for a symbol."""

    name: str = ""

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def get(self, symbol: str, options: dict[str, Any] | None = None) -> ChartImage | None:
        ...

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Hosted rendering API
# ---------------------------------------------------------------------------

CHART_IMG_URL = "https://api.chart-img.com/v2/tradingview/advanced-chart"


class HostedChartProvider(ChartProvider):
    """chart-img.com advanced-chart endpoint; returns PNG bytes."""

    name = "chart-img"

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        url: str = CHART_IMG_URL,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def build_request(symbol: str, options: dict[str, Any]) -> dict[str, Any]:
        """Request body: candles + volume, plus a price line for the signal."""
        body: dict[str, Any] = {
            "symbol": format_symbol(symbol),
            "interval": options.get("interval", "1h"),
            "width": int(options.get("width", 800)),
            "height": int(options.get("height", 600)),
            "theme": options.get("theme", "dark"),
            "style": options.get("style", "candle"),
            "studies": [{"name": "Volume", "forceOverlay": False}],
        }
        action = str(options.get("action") or "").upper()
        try:
            price = float(options.get("price"))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            price = None
        if action and price is not None:
            color = "rgb(34,171,148)" if action == "BUY" else "rgb(247,82,95)"
            body["drawings"] = [{
                "name": "Horizontal Line",
                "input": {"price": price, "text": f"{action} Signal - {options.get('price')}"},
                "override": {"lineColor": color, "textColor": color, "lineWidth": 2, "showPrice": True},
            }]
        return body

    async def get(self, symbol: str, options: dict[str, Any] | None = None) -> ChartImage | None:
        if not self.is_configured():
            logger.debug("CHART_IMG_API_KEY not configured, skipping chart image")
            return None

        body = self.build_request(symbol, options or {})
        try:
            r = await self.client.post(self.url, json=body, headers={"x-api-key": self.api_key})
        except httpx.HTTPError as exc:
            raise ChartUnavailableError(f"chart-img request failed: {type(exc).__name__}") from None

        content_type = r.headers.get("content-type", "")
        if r.status_code != 200 or not content_type.startswith("image/"):
            raise ChartUnavailableError(
                f"chart-img returned HTTP {r.status_code} ({content_type or 'no content-type'})"
            )
        logger.info("Chart image rendered for %s (%d bytes)", body["symbol"], len(r.content))
        return ChartImage(data=r.content, content_type=content_type.split(";")[0])

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


# ---------------------------------------------------------------------------
# Browser screenshot
# ---------------------------------------------------------------------------

_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
]
_VIEWPORT = {"width": 1340, "height": 900}


class BrowserChartProvider(ChartProvider):
    """Screenshot a TradingView chart layout with a reusable headless browser.

    One browser is launched lazily and shared by all requests.  When it
    disconnects it is dropped and relaunched on the next request.  Each
    request gets its own context carrying the TradingView session cookies.

    *launcher* replaces the Playwright launch (used by tests).
    """

    name = "tradingview-browser"

    def __init__(
        self,
        session_id: str,
        session_sign: str,
        layout_id: str = "4atOlnQu",
        *,
        launcher: Callable[[], Awaitable[Any]] | None = None,
        load_timeout_s: float = 20.0,
    ) -> None:
        self.session_id = session_id
        self.session_sign = session_sign
        self.layout_id = layout_id
        self.load_timeout_s = load_timeout_s
        self._launcher = launcher or self._launch_playwright
        self._playwright: Any | None = None
        self._browser: Any | None = None
        self._launch_lock = asyncio.Lock()
        self._closing = False

    def is_configured(self) -> bool:
        return bool(self.session_id and self.session_sign)

    # ── Browser lifecycle ───────────────────────────────────────

    async def _launch_playwright(self) -> Any:
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=True, args=_BROWSER_ARGS)

    def _on_disconnected(self, *_args: Any) -> None:
        logger.warning("Chart browser disconnected, will relaunch on next request")
        self._browser = None

    async def _get_browser(self) -> Any:
        async with self._launch_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            logger.info("Launching chart browser (reused for all chart requests)")
            browser = await self._launcher()
            browser.on("disconnected", self._on_disconnected)
            self._browser = browser
            return browser

    def chart_url(self, symbol: str) -> str:
        return (
            f"https://tr.tradingview.com/chart/{self.layout_id}/"
            f"?symbol={quote(format_symbol(symbol), safe='')}"
        )

    def _cookies(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "value": value, "domain": ".tradingview.com", "path": "/",
             "httpOnly": True, "secure": True}
            for name, value in (("sessionid", self.session_id), ("sessionid_sign", self.session_sign))
        ]

    # ── Capture ─────────────────────────────────────────────────

    async def _capture(self, page: Any, url: str) -> bytes:
        await page.goto(url, wait_until="networkidle", timeout=self.load_timeout_s * 1000)
        try:
            await page.wait_for_selector(".chart-gui-wrapper", timeout=self.load_timeout_s * 1000)
            await page.wait_for_timeout(3000)
            # Drag the price axis left so the latest candles sit mid-frame.
            x, y = _VIEWPORT["width"] / 2, _VIEWPORT["height"] / 2
            await page.mouse.move(x, y)
            await page.mouse.down()
            await page.mouse.move(x - 2000, y, steps=10)
            await page.mouse.up()
            await page.wait_for_timeout(500)
        except Exception as exc:
            logger.warning("Chart did not finish loading (%s), capturing anyway", type(exc).__name__)

        element = await page.query_selector(".layout__area--center")
        if element is not None:
            return await element.screenshot(type="png")
        logger.warning("Chart area not found, taking viewport screenshot")
        return await page.screenshot(type="png", full_page=False)

    async def get(self, symbol: str, options: dict[str, Any] | None = None) -> ChartImage | None:
        if not self.is_configured():
            logger.debug("TradingView session not configured, skipping chart image")
            return None
        if self._closing:
            logger.warning("Chart provider is shutting down, skipping chart request")
            return None

        browser = await self._get_browser()
        context = None
        try:
            context = await browser.new_context(viewport=_VIEWPORT)
            await context.add_cookies(self._cookies())
            page = await context.new_page()
            data = await self._capture(page, self.chart_url(symbol))
        except Exception as exc:
            if self._browser is not None and not self._browser.is_connected():
                self._browser = None
            raise ChartUnavailableError(f"browser capture failed for {symbol}: {exc}") from exc
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as exc:
                    logger.warning("Error closing chart browser context: %s", exc)

        logger.info("Chart screenshot captured for %s (%d bytes)", symbol, len(data))
        return ChartImage(data=data)

    async def aclose(self) -> None:
        self._closing = True
        browser, self._browser = self._browser, None
        if browser is not None:
            logger.info("Closing chart browser")
            await browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_chart_provider(cfg: Config) -> ChartProvider | None:
    """Select the chart strategy named by ``CHART_PROVIDER``."""
    kind = cfg.chart_provider
    if kind in ("", "none", "off"):
        return None
    if kind == "hosted":
        return HostedChartProvider(cfg.chart_img_api_key, timeout=cfg.chart_timeout_s)
    if kind == "browser":
        return BrowserChartProvider(
            cfg.tradingview_session_id,
            cfg.tradingview_session_sign,
            cfg.tradingview_layout_id,
        )
    raise ConfigError(f"Unknown CHART_PROVIDER {kind!r} (expected hosted, browser or none)")
