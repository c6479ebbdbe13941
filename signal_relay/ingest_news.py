"""Async Foreks news ingestion adapter.

Two endpoints:
 1. https://www.foreks.com/token/           bearer token + expiry (epoch ms)
 2. /cloud-proxy/api/v3/news                latest news for one tag

The token is cached until its advertised expiry.  Transient failures
(429/5xx, connect errors, read timeouts) are retried with exponential
backoff; everything else surfaces as :class:`NewsSourceError`.

Returns ``List[NewsItem]`` via the shared normalisation layer.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, List

import httpx

from .common_types import NewsItem
from .error_taxonomy import NewsSourceError
from .normalize import normalize_foreks

logger = logging.getLogger(__name__)

FOREKS_TOKEN_URL = "https://www.foreks.com/token/"
FOREKS_NEWS_URL = "https://web-api.forinvestcdn.com/cloud-proxy/api/v3/news"

AVAILABLE_TAGS = ("CURRENCY", "GOLD", "CRYPTO", "PRODUCT")

# Regex to strip tokens from URLs before logging.
_TOKEN_RE = re.compile(r"(apikey|token|access_token)=[^&]+", re.IGNORECASE)


def _sanitize_url(url: str) -> str:
    """Remove token query params from a URL for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", url)


def _as_list(x: Any) -> list:
    """Coerce a news response body to a list of dicts."""
    if isinstance(x, dict):
        x = x.get("data") or x.get("news") or x.get("items")
    if not isinstance(x, list):
        if x is not None:
            logger.warning("Foreks returned %s instead of list, 0 items ingested.", type(x).__name__)
        return []
    return [item for item in x if isinstance(item, dict)]


class NewsSource(ABC):
    """Fetch the most recent news items for one category tag."""

    @abstractmethod
    async def fetch_latest(self, locale: str, tag: str, limit: int) -> List[NewsItem]:
        ...

    async def aclose(self) -> None:
        return None


class ForeksNewsAdapter(NewsSource):
    """Foreks (forinvest) PICNEWS feed."""

    _RETRYABLE_CODES = frozenset({429, 500, 502, 503, 504})
    _MAX_RETRIES = 3

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        token_url: str = FOREKS_TOKEN_URL,
        news_url: str = FOREKS_NEWS_URL,
        backoff_base: float = 2.0,
    ) -> None:
        self.token_url = token_url
        self.news_url = news_url
        self.backoff_base = backoff_base
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._token: str | None = None
        self._token_expiry_ms: float = 0.0
        self._token_lock = asyncio.Lock()

    # ── HTTP helpers ────────────────────────────────────────────

    async def _safe_get(self, url: str, *, params: dict | None = None, headers: dict | None = None) -> httpx.Response:
        """GET with retry+backoff for transient failures, sanitized errors."""
        last_exc: Exception | None = None
        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                r = await self.client.get(url, params=params, headers=headers)
            except (httpx.ConnectError, httpx.ReadTimeout) as exc:
                last_exc = exc
                if attempt < self._MAX_RETRIES:
                    wait = self.backoff_base ** attempt
                    logger.warning(
                        "Foreks network error (%s), retry %d/%d in %.0fs",
                        type(exc).__name__, attempt, self._MAX_RETRIES, wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                break
            except httpx.HTTPError as exc:
                raise NewsSourceError(f"Foreks request failed: {type(exc).__name__}") from None

            if r.status_code in self._RETRYABLE_CODES and attempt < self._MAX_RETRIES:
                wait = self.backoff_base ** attempt
                logger.warning(
                    "Foreks %d from %s, retry %d/%d in %.0fs",
                    r.status_code, _sanitize_url(str(r.url)), attempt, self._MAX_RETRIES, wait,
                )
                await asyncio.sleep(wait)
                continue
            if r.status_code >= 400:
                raise NewsSourceError(f"HTTP {r.status_code} from {_sanitize_url(str(r.url))}")
            return r

        raise NewsSourceError(
            f"Foreks: all {self._MAX_RETRIES} retries exhausted for {_sanitize_url(url)}"
            + (f" ({type(last_exc).__name__})" if last_exc else "")
        )

    @staticmethod
    def _json(r: httpx.Response) -> Any:
        try:
            return r.json()
        except ValueError:
            raise NewsSourceError(
                f"Foreks returned non-JSON (content-type={r.headers.get('content-type', '')!r}, "
                f"status={r.status_code}, url={_sanitize_url(str(r.url))})"
            ) from None

    # ── Token ───────────────────────────────────────────────────

    async def get_token(self) -> str:
        """Cached bearer token; refreshed once the advertised expiry passes."""
        async with self._token_lock:
            if self._token and time.time() * 1000 < self._token_expiry_ms:
                return self._token
            body = self._json(await self._safe_get(self.token_url))
            token = body.get("token") if isinstance(body, dict) else None
            if not token:
                raise NewsSourceError("Foreks token response carried no token")
            try:
                expiry = float(body.get("expire") or 0)
            except (TypeError, ValueError):
                expiry = 0.0
            self._token = str(token)
            self._token_expiry_ms = expiry
            logger.debug("Foreks token refreshed (expires at %.0f ms)", expiry)
            return self._token

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expiry_ms = 0.0

    # ── News ────────────────────────────────────────────────────

    async def fetch_latest(self, locale: str, tag: str, limit: int) -> List[NewsItem]:
        """GET /news?source=PICNEWS&locale=…&tag=…&last=…"""
        if tag not in AVAILABLE_TAGS:
            raise ValueError(f"Invalid tag {tag!r}. Available tags: {', '.join(AVAILABLE_TAGS)}")

        token = await self.get_token()
        params = {"source": "PICNEWS", "locale": locale, "tag": tag, "last": limit}
        try:
            r = await self._safe_get(
                self.news_url, params=params, headers={"Authorization": f"Bearer {token}"},
            )
        except NewsSourceError as exc:
            if "HTTP 401" in str(exc):
                self.invalidate_token()
            raise NewsSourceError(str(exc), tag=tag) from None

        items = [normalize_foreks(it) for it in _as_list(self._json(r))]
        logger.debug("Foreks %s: %d items", tag, len(items))
        return items

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
