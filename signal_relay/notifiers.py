"""Outbound messaging transports.

One interface for every channel kind: ``send(recipient, message)`` delivers
the message text plus the optional chart image and returns a
``DeliveryReceipt``, or raises :class:`NotifierError`.

    TelegramNotifier: Telegram Bot API (sendMessage / sendPhoto)
    WhapiNotifier: WhatsApp through the Whapi gateway

Both use ``httpx.AsyncClient``; a client can be injected for tests.
"""
from __future__ import annotations

import base64
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from .common_types import ChartImage, DeliveryReceipt, OutboundMessage
from .error_taxonomy import NotifierError

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"

# Telegram rejects photo captions longer than this.
_TELEGRAM_CAPTION_LIMIT = 1024


def _safe_json(r: httpx.Response) -> dict[str, Any]:
    try:
        body = r.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class Notifier(ABC):
    """A messaging transport for one channel kind."""

    name: str = ""

    @abstractmethod
    def is_configured(self) -> bool:
        """Configuration check only, no network probe."""

    @abstractmethod
    async def send(self, recipient: str, message: OutboundMessage) -> DeliveryReceipt:
        """Deliver *message* to *recipient*; raise NotifierError on failure."""

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------


class TelegramNotifier(Notifier):
    """Telegram Bot API transport (recipient = chat id)."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        *,
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
        api_base: str = TELEGRAM_API,
    ) -> None:
        self.bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def is_configured(self) -> bool:
        return bool(self.bot_token)

    def _url(self, method: str) -> str:
        return f"{self._api_base}/bot{self.bot_token}/{method}"

    async def _call(
        self,
        method: str,
        chat_id: str,
        *,
        json: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
        files: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            r = await self.client.post(self._url(method), json=json, data=data, files=files)
        except httpx.HTTPError as exc:
            # The bot token is part of the URL, so only the class name is surfaced.
            raise NotifierError(
                f"Telegram {method} failed: {type(exc).__name__}", channel=self.name,
            ) from None

        body = _safe_json(r)
        if r.status_code != 200 or not body.get("ok"):
            desc = str(body.get("description") or f"HTTP {r.status_code}")
            if "chat not found" in desc.lower():
                logger.warning(
                    "Telegram chat %s not found; add the bot to the group/channel "
                    "or fix the configured chat id", chat_id,
                )
            elif "message is too long" in desc.lower():
                logger.warning("Telegram message too long for chat %s", chat_id)
            raise NotifierError(
                f"Telegram {method}: {desc}", channel=self.name, status_code=r.status_code,
            )
        return body

    @staticmethod
    def _receipt(body: dict[str, Any]) -> DeliveryReceipt:
        result = body.get("result") or {}
        msg_id = result.get("message_id") if isinstance(result, dict) else None
        return DeliveryReceipt(str(msg_id) if msg_id is not None else None)

    async def send_text(self, chat_id: str, text: str, parse_mode: str | None = None) -> DeliveryReceipt:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        body = await self._call("sendMessage", chat_id, json=payload)
        logger.info("Telegram message sent to %s", chat_id)
        return self._receipt(body)

    async def send_photo(
        self,
        chat_id: str,
        image: ChartImage,
        caption: str = "",
        parse_mode: str | None = None,
    ) -> DeliveryReceipt:
        data = {"chat_id": chat_id}
        if caption:
            data["caption"] = caption
            if parse_mode:
                data["parse_mode"] = parse_mode
        files = {"photo": (image.filename, image.data, image.content_type)}
        body = await self._call("sendPhoto", chat_id, data=data, files=files)
        logger.info("Telegram photo sent to %s (%d bytes)", chat_id, len(image.data))
        return self._receipt(body)

    async def send(self, recipient: str, message: OutboundMessage) -> DeliveryReceipt:
        if not self.is_configured():
            raise NotifierError("TELEGRAM_BOT_TOKEN not configured", channel=self.name)

        text = message.text_for(self.name)
        if message.image is None:
            return await self.send_text(recipient, text, message.parse_mode)

        caption = text if len(text) <= _TELEGRAM_CAPTION_LIMIT else ""
        try:
            receipt = await self.send_photo(recipient, message.image, caption, message.parse_mode)
        except NotifierError as exc:
            logger.warning("Telegram photo to %s failed (%s), sending text only", recipient, exc)
            return await self.send_text(recipient, text, message.parse_mode)
        if not caption:
            return await self.send_text(recipient, text, message.parse_mode)
        return receipt

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


# ---------------------------------------------------------------------------
# WhatsApp (Whapi)
# ---------------------------------------------------------------------------


class WhapiNotifier(Notifier):
    """WhatsApp transport through the Whapi REST gateway.

    Recipients are either group ids (``120363…@g.us``) or phone numbers in
    international format; ``+`` and spaces are stripped from the latter.
    """

    name = "whatsapp"

    def __init__(
        self,
        token: str,
        base_url: str = "https://gate.whapi.cloud",
        *,
        timeout: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def is_configured(self) -> bool:
        return bool(self.token)

    @staticmethod
    def normalize_recipient(recipient: str) -> str:
        recipient = recipient.strip()
        if "@" in recipient:
            return recipient
        return re.sub(r"[\s+]", "", recipient)

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> httpx.Response:
        headers = {
            "accept": "application/json",
            "Authorization": f"Bearer {self.token}",
        }
        try:
            r = await self.client.request(method, f"{self.base_url}{path}", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise NotifierError(
                f"Whapi {path} failed: {type(exc).__name__}", channel=self.name,
            ) from None

        if not (200 <= r.status_code < 300):
            body = _safe_json(r)
            err = body.get("error")
            detail = err.get("message") if isinstance(err, dict) else err
            raise NotifierError(
                f"Whapi {path}: HTTP {r.status_code} {detail or ''}".strip(),
                channel=self.name,
                status_code=r.status_code,
            )
        return r

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return _safe_json(await self._request("POST", path, payload))

    async def list_groups(self) -> list[dict[str, Any]]:
        """Groups the Whapi account belongs to (``id`` is the ``…@g.us`` recipient)."""
        if not self.is_configured():
            raise NotifierError("WHAPI_TOKEN not configured", channel=self.name)
        r = await self._request("GET", "/groups")
        try:
            body = r.json()
        except ValueError:
            raise NotifierError("Whapi /groups: response is not JSON", channel=self.name) from None
        # Bare list, or {"groups": [...]} on newer gateway versions.
        groups = body.get("groups") if isinstance(body, dict) else body
        if not isinstance(groups, list):
            raise NotifierError("Whapi /groups: unexpected response format", channel=self.name)
        logger.info("Retrieved %d WhatsApp groups", len(groups))
        return [g for g in groups if isinstance(g, dict)]

    @staticmethod
    def _receipt(body: dict[str, Any]) -> DeliveryReceipt:
        msg = body.get("message")
        msg_id = (msg.get("id") if isinstance(msg, dict) else None) or body.get("id") or body.get("message_id")
        return DeliveryReceipt(str(msg_id) if msg_id else None)

    async def send_text(self, recipient: str, text: str) -> DeliveryReceipt:
        to = self.normalize_recipient(recipient)
        body = await self._post("/messages/text", {"to": to, "body": text})
        logger.info("WhatsApp message sent to %s", to)
        return self._receipt(body)

    async def send_image(self, recipient: str, image: ChartImage, caption: str = "") -> DeliveryReceipt:
        to = self.normalize_recipient(recipient)
        media = "data:%s;base64,%s" % (image.content_type, base64.b64encode(image.data).decode("ascii"))
        body = await self._post("/messages/image", {"to": to, "media": media, "caption": caption})
        logger.info("WhatsApp image sent to %s (%d bytes)", to, len(image.data))
        return self._receipt(body)

    async def send(self, recipient: str, message: OutboundMessage) -> DeliveryReceipt:
        if not self.is_configured():
            raise NotifierError("WHAPI_TOKEN not configured", channel=self.name)

        text = message.text_for(self.name)
        if message.image is None:
            return await self.send_text(recipient, text)
        try:
            return await self.send_image(recipient, message.image, text)
        except NotifierError as exc:
            logger.warning("WhatsApp image to %s failed (%s), sending text only", recipient, exc)
            return await self.send_text(recipient, text)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
