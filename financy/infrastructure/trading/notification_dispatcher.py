"""
Multi-channel user notification dispatcher.

Implements NotifierPort. Delivers one message to every requested channel
concurrently:

    in_app    stored notification row (NotificationRepository)
    telegram  Bot API sendMessage, Markdown, chat id from user settings
    email     no transport configured: reported as not delivered
    webhook   JSON POST to each configured URL

Every send is bounded by a timeout. Failures are logged and reported in the
returned summary; ``notify`` never raises, so a delivery problem can never
undo the state change it describes.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Iterable
from urllib.parse import urlparse
from uuid import UUID

import httpx

from financy.domain.trading.entities import (
    NotificationChannel,
    NotificationMessage,
    NotificationResult,
    NotificationSummary,
)
from financy.domain.trading.ports import NotificationRepository, NotifierPort

logger = logging.getLogger(__name__)


class NotificationDispatcher(NotifierPort):
    """Best-effort notifier over in-app, Telegram, email and webhooks.

    Args:
        client: Shared ``httpx.AsyncClient`` for Telegram and webhooks.
        store: In-app notification store and user settings lookup.
        telegram_bot_token: Bot token; Telegram is skipped when empty.
        telegram_api_url: Bot API host.
        webhook_urls: URLs that receive every notification as JSON.
        timeout: Upper bound in seconds for a single channel delivery.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: NotificationRepository,
        telegram_bot_token: str = "",
        telegram_api_url: str = "https://api.telegram.org",
        webhook_urls: Iterable[str] = (),
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._store = store
        self._telegram_bot_token = telegram_bot_token
        self._telegram_api_url = telegram_api_url.rstrip("/")
        self._webhook_urls: list[str] = []
        self._timeout = timeout
        self._stats = {
            "notifications": 0,
            "delivered": 0,
            "errors": 0,
        }
        for url in webhook_urls:
            self.add_webhook(url)

    @property
    def stats(self) -> dict:
        return dict(self._stats)

    def add_webhook(self, url: str) -> None:
        """Register a webhook URL.

        Raises:
            ValueError: If the URL is not http(s).
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"Invalid webhook URL scheme: {parsed.scheme}")
        if url not in self._webhook_urls:
            self._webhook_urls.append(url)

    # ------------------------------------------------------------------
    # Main dispatch
    # ------------------------------------------------------------------

    async def notify(
        self,
        user_id: UUID,
        channels: Iterable[NotificationChannel],
        message: NotificationMessage,
    ) -> NotificationSummary:
        requested = list(dict.fromkeys(channels))
        if not requested:
            return NotificationSummary()

        self._stats["notifications"] += 1
        tasks = [self._deliver(channel, user_id, message) for channel in requested]
        results = await asyncio.gather(*tasks)

        summary = NotificationSummary(tuple(results))
        self._stats["delivered"] += summary.delivered
        self._stats["errors"] += summary.failed
        return summary

    async def _deliver(
        self, channel: NotificationChannel, user_id: UUID, message: NotificationMessage
    ) -> NotificationResult:
        start = time.monotonic()
        try:
            await asyncio.wait_for(self._send(channel, user_id, message), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification via %s timed out after %.1fs", channel.value, self._timeout)
            return self._result(channel, start, error="timeout")
        except Exception as exc:
            logger.error("Notification via %s failed: %s", channel.value, exc)
            return self._result(channel, start, error=str(exc) or type(exc).__name__)
        return self._result(channel, start)

    @staticmethod
    def _result(channel: NotificationChannel, start: float, error: str | None = None) -> NotificationResult:
        elapsed = (time.monotonic() - start) * 1000
        return NotificationResult(
            channel=channel,
            success=error is None,
            error=error,
            latency_ms=round(elapsed, 2),
        )

    async def _send(self, channel: NotificationChannel, user_id: UUID, message: NotificationMessage) -> None:
        if channel is NotificationChannel.IN_APP:
            await self._store.store(user_id, message)
        elif channel is NotificationChannel.TELEGRAM:
            await self._send_telegram(user_id, message)
        elif channel is NotificationChannel.WEBHOOK:
            await self._send_webhooks(user_id, message)
        else:
            logger.info("Email delivery not configured, skipped for user %s", user_id)
            raise RuntimeError("email transport not configured")

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def _send_telegram(self, user_id: UUID, message: NotificationMessage) -> None:
        if not self._telegram_bot_token:
            raise RuntimeError("telegram bot token not configured")
        chat_id = await self._store.get_telegram_chat_id(user_id)
        if not chat_id:
            raise RuntimeError("telegram not enabled for user")

        resp = await self._client.post(
            f"{self._telegram_api_url}/bot{self._telegram_bot_token}/sendMessage",
            json={
                "chat_id": chat_id,
                "text": f"*{message.title}*\n\n{message.body}",
                "parse_mode": "Markdown",
            },
        )
        resp.raise_for_status()

    async def _send_webhooks(self, user_id: UUID, message: NotificationMessage) -> None:
        if not self._webhook_urls:
            raise RuntimeError("no webhook configured")
        payload = {
            "event": message.kind,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": str(user_id),
            "title": message.title,
            "message": message.body,
            "data": message.data,
        }
        for url in self._webhook_urls:
            resp = await self._client.post(
                url,
                json=payload,
                headers={"X-Financy-Event": message.kind},
            )
            resp.raise_for_status()
