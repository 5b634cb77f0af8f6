"""
Notification Sender — outbound message delivery contract.

Composition and transport live in the platform; this side only hands over
(recipient, template params) and reads back {success, error}. The sender
does not retry: a failed send becomes a handler failure and the queue's
backoff decides when to try again.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any

import httpx

from config.settings import BackendConfig
from backend.connector import auth_headers
from models.schemas import SendResult

logger = structlog.get_logger()


class NotificationSender(abc.ABC):

    @abc.abstractmethod
    async def send(self, recipient: str, template_params: dict[str, Any]) -> SendResult:
        ...

    async def close(self):
        pass


class HTTPNotificationSender(NotificationSender):
    """POSTs the notification to the platform's send endpoint."""

    def __init__(self, config: BackendConfig, client: httpx.AsyncClient = None):
        self.config = config
        self.client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=auth_headers(self.config),
                timeout=self.config.timeout,
            )
        return self.client

    async def send(self, recipient: str, template_params: dict[str, Any]) -> SendResult:
        client = await self._get_client()
        url = self.config.endpoints.get("notify", "/notifications/send")
        try:
            response = await client.post(url, json={"recipient": recipient, **template_params})
        except httpx.HTTPError as e:
            return SendResult(success=False, error=str(e))

        if response.is_error:
            return SendResult(success=False, error=f"HTTP {response.status_code}: {response.text[:200]}")
        body = response.json() if response.content else {}
        return SendResult(
            success=bool(body.get("success", True)),
            message_id=str(body.get("message_id", body.get("messageId", ""))),
            error=body.get("error"),
        )

    async def close(self):
        if self.client and not self.client.is_closed:
            await self.client.aclose()


class LoggingNotificationSender(NotificationSender):
    """Development sender: records sends instead of delivering them."""

    def __init__(self):
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def send(self, recipient: str, template_params: dict[str, Any]) -> SendResult:
        self.sent.append((recipient, template_params))
        logger.info("notification_sent_dev",
                    recipient=recipient,
                    template=template_params.get("template"))
        return SendResult(success=True, message_id=f"dev-{len(self.sent)}")
