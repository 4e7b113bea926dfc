"""Delivery channels for execution notifications."""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional

import httpx

from ..config import SmtpConfig
from ..contracts import ExecutionStatus
from .payload import NotificationPayload

logger = logging.getLogger(__name__)

SUBJECTS = {
    ExecutionStatus.FAILED: "Workflow Execution Failed",
    ExecutionStatus.PAUSED: "Workflow Execution Paused",
}


class NotificationChannel(metaclass=abc.ABCMeta):
    """A destination that can receive a notification payload."""

    @abc.abstractmethod
    async def send(self, config: Dict[str, Any], payload: NotificationPayload) -> bool:
        """Deliver ``payload``; ``False`` when ``config`` lacks a destination."""
        raise NotImplementedError


class EmailChannel(NotificationChannel):
    """Sends the payload as pretty-printed JSON over SMTP."""

    def __init__(self, smtp: Optional[SmtpConfig] = None) -> None:
        self._smtp = smtp or SmtpConfig()

    def build_message(self, to: str, payload: NotificationPayload) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._smtp.sender
        message["To"] = to
        message["Subject"] = SUBJECTS.get(payload.status, "Workflow Execution Update")
        message.set_content(json.dumps(payload.to_document(), indent=2))
        return message

    def _connect(self) -> smtplib.SMTP:
        if self._smtp.tls_mode == "implicit":
            return smtplib.SMTP_SSL(self._smtp.host, self._smtp.port, timeout=self._smtp.timeout)
        return smtplib.SMTP(self._smtp.host, self._smtp.port, timeout=self._smtp.timeout)

    def _deliver(self, message: EmailMessage) -> None:
        with self._connect() as client:
            if self._smtp.tls_mode == "starttls":
                client.ehlo()
                if client.has_extn("starttls"):
                    client.starttls()
                    client.ehlo()
                else:
                    logger.warning(f"SMTP server {self._smtp.host} does not offer STARTTLS")
            if self._smtp.user and self._smtp.password:
                client.login(self._smtp.user, self._smtp.password)
            client.send_message(message)

    async def send(self, config: Dict[str, Any], payload: NotificationPayload) -> bool:
        to = config.get("to")
        if not to or not isinstance(to, str):
            logger.error("Email notification config missing 'to' field, skipping")
            return False
        await asyncio.to_thread(self._deliver, self.build_message(to, payload))
        logger.info(f"Sent {payload.status.value} notification email to {to}")
        return True


class WebhookChannel(NotificationChannel):
    """POSTs the payload as JSON to the configured URL."""

    def __init__(
        self,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout = timeout
        self._client = client

    async def send(self, config: Dict[str, Any], payload: NotificationPayload) -> bool:
        url = config.get("url")
        if not url or not isinstance(url, str):
            logger.error("Webhook notification config missing 'url' field, skipping")
            return False
        if self._client is not None:
            response = await self._client.post(url, json=payload.to_document())
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload.to_document())
        response.raise_for_status()
        logger.info(f"Delivered {payload.status.value} webhook to {url}")
        return True
