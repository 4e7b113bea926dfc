"""Execution notifications over email and webhooks."""

from .channels import EmailChannel, NotificationChannel, WebhookChannel
from .payload import NotificationPayload, build_notification_payload
from .service import NotificationService

__all__ = [
    "EmailChannel",
    "NotificationChannel",
    "NotificationPayload",
    "NotificationService",
    "WebhookChannel",
    "build_notification_payload",
]
