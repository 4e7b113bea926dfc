"""Fan-out of execution failure and pause notifications."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Mapping, Optional

from ..contracts import ExecutionStatus, NotificationConfig
from ..persistence import ExecutionStore
from .channels import EmailChannel, NotificationChannel, WebhookChannel
from .payload import NotificationPayload, build_notification_payload

logger = logging.getLogger(__name__)


class NotificationService:
    """Notifies every channel a workflow subscribed for an execution event.

    Deliveries run concurrently and each one is isolated: a failing channel
    is logged and never affects its siblings or the caller.
    """

    def __init__(
        self,
        store: ExecutionStore,
        channels: Optional[Mapping[str, NotificationChannel]] = None,
    ) -> None:
        self._store = store
        self._channels = dict(
            channels
            if channels is not None
            else {"email": EmailChannel(), "webhook": WebhookChannel()}
        )

    async def send_notifications(
        self,
        workflow_id: str,
        execution_id: str,
        status: ExecutionStatus,
        current_step_order: Optional[int],
        error_message: Optional[str],
        paused_at: Optional[datetime] = None,
        resume_at: Optional[datetime] = None,
    ) -> None:
        """Send notifications for a failed or paused execution. Never raises."""
        try:
            status = ExecutionStatus(status)
            workflow = await self._store.get_workflow(workflow_id)
            if workflow is None:
                logger.error(f"Workflow not found: {workflow_id}, skipping notifications")
                return

            configs = [
                c
                for c in await self._store.list_notification_configs(workflow_id)
                if c.subscribes_to(status)
            ]
            if not configs:
                return

            payload = build_notification_payload(
                workflow_id,
                execution_id,
                status,
                current_step_order,
                error_message,
                paused_at,
                resume_at,
                workflow.steps,
            )
            await asyncio.gather(
                *(self._send_one(config, payload) for config in configs),
                return_exceptions=True,
            )
        except Exception:
            logger.exception(f"Error sending notifications for execution {execution_id}")

    async def _send_one(
        self, config: NotificationConfig, payload: NotificationPayload
    ) -> None:
        channel = self._channels.get(config.type)
        if channel is None:
            logger.error(f"Unknown notification type: {config.type}, skipping")
            return
        try:
            await channel.send(config.config, payload)
        except Exception:
            logger.exception(f"Error sending {config.type} notification {config.id}")
