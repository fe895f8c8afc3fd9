"""Notification service — central dispatcher for all notification channels.

Routes a workflow notification to the channels its payload enables.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from notifications.channels import (
    BaseChannel,
    DeliveryResult,
    EmailChannel,
    InAppChannel,
    Notification,
    NotificationChannel,
    PushChannel,
)
from schemas.execution import NotificationPayload

logger = logging.getLogger(__name__)


class NotificationService:
    """Notification dispatcher used by notification steps.

    In-app delivery is always available. Email needs ``SMTP_HOST`` and push
    needs ``PUSH_GATEWAY_URL``; a payload that asks for an unconfigured
    channel gets a failed DeliveryResult for it.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._channels: dict[NotificationChannel, BaseChannel] = {}
        self.register_channel(InAppChannel(db))
        self.configure_channels(settings or get_settings(), http_client)

    def register_channel(self, channel: BaseChannel) -> None:
        """Register (or replace) a notification channel."""
        self._channels[channel.channel_type] = channel
        logger.debug(f"Notification channel registered: {channel.channel_type.value}")

    def configure_channels(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> None:
        if settings.SMTP_HOST:
            self.register_channel(EmailChannel({
                "smtp_host": settings.SMTP_HOST,
                "smtp_port": settings.SMTP_PORT,
                "smtp_user": settings.SMTP_USER,
                "smtp_password": settings.SMTP_PASSWORD,
                "from_address": settings.SMTP_FROM_ADDRESS,
                "use_tls": settings.SMTP_USE_TLS,
            }))

        if settings.PUSH_GATEWAY_URL:
            self.register_channel(PushChannel({"url": settings.PUSH_GATEWAY_URL}, client=http_client))

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through the channel it names.

        Args:
            notification: Notification to send

        Returns:
            DeliveryResult
        """
        channel = self._channels.get(notification.channel)
        if not channel:
            return DeliveryResult(
                success=False,
                channel=notification.channel,
                recipient=notification.recipient or notification.user_id,
                error=f"Channel not configured: {notification.channel.value}",
            )

        result = await channel.send(notification)

        if result.success:
            logger.info(
                f"Notification sent via {notification.channel.value} to {result.recipient}"
            )
        else:
            logger.warning(
                f"Notification failed via {notification.channel.value}: {result.error}"
            )

        return result

    async def notify(self, target_user_id: str, payload: NotificationPayload) -> list[DeliveryResult]:
        """Deliver ``payload`` to ``target_user_id`` on every enabled channel.

        Returns:
            List of DeliveryResults, one per enabled channel
        """
        results = []
        for name in payload.channels.enabled():
            channel = NotificationChannel(name)
            notification = Notification(
                title=payload.title,
                message=payload.message,
                channel=channel,
                user_id=target_user_id,
                type=payload.type,
                priority=payload.priority,
                recipient=(payload.email or "") if channel == NotificationChannel.EMAIL else target_user_id,
                metadata=dict(payload.metadata),
                organization_id=payload.organization_id,
            )
            results.append(await self.send(notification))
        return results
