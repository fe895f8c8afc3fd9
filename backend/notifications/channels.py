"""Notification channel implementations.

Each channel handles delivery for one transport (in-app inbox, email, push).
The NotificationService dispatches to the channel(s) a payload enables.
"""

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from db.models.notification import InAppNotification

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    PUSH = "push"


@dataclass
class Notification:
    """A notification to be delivered on one channel."""
    title: str
    message: str
    channel: NotificationChannel
    user_id: str
    type: str = "info"
    priority: str = "medium"
    recipient: str = ""  # email address or device/user key
    metadata: dict[str, Any] = field(default_factory=dict)
    organization_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class DeliveryResult:
    """Result of a notification delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


def _failed(channel: NotificationChannel, recipient: str, error: str) -> DeliveryResult:
    return DeliveryResult(success=False, channel=channel, recipient=recipient, error=error)


def _delivered(channel: NotificationChannel, recipient: str, message: str) -> DeliveryResult:
    return DeliveryResult(
        success=True,
        channel=channel,
        recipient=recipient,
        message=message,
        delivered_at=datetime.now(timezone.utc).isoformat(),
    )


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for notification channels."""

    channel_type: NotificationChannel

    @abstractmethod
    async def send(self, notification: Notification) -> DeliveryResult:
        """Send a notification through this channel."""
        ...


# ─── In-App Channel ────────────────────────────────────────────

class InAppChannel(BaseChannel):
    """Write the notification into the recipient's in-app inbox."""

    channel_type = NotificationChannel.IN_APP

    def __init__(self, db: AsyncSession):
        self.db = db

    async def send(self, notification: Notification) -> DeliveryResult:
        row = InAppNotification(
            user_id=notification.user_id,
            organization_id=notification.organization_id,
            title=notification.title,
            message=notification.message,
            type=notification.type,
            priority=notification.priority,
            details=notification.metadata or None,
        )
        self.db.add(row)
        await self.db.flush()
        return _delivered(self.channel_type, notification.user_id, f"Stored as {row.id}")


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(BaseChannel):
    """Send notifications via SMTP email.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls
    """

    channel_type = NotificationChannel.EMAIL

    def __init__(self, config: dict = None):
        self.config = config or {}

    def build_message(self, notification: Notification) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.title
        msg["From"] = self.config.get("from_address", "workflows@localhost")
        msg["To"] = notification.recipient

        msg.attach(MIMEText(notification.message, "plain"))

        html = f"""
        <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #333;">{notification.title}</h2>
            <div style="color: #555; line-height: 1.6;">
                {notification.message.replace(chr(10), '<br>')}
            </div>
        </div>
        """
        msg.attach(MIMEText(html, "html"))
        return msg

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send email notification."""
        if not notification.recipient:
            return _failed(self.channel_type, "", "No email address for recipient")

        try:
            msg = self.build_message(notification)
            # smtplib blocks; keep it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_smtp, notification.recipient, msg)
            return _delivered(self.channel_type, notification.recipient, "Email sent")

        except Exception as e:
            logger.error(f"Email send failed: {e}")
            return _failed(self.channel_type, notification.recipient, str(e))

    def _send_smtp(self, to_addr: str, msg: MIMEMultipart) -> None:
        """Synchronous SMTP send."""
        host = self.config.get("smtp_host", "localhost")
        port = self.config.get("smtp_port", 587)
        user = self.config.get("smtp_user", "")
        password = self.config.get("smtp_password", "")

        with smtplib.SMTP(host, port) as server:
            if self.config.get("use_tls", True):
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(msg["From"], to_addr, msg.as_string())


# ─── Push Channel ──────────────────────────────────────────────

class PushChannel(BaseChannel):
    """Hand the notification to an HTTP push gateway.

    Config:
        url: Gateway endpoint
        timeout: Request timeout in seconds (default 10)
    """

    channel_type = NotificationChannel.PUSH

    def __init__(self, config: dict = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or {}
        self._client = client

    async def send(self, notification: Notification) -> DeliveryResult:
        url = self.config.get("url")
        if not url:
            return _failed(self.channel_type, notification.user_id, "No push gateway URL configured")

        payload = {
            "user_id": notification.user_id,
            "title": notification.title,
            "body": notification.message,
            "type": notification.type,
            "priority": notification.priority,
            "data": notification.metadata,
            "timestamp": notification.created_at,
        }

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.config.get("timeout", 10)) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
            return _delivered(
                self.channel_type,
                notification.user_id,
                f"Push accepted (HTTP {response.status_code})",
            )

        except httpx.HTTPError as e:
            logger.error(f"Push send failed: {e}")
            return _failed(self.channel_type, notification.user_id, str(e))
