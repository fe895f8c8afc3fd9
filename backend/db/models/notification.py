"""In-app notification model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class InAppNotification(BaseModel):
    """A notification delivered to a user's in-app inbox."""

    __tablename__ = "in_app_notifications"

    user_id: Mapped[str] = mapped_column(nullable=False, index=True)
    organization_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    title: Mapped[str] = mapped_column(nullable=False)
    message: Mapped[str] = mapped_column(nullable=False, default="")
    type: Mapped[str] = mapped_column(default="info")
    priority: Mapped[str] = mapped_column(default="medium")
    is_read: Mapped[bool] = mapped_column(default=False, index=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
