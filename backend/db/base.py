"""Declarative base and shared columns for all engine tables."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from core.utils import utc_now


class Base(DeclarativeBase):
    """Declarative base shared by every engine model."""

    pass


class SoftDeleteMixin:
    """Mixin that adds soft delete capability to a model.

    Workflow definitions are archived by the CRUD layer this way. A soft-deleted
    definition keeps its row (old instances still reference it) but is no
    longer visible to the engine.

    Usage in queries:
        query.where(Model.is_deleted == False)
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None, index=True
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    def soft_delete(self) -> None:
        """Mark this record as deleted."""
        self.is_deleted = True
        self.deleted_at = utc_now()

    def restore(self) -> None:
        """Restore a soft-deleted record."""
        self.is_deleted = False
        self.deleted_at = None


class BaseModel(SoftDeleteMixin, Base):
    """Abstract base model with common timestamp fields and soft delete.

    Provides:
    - id: UUID primary key (string)
    - created_at / updated_at: automatic timestamps
    - is_deleted / deleted_at: soft delete support
    """

    __abstract__ = True

    id: Mapped[str] = mapped_column(primary_key=True, default=lambda: str(uuid4()))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
