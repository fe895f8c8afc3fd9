"""AuditLog model for the workflow execution engine."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import AuditCategory, AuditSeverity
from db.base import BaseModel


class AuditLog(BaseModel):
    """Record of an engine-level action on a workflow resource.

    Attributes:
        organization_id: Organization the action happened in
        user_id: Actor who performed the action
        resource_type: workflow_instance or workflow_task
        resource_id: ID of the resource affected
        action: create, update, complete, fail, pause, resume, cancel
        category / severity: Classification for the audit query layer
        details: Action-specific metadata (previous/new status, reason, ...)
    """

    __tablename__ = "audit_logs"

    organization_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    resource_type: Mapped[str] = mapped_column(nullable=False, index=True)
    resource_id: Mapped[str] = mapped_column(nullable=False, index=True)
    action: Mapped[str] = mapped_column(nullable=False, index=True)
    category: Mapped[str] = mapped_column(default=AuditCategory.WORKFLOW.value, index=True)
    severity: Mapped[str] = mapped_column(default=AuditSeverity.INFO.value)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
