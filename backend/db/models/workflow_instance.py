"""Workflow instance model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import InstanceStatus, Priority, TriggerType
from db.base import BaseModel


class WorkflowInstance(BaseModel):
    """One execution of a workflow definition.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: Owning definition
        organization_id: Owning organization
        status: running, paused, completed, cancelled or failed
        current_step_id: Node being executed; None once terminal
        data / variables / context: Free-form payload carried across steps
        priority: low, normal, high or urgent
        trigger_type / trigger_data: How the instance was started
        triggered_by: Actor who started the instance
        sla_deadline: Advisory deadline for an external scheduler
        paused_at / completed_at: Lifecycle timestamps
        error_message / error_step: Failure diagnosis
        version: Optimistic concurrency counter, bumped on every update
    """

    __tablename__ = "workflow_instances"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(default=InstanceStatus.RUNNING.value, index=True)
    current_step_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    variables: Mapped[dict] = mapped_column(JSON, default=dict)
    context: Mapped[dict] = mapped_column(JSON, default=dict)
    priority: Mapped[str] = mapped_column(default=Priority.NORMAL.value, index=True)
    trigger_type: Mapped[str] = mapped_column(default=TriggerType.MANUAL.value)
    trigger_data: Mapped[dict] = mapped_column(JSON, default=dict)
    triggered_by: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    error_step: Mapped[Optional[str]] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(default=1, nullable=False)

    workflow: Mapped["Workflow"] = relationship(
        "Workflow", back_populates="instances", lazy="selectin"
    )
    tasks: Mapped[list["WorkflowTask"]] = relationship(
        "WorkflowTask",
        back_populates="instance",
        cascade="all, delete-orphan",
        lazy="raise",
    )
