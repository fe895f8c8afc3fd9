"""Workflow task model (human work created by task / approval steps)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import AssignmentType, Priority, TaskStatus, TaskType
from db.base import BaseModel


class WorkflowTask(BaseModel):
    """A unit of human work that a suspended instance is waiting on.

    Attributes:
        instance_id: Instance that created the task
        step_id: Node the instance is parked at
        task_type: manual or approval
        status: pending, in_progress, completed, rejected or cancelled
        assignee_id / assigned_by / assignment_type: Assignment data
        outcome / completion_note / completed_by: Resolution data
    """

    __tablename__ = "workflow_tasks"

    instance_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    task_type: Mapped[str] = mapped_column(default=TaskType.MANUAL.value, index=True)
    status: Mapped[str] = mapped_column(default=TaskStatus.PENDING.value, index=True)
    priority: Mapped[str] = mapped_column(default=Priority.NORMAL.value)
    assignee_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    assigned_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    assignment_type: Mapped[str] = mapped_column(default=AssignmentType.MANUAL.value)
    form_data: Mapped[dict] = mapped_column(JSON, default=dict)
    attachments: Mapped[list] = mapped_column(JSON, default=list)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(nullable=True)
    completion_note: Mapped[Optional[str]] = mapped_column(nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    instance: Mapped["WorkflowInstance"] = relationship(
        "WorkflowInstance", back_populates="tasks", lazy="selectin"
    )
