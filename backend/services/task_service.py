"""Workflow task service.

Tasks are the human side of ``task`` and ``approval`` steps: the step creates
one, the instance parks, and completing the task is what lets the instance
move on.
"""

import logging
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import (
    OPEN_TASK_STATUSES,
    AuditAction,
    AuditResource,
    TaskStatus,
)
from core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from core.utils import utc_now
from db.models.workflow_task import WorkflowTask
from schemas.execution import (
    CompleteWorkflowTaskRequest,
    CreateWorkflowTaskRequest,
    UpdateWorkflowTaskRequest,
)
from services.audit_service import AuditService
from services.base import BaseService

logger = logging.getLogger(__name__)

REJECTION_OUTCOMES = ("reject", "rejected", "deny", "denied")
CLEARABLE_TASK_FIELDS = ("assignee_id", "due_date")


class WorkflowTaskService(BaseService[WorkflowTask]):
    """Create, look up and resolve workflow tasks."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        super().__init__(WorkflowTask, db)
        self.audit = audit or AuditService(db)

    async def create_workflow_task(
        self,
        request: CreateWorkflowTaskRequest,
        creator_id: str,
        organization_id: Optional[str] = None,
    ) -> WorkflowTask:
        task = await self.create({
            "instance_id": request.instance_id,
            "step_id": request.step_id,
            "name": request.name,
            "description": request.description,
            "task_type": request.task_type.value,
            "status": TaskStatus.PENDING.value,
            "priority": request.priority.value,
            "assignee_id": request.assignee_id,
            "assigned_by": creator_id,
            "assignment_type": request.assignment_type.value,
            "due_date": request.due_date,
            "form_data": request.form_data,
            "attachments": request.attachments,
        })
        await self.audit.log(
            action=AuditAction.CREATE.value,
            resource=AuditResource.WORKFLOW_TASK,
            resource_id=task.id,
            user_id=creator_id,
            organization_id=organization_id,
            metadata={
                "instance_id": task.instance_id,
                "step_id": task.step_id,
                "task_type": task.task_type,
                "assignee_id": task.assignee_id,
            },
        )
        logger.info(f"Workflow task created: {task.id} ({task.task_type}) for step {task.step_id}")
        return task

    async def get_workflow_task(self, task_id: str) -> Optional[WorkflowTask]:
        return await self.get_by_id(task_id)

    async def find_step_task(self, instance_id: str, step_id: str) -> Optional[WorkflowTask]:
        """Most recent task created for ``step_id`` of an instance."""
        query = (
            select(WorkflowTask)
            .where(
                WorkflowTask.instance_id == instance_id,
                WorkflowTask.step_id == step_id,
                WorkflowTask.is_deleted == False,  # noqa: E712
            )
            .order_by(WorkflowTask.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_workflow_tasks(
        self,
        instance_id: str,
        status: Optional[TaskStatus] = None,
        assignee_id: Optional[str] = None,
    ) -> Sequence[WorkflowTask]:
        items, _ = await self.list(
            filters={
                "instance_id": instance_id,
                "status": status.value if status else None,
                "assignee_id": assignee_id,
            },
            order_by=WorkflowTask.created_at.asc(),
            limit=1000,
        )
        return items

    async def update_workflow_task(
        self,
        task_id: str,
        request: UpdateWorkflowTaskRequest,
        actor_id: str,
        organization_id: Optional[str] = None,
    ) -> WorkflowTask:
        """Reassign, pick up or reschedule an open task.

        ``status`` may only move between ``pending`` and ``in_progress``;
        closing a task goes through :meth:`complete_workflow_task`. Form
        data is merged into what the task already holds.

        Raises:
            NotFoundError: Unknown task
            InvalidTransitionError: Task is no longer open
            ValidationError: Requested status is not an open one
        """
        task = await self.get_workflow_task(task_id)
        if not task:
            raise NotFoundError(f"Workflow task {task_id} not found")
        if task.status not in OPEN_TASK_STATUSES:
            raise InvalidTransitionError(task.status, "update")

        changes = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in request.model_dump(exclude_unset=True).items()
            if value is not None or key in CLEARABLE_TASK_FIELDS
        }
        if "status" in changes and changes["status"] not in OPEN_TASK_STATUSES:
            raise ValidationError(
                f"Task status can only be set to {', '.join(OPEN_TASK_STATUSES)}; "
                f"use complete for {changes['status']}"
            )

        if "form_data" in changes:
            changes["form_data"] = {**(task.form_data or {}), **changes["form_data"]}
        if "assignee_id" in changes and changes["assignee_id"] != task.assignee_id:
            changes.setdefault("assigned_by", actor_id)
        for key, value in changes.items():
            setattr(task, key, value)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.UPDATE.value,
            resource=AuditResource.WORKFLOW_TASK,
            resource_id=task.id,
            user_id=actor_id,
            organization_id=organization_id,
            metadata={"fields": sorted(changes), "instance_id": task.instance_id},
        )
        logger.info(f"Workflow task {task.id} updated: {', '.join(sorted(changes)) or 'no changes'}")
        return task

    async def complete_workflow_task(
        self,
        task_id: str,
        request: CompleteWorkflowTaskRequest,
        actor_id: str,
        organization_id: Optional[str] = None,
    ) -> WorkflowTask:
        """Resolve an open task with an outcome.

        A rejection outcome (``reject``, ``rejected``, ``deny``, ``denied``)
        moves the task to ``rejected``; anything else to ``completed``.

        Raises:
            NotFoundError: Unknown task
            InvalidTransitionError: Task is no longer open
        """
        task = await self.get_workflow_task(task_id)
        if not task:
            raise NotFoundError(f"Workflow task {task_id} not found")
        if task.status not in OPEN_TASK_STATUSES:
            raise InvalidTransitionError(task.status, "complete")

        outcome = request.outcome.strip()
        rejected = outcome.lower() in REJECTION_OUTCOMES
        task.status = (TaskStatus.REJECTED if rejected else TaskStatus.COMPLETED).value
        task.outcome = outcome
        task.completion_note = request.completion_note
        task.completed_by = actor_id
        task.completed_at = utc_now()
        if request.form_data is not None:
            task.form_data = {**(task.form_data or {}), **request.form_data}
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.COMPLETE.value,
            resource=AuditResource.WORKFLOW_TASK,
            resource_id=task.id,
            user_id=actor_id,
            organization_id=organization_id,
            metadata={"outcome": outcome, "status": task.status, "instance_id": task.instance_id},
        )
        logger.info(f"Workflow task {task.id} resolved as {task.status} ({outcome})")
        return task

    async def cancel_open_tasks(self, instance_id: str) -> int:
        """Cancel every pending / in-progress task of an instance."""
        stmt = (
            update(WorkflowTask)
            .where(
                WorkflowTask.instance_id == instance_id,
                WorkflowTask.status.in_(OPEN_TASK_STATUSES),
            )
            .values(status=TaskStatus.CANCELLED.value, updated_at=utc_now())
            .execution_options(synchronize_session="fetch")
        )
        result = await self.db.execute(stmt)
        if result.rowcount:
            logger.info(f"Cancelled {result.rowcount} open task(s) of instance {instance_id}")
        return result.rowcount or 0
