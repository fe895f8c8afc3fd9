"""Human-in-the-loop processors: task and approval.

Both create a workflow task when the instance arrives on the step and park
the instance. When the instance is processed again the processor looks at
the task of the current visit:

    pending / in_progress  -> still parked, no duplicate task
    completed              -> advance along the connection labelled with the
                              task outcome (else the first connection)
    rejected               -> advance along a connection labelled with the
                              outcome or "rejected" if there is one, else park
                              with an error
    cancelled              -> park with an error

A task whose outcome already moved the instance past the step (its id is in
``context["step_outputs"][step_id]``) belongs to an earlier visit; a loop
back onto the step gets a fresh task.
"""

from datetime import timedelta
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from core.constants import AssignmentType, Priority, StepType, TaskStatus, TaskType
from core.utils import utc_now
from processors.base import InstanceSnapshot, StepProcessor, StepProcessorResult
from schemas.execution import CreateWorkflowTaskRequest
from schemas.workflow import WorkflowNode

logger = structlog.get_logger(__name__)


def _pick(config: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if config.get(key) is not None:
            return config[key]
    return None


def _consumed(instance: InstanceSnapshot, step: WorkflowNode, task) -> bool:
    outputs = instance.context.get("step_outputs")
    output = outputs.get(step.id) if isinstance(outputs, dict) else None
    return isinstance(output, dict) and output.get("task_id") == task.id


class HumanTaskProcessor(StepProcessor):
    """Shared behaviour of task and approval steps."""

    task_type: TaskType = TaskType.MANUAL

    def default_priority(self) -> str:
        return self.config.default_task_priority

    def task_name(self, step: WorkflowNode) -> str:
        return step.label

    def task_description(self, step: WorkflowNode) -> str:
        return step.data.description or ""

    def build_request(self, instance: InstanceSnapshot, step: WorkflowNode) -> CreateWorkflowTaskRequest:
        config = step.config

        due_date = _pick(config, "due_date", "dueDate")
        if due_date is None:
            hours = _pick(config, "due_in_hours") or step.data.sla_hours
            if hours:
                due_date = utc_now() + timedelta(hours=float(hours))

        return CreateWorkflowTaskRequest(
            instance_id=instance.id,
            step_id=step.id,
            name=self.task_name(step)[:255],
            description=self.task_description(step),
            task_type=self.task_type,
            priority=Priority(config.get("priority") or self.default_priority()),
            assignee_id=_pick(config, "assignee_id", "assigneeId"),
            assignment_type=AssignmentType(
                _pick(config, "assignment_type", "assignmentType")
                or self.config.default_assignment_type
            ),
            due_date=due_date,
            form_data=config.get("form_data") or {},
            attachments=config.get("attachments") or [],
        )

    async def process(self, instance: InstanceSnapshot, step: WorkflowNode) -> StepProcessorResult:
        tasks = self.deps.task_service
        if tasks is None:
            raise RuntimeError(f"{self.step_type.value} processor needs a task service")

        existing = await tasks.find_step_task(instance.id, step.id)
        if existing is not None and not _consumed(instance, step, existing):
            return self._resume(instance, step, existing)

        try:
            request = self.build_request(instance, step)
        except (PydanticValidationError, ValueError, TypeError) as e:
            return StepProcessorResult(completed=False, error=f"Invalid {self.step_type.value} config: {e}")

        task = await tasks.create_workflow_task(
            request,
            creator_id=instance.triggered_by or self.config.system_actor_id,
            organization_id=instance.organization_id,
        )
        return StepProcessorResult(completed=False, data={"task_id": task.id})

    def _resume(self, instance: InstanceSnapshot, step: WorkflowNode, task) -> StepProcessorResult:
        definition = instance.definition
        output = {"task_id": task.id, "outcome": task.outcome, "form_data": task.form_data or {}}

        if task.status == TaskStatus.COMPLETED.value:
            return StepProcessorResult(
                completed=True,
                next_step_id=definition.successor(step.id, label=task.outcome),
                data=output,
            )

        if task.status == TaskStatus.REJECTED.value:
            target: Optional[str] = definition.labelled_target(step.id, task.outcome, "rejected")
            if target:
                return StepProcessorResult(completed=True, next_step_id=target, data=output)
            return StepProcessorResult(completed=False, error=f"Task {task.id} was rejected")

        if task.status == TaskStatus.CANCELLED.value:
            return StepProcessorResult(completed=False, error=f"Task {task.id} was cancelled")

        logger.debug("Task still open", task_id=task.id, status=task.status, step_id=step.id)
        return StepProcessorResult(completed=False)


class TaskProcessor(HumanTaskProcessor):
    step_type = StepType.TASK
    task_type = TaskType.MANUAL


class ApprovalProcessor(HumanTaskProcessor):
    """Approval-typed task with a higher default priority."""

    step_type = StepType.APPROVAL
    task_type = TaskType.APPROVAL

    def default_priority(self) -> str:
        return self.config.default_approval_priority

    def task_name(self, step: WorkflowNode) -> str:
        return f"Approval: {step.label}"

    def task_description(self, step: WorkflowNode) -> str:
        return step.data.description or "Approval required"


HUMAN_PROCESSORS = {
    StepType.TASK: TaskProcessor,
    StepType.APPROVAL: ApprovalProcessor,
}
