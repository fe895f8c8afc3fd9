"""Workflow execution service — instance lifecycle and step advancement.

This is the only place that changes an instance's status or position:

    execute_workflow          create + advance in one call
    create_workflow_instance  persist a running instance parked on the start node
    process_workflow_instance advance until a step suspends or the graph ends
    perform_workflow_action   pause / resume / cancel
    update_workflow_instance  direct versioned patch

Every write is a compare-and-set on the instance version, so two callers
racing on the same instance cannot silently overwrite each other.
"""

import logging
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import EngineConfig, get_settings
from core.constants import (
    AuditAction,
    AuditResource,
    AuditSeverity,
    InstanceStatus,
    StepType,
    WorkflowAction,
)
from core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    WorkflowEngineError,
    WorkflowProcessingError,
    WorkflowStalledError,
)
from core.utils import utc_now
from db.models.workflow import Workflow
from db.models.workflow_instance import WorkflowInstance
from notifications.manager import NotificationService
from processors.base import InstanceSnapshot, ProcessorDependencies
from processors.registry import ProcessorRegistry
from schemas.execution import (
    CompleteWorkflowTaskRequest,
    CreateWorkflowInstanceRequest,
    ExecuteWorkflowRequest,
    UpdateWorkflowInstanceRequest,
    WorkflowActionRequest,
    WorkflowInstanceListResponse,
    WorkflowInstanceQueryRequest,
    WorkflowInstanceResponse,
)
from schemas.workflow import WorkflowDefinition
from services.audit_service import AuditService
from services.instance_store import WorkflowInstanceStore
from services.task_service import WorkflowTaskService

logger = logging.getLogger(__name__)

# (current status, action) -> new status. Anything not listed is rejected.
TRANSITIONS = {
    (InstanceStatus.RUNNING, WorkflowAction.PAUSE): InstanceStatus.PAUSED,
    (InstanceStatus.PAUSED, WorkflowAction.RESUME): InstanceStatus.RUNNING,
    (InstanceStatus.RUNNING, WorkflowAction.CANCEL): InstanceStatus.CANCELLED,
    (InstanceStatus.PAUSED, WorkflowAction.CANCEL): InstanceStatus.CANCELLED,
}

# Steps whose "no next step" answer means the workflow ends here
TERMINATING_STEP_TYPES = (StepType.END.value, StepType.CONDITION.value)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class WorkflowExecutionService:
    """Creates, advances and controls workflow instances."""

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[EngineConfig] = None,
        *,
        registry: Optional[ProcessorRegistry] = None,
        task_service: Optional[WorkflowTaskService] = None,
        notification_service: Optional[NotificationService] = None,
        audit_service: Optional[AuditService] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.db = db
        self.config = config or EngineConfig.from_settings(get_settings())
        self.store = WorkflowInstanceStore(db)
        self.audit = audit_service or AuditService(db)
        self.tasks = task_service or WorkflowTaskService(db, audit=self.audit)
        self.notifications = notification_service or NotificationService(db, http_client=http_client)
        self.registry = registry or ProcessorRegistry(
            ProcessorDependencies(
                config=self.config,
                task_service=self.tasks,
                notification_service=self.notifications,
                http_client=http_client,
            )
        )

    # ─── Definitions ───────────────────────────────────────

    async def _get_workflow(self, workflow_id: str, organization_id: Optional[str] = None) -> Workflow:
        workflow = await self.store.find_workflow_definition(workflow_id, organization_id)
        if not workflow:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    def _parse_definition(self, workflow: Workflow) -> WorkflowDefinition:
        try:
            return WorkflowDefinition.model_validate(workflow.definition or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid definition for workflow {workflow.id}: {e}") from e

    # ─── Create / execute ──────────────────────────────────

    async def execute_workflow(
        self,
        request: ExecuteWorkflowRequest,
        actor_id: str,
        organization_id: Optional[str] = None,
    ) -> WorkflowInstance:
        """Create an instance and advance it as far as it goes.

        Returns:
            The instance after advancement (running at a suspending step,
            or completed)
        """
        await self._get_workflow(request.workflow_id, organization_id)

        instance = await self.create_workflow_instance(
            CreateWorkflowInstanceRequest(
                workflow_id=request.workflow_id,
                data=request.data,
                variables=request.variables,
                priority=request.priority,
                sla_deadline=request.sla_deadline,
            ),
            actor_id,
            organization_id,
        )
        return await self.process_workflow_instance(instance.id)

    async def create_workflow_instance(
        self,
        data: CreateWorkflowInstanceRequest,
        actor_id: str,
        organization_id: Optional[str] = None,
    ) -> WorkflowInstance:
        """Persist a running instance positioned on the start node.

        Raises:
            NotFoundError: Unknown workflow (or outside the organization)
            MissingStartNodeError: Definition has no start node
            ValidationError: Definition graph is malformed
        """
        workflow = await self._get_workflow(data.workflow_id, organization_id)
        definition = self._parse_definition(workflow)
        start = definition.start_node(workflow.id)

        issues = definition.validate_graph()
        if issues:
            raise ValidationError(f"Invalid workflow definition: {'; '.join(issues)}")

        instance = await self.store.create_instance({
            "workflow_id": workflow.id,
            "organization_id": organization_id or workflow.organization_id,
            "status": InstanceStatus.RUNNING.value,
            "current_step_id": start.id,
            "data": dict(data.data),
            "variables": {**definition.variables, **data.variables},
            "context": dict(data.context),
            "priority": _plain(data.priority) or self.config.default_instance_priority,
            "trigger_type": _plain(data.trigger_type),
            "trigger_data": dict(data.trigger_data),
            "triggered_by": actor_id,
            "sla_deadline": data.sla_deadline,
        })

        await self.audit.log(
            action=AuditAction.CREATE.value,
            resource=AuditResource.WORKFLOW_INSTANCE,
            resource_id=instance.id,
            user_id=actor_id,
            organization_id=instance.organization_id,
            metadata={
                "workflow_id": workflow.id,
                "workflow_version": workflow.version,
                "trigger_type": instance.trigger_type,
            },
        )
        return instance

    # ─── Advancement ───────────────────────────────────────

    async def process_workflow_instance(self, instance_id: str) -> WorkflowInstance:
        """Advance a running instance until it suspends or finishes.

        Does nothing for an instance that is not running.

        Raises:
            NotFoundError: Unknown instance
            UnsupportedStepTypeError: Step type has no processor (instance failed)
            WorkflowStalledError: Too many steps in one call (instance failed)
            WorkflowProcessingError: A processor raised (instance failed)
            ConcurrentModificationError: Instance changed underneath us
        """
        instance = await self.store.find_instance(instance_id)
        if not instance:
            raise NotFoundError(f"Workflow instance {instance_id} not found")
        if instance.status != InstanceStatus.RUNNING.value:
            logger.debug(f"Instance {instance_id} is {instance.status}, nothing to process")
            return instance

        try:
            workflow = await self._get_workflow(instance.workflow_id)
            definition = self._parse_definition(workflow)
        except WorkflowEngineError as e:
            await self._fail(instance, e, instance.current_step_id)
            raise

        max_steps = self.config.max_steps_per_invocation
        steps = 0

        while True:
            if steps >= max_steps:
                error = WorkflowStalledError(instance.id, max_steps)
                await self._fail(instance, error, instance.current_step_id)
                raise error

            step = definition.get_node(instance.current_step_id)
            if step is None:
                error = ValidationError(
                    f"Step {instance.current_step_id} not found in workflow {instance.workflow_id}"
                )
                await self._fail(instance, error, instance.current_step_id)
                raise error

            snapshot = InstanceSnapshot.from_instance(instance, definition)
            try:
                processor = self.registry.get(step.type)
                result = await processor.run(snapshot, step)
                next_step_id = result.next_step_id
                if result.completed and next_step_id is None and step.type not in TERMINATING_STEP_TYPES:
                    next_step_id = definition.successor(step.id)
            except WorkflowEngineError as e:
                await self._fail(instance, e, step.id)
                raise
            except Exception as e:
                await self._fail(instance, e, step.id)
                raise WorkflowProcessingError(e) from e

            steps += 1

            if not result.completed:
                return instance

            context = instance.context or {}
            if result.data is not None:
                outputs = context.get("step_outputs")
                if not isinstance(outputs, dict):
                    outputs = {}
                context = {**context, "step_outputs": {**outputs, step.id: result.data}}

            if next_step_id is None:
                return await self._complete(instance, context, steps)

            instance = await self.store.update_instance(
                instance.id,
                {"current_step_id": next_step_id, "context": context},
                expected_version=instance.version,
            )

    async def _complete(self, instance: WorkflowInstance, context: dict, steps: int) -> WorkflowInstance:
        last_step = instance.current_step_id
        instance = await self.store.update_instance(
            instance.id,
            {
                "status": InstanceStatus.COMPLETED.value,
                "completed_at": utc_now(),
                "current_step_id": None,
                "context": context,
            },
            expected_version=instance.version,
        )
        await self.audit.log(
            action=AuditAction.COMPLETE.value,
            resource=AuditResource.WORKFLOW_INSTANCE,
            resource_id=instance.id,
            user_id=self.config.system_actor_id,
            organization_id=instance.organization_id,
            metadata={"workflow_id": instance.workflow_id, "last_step_id": last_step, "steps": steps},
        )
        logger.info(f"Workflow instance {instance.id} completed")
        return instance

    async def _fail(self, instance: WorkflowInstance, error: Exception, step_id: Optional[str]) -> WorkflowInstance:
        message = error.message if isinstance(error, WorkflowEngineError) else str(error)
        logger.error(f"Workflow instance {instance.id} failed at step {step_id}: {message}")

        instance = await self.store.update_instance(
            instance.id,
            {
                "status": InstanceStatus.FAILED.value,
                "error_message": message,
                "error_step": step_id,
            },
            expected_version=instance.version,
        )
        await self.audit.log(
            action=AuditAction.FAIL.value,
            resource=AuditResource.WORKFLOW_INSTANCE,
            resource_id=instance.id,
            user_id=self.config.system_actor_id,
            organization_id=instance.organization_id,
            severity=AuditSeverity.ERROR,
            metadata={
                "workflow_id": instance.workflow_id,
                "step_id": step_id,
                "error": message,
                "error_type": type(error).__name__,
            },
        )
        # Committed here: callers only commit when the call returns.
        await self.db.commit()
        return instance

    # ─── Lifecycle actions ─────────────────────────────────

    async def perform_workflow_action(
        self,
        instance_id: str,
        action: WorkflowActionRequest,
        actor_id: str,
        organization_id: Optional[str] = None,
    ) -> WorkflowInstance:
        """Pause, resume or cancel an instance.

        Resume only flips the status back to running; call
        process_workflow_instance to advance it.

        Raises:
            NotFoundError: Unknown instance (or outside the organization)
            InvalidTransitionError: Action not allowed from the current status
        """
        instance = await self.store.find_instance(instance_id, organization_id)
        if not instance:
            raise NotFoundError(f"Workflow instance {instance_id} not found")

        previous = InstanceStatus(instance.status)
        new_status = TRANSITIONS.get((previous, action.action))
        if new_status is None:
            raise InvalidTransitionError(previous.value, action.action.value)

        patch: dict[str, Any] = {"status": new_status.value}
        if action.action == WorkflowAction.PAUSE:
            patch["paused_at"] = utc_now()
        elif action.action == WorkflowAction.RESUME:
            patch["paused_at"] = None
        elif action.action == WorkflowAction.CANCEL:
            patch["completed_at"] = utc_now()

        instance = await self.store.update_instance(instance.id, patch, expected_version=instance.version)

        if action.action == WorkflowAction.CANCEL:
            await self.tasks.cancel_open_tasks(instance.id)

        await self.audit.log(
            action=AuditAction(action.action.value).value,
            resource=AuditResource.WORKFLOW_INSTANCE,
            resource_id=instance.id,
            user_id=actor_id,
            organization_id=instance.organization_id,
            metadata={
                "previous_status": previous.value,
                "new_status": new_status.value,
                "reason": action.reason,
            },
        )
        logger.info(
            f"Workflow instance {instance.id}: {action.action.value} "
            f"({previous.value} -> {new_status.value}) by {actor_id}"
        )
        return instance

    async def complete_workflow_task(
        self,
        task_id: str,
        request: CompleteWorkflowTaskRequest,
        actor_id: str,
        organization_id: Optional[str] = None,
    ) -> WorkflowInstance:
        """Resolve a task and let its instance continue."""
        task = await self.tasks.get_workflow_task(task_id)
        if not task:
            raise NotFoundError(f"Workflow task {task_id} not found")
        instance = await self.store.find_instance(task.instance_id, organization_id)
        if not instance:
            raise NotFoundError(f"Workflow task {task_id} not found")

        await self.tasks.complete_workflow_task(task_id, request, actor_id, instance.organization_id)
        return await self.process_workflow_instance(instance.id)

    # ─── Direct accessors ──────────────────────────────────

    async def update_workflow_instance(
        self,
        instance_id: str,
        data: UpdateWorkflowInstanceRequest,
    ) -> WorkflowInstance:
        """Patch an instance the caller last read at ``data.version``.

        Raises:
            NotFoundError: Unknown instance
            ValidationError: current_step_id is not a node of the definition
            ConcurrentModificationError: The instance moved past ``data.version``
        """
        instance = await self.store.find_instance(instance_id)
        if not instance:
            raise NotFoundError(f"Workflow instance {instance_id} not found")

        patch = {
            key: _plain(value)
            for key, value in data.model_dump(exclude_unset=True, exclude={"version"}).items()
        }

        if patch.get("current_step_id") is not None:
            workflow = await self._get_workflow(instance.workflow_id)
            if self._parse_definition(workflow).get_node(patch["current_step_id"]) is None:
                raise ValidationError(f"Step {patch['current_step_id']} not found in workflow {workflow.id}")

        if patch.get("status") == InstanceStatus.COMPLETED.value:
            patch.setdefault("completed_at", utc_now())

        instance = await self.store.update_instance(instance_id, patch, expected_version=data.version)

        await self.audit.log(
            action=AuditAction.UPDATE.value,
            resource=AuditResource.WORKFLOW_INSTANCE,
            resource_id=instance.id,
            user_id=self.config.system_actor_id,
            organization_id=instance.organization_id,
            metadata={"fields": sorted(patch)},
        )
        return instance

    async def get_workflow_instance(
        self,
        instance_id: str,
        organization_id: Optional[str] = None,
    ) -> Optional[WorkflowInstance]:
        return await self.store.find_instance(instance_id, organization_id)

    async def get_workflow_instances(
        self,
        query: WorkflowInstanceQueryRequest,
        organization_id: Optional[str] = None,
    ) -> WorkflowInstanceListResponse:
        """Filtered, sorted, paginated instances."""
        filters = {
            "workflow_id": query.workflow_id,
            "status": query.status,
            "priority": query.priority,
            "triggered_by": query.triggered_by,
        }
        items, total = await self.store.list_instances(
            filters,
            page=query.page,
            limit=query.limit,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
            organization_id=organization_id,
        )
        return WorkflowInstanceListResponse(
            instances=[WorkflowInstanceResponse.model_validate(item) for item in items],
            total=total,
            page=query.page,
            limit=query.limit,
        )
