"""Request / response DTOs produced and consumed by the execution service."""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from core.constants import (
    AssignmentType,
    InstanceStatus,
    Priority,
    TaskStatus,
    TaskType,
    TriggerType,
    WorkflowAction,
)

JsonMap = Dict[str, JsonValue]


class ExecuteWorkflowRequest(BaseModel):
    """Request to create an instance of a workflow and start advancing it."""

    workflow_id: str = Field(min_length=1)
    data: JsonMap = Field(default_factory=dict)
    variables: JsonMap = Field(default_factory=dict)
    priority: Optional[Priority] = None
    sla_deadline: Optional[datetime] = None


class CreateWorkflowInstanceRequest(BaseModel):
    """Request to create (but not advance) a workflow instance."""

    workflow_id: str = Field(min_length=1)
    data: JsonMap = Field(default_factory=dict)
    variables: JsonMap = Field(default_factory=dict)
    context: JsonMap = Field(default_factory=dict)
    priority: Optional[Priority] = None
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_data: JsonMap = Field(default_factory=dict)
    sla_deadline: Optional[datetime] = None


class UpdateWorkflowInstanceRequest(BaseModel):
    """Direct patch of an instance; ``version`` is the version the caller read."""

    version: int = Field(ge=1)
    status: Optional[InstanceStatus] = None
    current_step_id: Optional[str] = None
    data: Optional[JsonMap] = None
    variables: Optional[JsonMap] = None
    context: Optional[JsonMap] = None
    priority: Optional[Priority] = None
    sla_deadline: Optional[datetime] = None
    error_message: Optional[str] = None
    error_step: Optional[str] = None


class WorkflowActionRequest(BaseModel):
    """Lifecycle command: pause, resume or cancel."""

    action: WorkflowAction
    reason: Optional[str] = Field(default=None, max_length=1000)


class WorkflowInstanceQueryRequest(BaseModel):
    """Filters and pagination for listing instances."""

    workflow_id: Optional[str] = None
    status: Optional[InstanceStatus] = None
    priority: Optional[Priority] = None
    triggered_by: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: Literal["created_at", "completed_at", "priority"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class WorkflowInstanceResponse(BaseModel):
    """Instance as returned to callers of the engine."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    organization_id: Optional[str] = None
    status: InstanceStatus
    current_step_id: Optional[str] = None
    data: JsonMap = Field(default_factory=dict)
    variables: JsonMap = Field(default_factory=dict)
    context: JsonMap = Field(default_factory=dict)
    priority: Priority
    trigger_type: TriggerType
    trigger_data: JsonMap = Field(default_factory=dict)
    triggered_by: Optional[str] = None
    sla_deadline: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    error_step: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None


class WorkflowInstanceListResponse(BaseModel):
    """Paginated list of instances."""

    instances: List[WorkflowInstanceResponse]
    total: int
    page: int
    limit: int


class CreateWorkflowTaskRequest(BaseModel):
    """Task the task / approval processors hand to the task service."""

    instance_id: str
    step_id: str
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    task_type: TaskType = TaskType.MANUAL
    priority: Priority = Priority.NORMAL
    assignee_id: Optional[str] = None
    assignment_type: AssignmentType = AssignmentType.MANUAL
    due_date: Optional[datetime] = None
    form_data: JsonMap = Field(default_factory=dict)
    attachments: List[str] = Field(default_factory=list)


class CompleteWorkflowTaskRequest(BaseModel):
    """Resolution of a task by the actor working on it."""

    outcome: str = Field(min_length=1)
    completion_note: Optional[str] = Field(default=None, max_length=1000)
    form_data: Optional[JsonMap] = None


class UpdateWorkflowTaskRequest(BaseModel):
    """Partial edit of an open task: reassignment, pick-up, scheduling."""

    status: Optional[TaskStatus] = None
    assignee_id: Optional[str] = None
    assignment_type: Optional[AssignmentType] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    form_data: Optional[JsonMap] = None


class NotificationChannels(BaseModel):
    in_app: bool = True
    email: bool = False
    push: bool = False

    def enabled(self) -> List[str]:
        return [name for name, on in self.model_dump().items() if on]


class NotificationPayload(BaseModel):
    """What a notification step asks the notification service to deliver."""

    title: str
    message: str = ""
    type: str = "info"
    priority: str = "medium"
    channels: NotificationChannels = Field(default_factory=NotificationChannels)
    email: Optional[str] = None
    organization_id: Optional[str] = None
    metadata: JsonMap = Field(default_factory=dict)
