"""Constants and enums for the workflow execution engine."""

from enum import Enum


class InstanceStatus(str, Enum):
    """Workflow instance status."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class StepType(str, Enum):
    """Workflow node (step) type tag."""

    START = "start"
    TASK = "task"
    APPROVAL = "approval"
    CONDITION = "condition"
    NOTIFICATION = "notification"
    WEBHOOK = "webhook"
    END = "end"


class WorkflowAction(str, Enum):
    """Externally triggered lifecycle command."""

    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


class WorkflowStatus(str, Enum):
    """Workflow definition status."""

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class Priority(str, Enum):
    """Instance and task priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    Priority.LOW.value: 0,
    Priority.NORMAL.value: 1,
    Priority.HIGH.value: 2,
    Priority.URGENT.value: 3,
}


class TriggerType(str, Enum):
    """How an instance was started."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"
    EVENT = "event"


class TaskType(str, Enum):
    """Type of human task created by a suspending step."""

    MANUAL = "manual"
    APPROVAL = "approval"


class TaskStatus(str, Enum):
    """Workflow task status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


OPEN_TASK_STATUSES = (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)


class AssignmentType(str, Enum):
    """How a task assignee is chosen."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"
    ROLE_BASED = "role_based"


class ConditionOperator(str, Enum):
    """Operators understood by the condition evaluator."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUALS = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUALS = "lte"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class AuditAction(str, Enum):
    """Audit action type."""

    CREATE = "create"
    UPDATE = "update"
    COMPLETE = "complete"
    FAIL = "fail"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


class AuditResource(str, Enum):
    """Resource types written to the audit log."""

    WORKFLOW_INSTANCE = "workflow_instance"
    WORKFLOW_TASK = "workflow_task"


class AuditCategory(str, Enum):
    """Audit log category."""

    WORKFLOW = "workflow"


class AuditSeverity(str, Enum):
    """Audit log severity."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
