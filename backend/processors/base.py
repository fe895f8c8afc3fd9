"""
Base interface for workflow step processors.

Every step type (start, task, approval, condition, notification, webhook,
end) has one processor that inherits from StepProcessor and implements
process(). Processors never touch the instance record: they see a frozen
InstanceSnapshot and answer with a StepProcessorResult.
"""

import copy
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx
import structlog

from app.config import EngineConfig
from core.constants import StepType
from core.logging_config import step_log_context
from schemas.workflow import WorkflowDefinition, WorkflowNode

if TYPE_CHECKING:
    from notifications.manager import NotificationService
    from services.task_service import WorkflowTaskService

logger = structlog.get_logger(__name__)


@dataclass
class StepProcessorResult:
    """Outcome of running one step.

    completed=False parks the instance on the current step until something
    external re-invokes processing.
    """

    completed: bool
    next_step_id: Optional[str] = None
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class InstanceSnapshot:
    """Read-only copy of an instance as processors see it."""

    id: str
    workflow_id: str
    organization_id: Optional[str]
    status: str
    current_step_id: Optional[str]
    priority: str
    triggered_by: Optional[str]
    version: int
    definition: WorkflowDefinition
    data: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_instance(cls, instance, definition: WorkflowDefinition) -> "InstanceSnapshot":
        return cls(
            id=instance.id,
            workflow_id=instance.workflow_id,
            organization_id=instance.organization_id,
            status=instance.status,
            current_step_id=instance.current_step_id,
            priority=instance.priority,
            triggered_by=instance.triggered_by,
            version=instance.version,
            definition=definition,
            data=copy.deepcopy(instance.data or {}),
            variables=copy.deepcopy(instance.variables or {}),
            context=copy.deepcopy(instance.context or {}),
        )

    def scope(self) -> Dict[str, Any]:
        """Namespaces condition expressions are evaluated against."""
        return {"data": self.data, "variables": self.variables, "context": self.context}


@dataclass
class ProcessorDependencies:
    """Collaborators handed to every processor at construction time."""

    config: EngineConfig
    task_service: Optional["WorkflowTaskService"] = None
    notification_service: Optional["NotificationService"] = None
    http_client: Optional[httpx.AsyncClient] = None


class StepProcessor(ABC):
    """
    Abstract base class for step processors.

    Subclasses must implement:
    - process(instance, step) -> StepProcessorResult
    - step_type (class attribute)
    """

    step_type: StepType

    def __init__(self, deps: ProcessorDependencies):
        self.deps = deps
        self.config = deps.config

    @abstractmethod
    async def process(
        self,
        instance: InstanceSnapshot,
        step: WorkflowNode,
    ) -> StepProcessorResult:
        """
        Run the step.

        Recoverable problems (bad config, network failure) are returned as
        StepProcessorResult(completed=False, error=...). Only logic errors
        should raise.
        """

    async def run(self, instance: InstanceSnapshot, step: WorkflowNode) -> StepProcessorResult:
        """
        Run the step with timing and logging.

        This is the entry point called by the execution service. Exceptions
        are logged and re-raised; the service decides what they mean.
        """
        start = time.monotonic()
        with step_log_context(instance.id, step.id, step_type=self.step_type.value):
            logger.info("Step starting")
            try:
                result = await self.process(instance, step)
            except Exception as e:
                logger.error(
                    "Step raised",
                    error=str(e),
                    duration_ms=round((time.monotonic() - start) * 1000, 2),
                )
                raise
            self._log_result(result, start)
        return result

    def _log_result(self, result: StepProcessorResult, start: float) -> None:
        duration_ms = round((time.monotonic() - start) * 1000, 2)
        if result.completed:
            logger.info(
                "Step completed",
                next_step_id=result.next_step_id,
                duration_ms=duration_ms,
            )
        else:
            logger.warning(
                "Step suspended",
                error=result.error,
                duration_ms=duration_ms,
            )
