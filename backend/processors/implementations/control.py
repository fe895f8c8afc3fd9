"""Control-flow processors: start, end and condition.

These complete synchronously and never talk to a collaborator.
"""

from typing import Any, Optional

import structlog

from core.constants import StepType
from processors.base import InstanceSnapshot, StepProcessor, StepProcessorResult
from processors.conditions import ConditionEvaluator
from schemas.workflow import Connection, WorkflowNode

logger = structlog.get_logger(__name__)


class StartProcessor(StepProcessor):
    """Entry point. The step that follows comes from the definition graph."""

    step_type = StepType.START

    async def process(self, instance: InstanceSnapshot, step: WorkflowNode) -> StepProcessorResult:
        return StepProcessorResult(completed=True)


class EndProcessor(StepProcessor):
    """Terminal step."""

    step_type = StepType.END

    async def process(self, instance: InstanceSnapshot, step: WorkflowNode) -> StepProcessorResult:
        return StepProcessorResult(completed=True)


class ConditionProcessor(StepProcessor):
    """Pick the outgoing connection whose condition holds.

    Selection order:
    1. first connection whose condition evaluates true
    2. first connection without a condition (the default branch)
    3. first connection

    A condition can sit on the connection itself, on the definition edge, or
    in ``data.conditions`` keyed by target node id. With no outgoing
    connections the workflow ends here.
    """

    step_type = StepType.CONDITION

    def __init__(self, deps):
        super().__init__(deps)
        self.evaluator = ConditionEvaluator()

    def _condition_for(self, step: WorkflowNode, conn: Connection) -> Optional[Any]:
        if conn.condition is not None:
            return conn.condition
        conditions = step.data.conditions or {}
        return conditions.get(conn.target_id)

    async def process(self, instance: InstanceSnapshot, step: WorkflowNode) -> StepProcessorResult:
        connections = instance.definition.connections(step.id)
        if not connections:
            return StepProcessorResult(completed=True)

        scope = instance.scope()
        default: Optional[Connection] = None

        for conn in connections:
            condition = self._condition_for(step, conn)
            if condition is None:
                if default is None:
                    default = conn
                continue
            if self.evaluator.evaluate(condition, scope):
                logger.debug("Condition matched", step_id=step.id, target_id=conn.target_id)
                return StepProcessorResult(
                    completed=True,
                    next_step_id=conn.target_id,
                    data={"branch": conn.target_id, "matched": True},
                )

        chosen = default or connections[0]
        return StepProcessorResult(
            completed=True,
            next_step_id=chosen.target_id,
            data={"branch": chosen.target_id, "matched": False},
        )


CONTROL_PROCESSORS = {
    StepType.START: StartProcessor,
    StepType.END: EndProcessor,
    StepType.CONDITION: ConditionProcessor,
}
