"""Notification step processor.

Delivery is best effort: whatever happens, the step completes.
"""

import structlog

from core.constants import StepType
from processors.base import InstanceSnapshot, StepProcessor, StepProcessorResult
from schemas.execution import NotificationChannels, NotificationPayload
from schemas.workflow import WorkflowNode

logger = structlog.get_logger(__name__)


class NotificationProcessor(StepProcessor):
    """Send a notification described by ``config["notification"]``.

    Config:
        notification:
            user_id: Recipient (default: the actor who started the instance)
            title, message, type, priority
            channels: {"in_app": bool, "email": bool, "push": bool}
            email: Address for the email channel
    """

    step_type = StepType.NOTIFICATION

    def build_payload(self, instance: InstanceSnapshot, step: WorkflowNode, notice: dict) -> NotificationPayload:
        channels = notice.get("channels")
        if not isinstance(channels, dict):
            channels = {name: True for name in self.config.default_notification_channels}
            channels = {"in_app": False, **channels}

        return NotificationPayload(
            title=notice.get("title") or self.config.default_notification_title,
            message=notice.get("message") or "",
            type=notice.get("type") or self.config.default_notification_type,
            priority=notice.get("priority") or self.config.default_notification_priority,
            channels=NotificationChannels(**channels),
            email=notice.get("email"),
            organization_id=instance.organization_id,
            metadata={
                "workflow_instance_id": instance.id,
                "workflow_id": instance.workflow_id,
                "step_id": step.id,
            },
        )

    async def process(self, instance: InstanceSnapshot, step: WorkflowNode) -> StepProcessorResult:
        notice = step.config.get("notification")
        if not isinstance(notice, dict):
            return StepProcessorResult(completed=True)

        service = self.deps.notification_service
        if service is None:
            raise RuntimeError("notification processor needs a notification service")

        target = (
            notice.get("user_id")
            or notice.get("userId")
            or instance.triggered_by
            or self.config.system_actor_id
        )

        try:
            payload = self.build_payload(instance, step, notice)
            results = await service.notify(target, payload)
        except Exception as e:
            logger.warning(
                "Notification failed, continuing",
                instance_id=instance.id,
                step_id=step.id,
                error=str(e),
            )
            return StepProcessorResult(completed=True, error=str(e))

        delivered = [r.channel.value for r in results if r.success]
        failed = {r.channel.value: r.error for r in results if not r.success}
        if failed:
            logger.warning("Notification partially delivered", step_id=step.id, failed=failed)

        return StepProcessorResult(
            completed=True,
            data={"recipient": target, "delivered": delivered, "failed": failed},
        )


NOTIFICATION_PROCESSORS = {
    StepType.NOTIFICATION: NotificationProcessor,
}
