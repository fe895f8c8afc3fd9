"""Tests for step processors and the processor registry."""

import json

import httpx
import pytest
import structlog

from app.config import EngineConfig
from core.constants import StepType, TaskStatus
from core.exceptions import UnsupportedStepTypeError
from core.webhook_signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_webhook_signature
from notifications.channels import DeliveryResult, NotificationChannel
from processors.base import ProcessorDependencies, StepProcessor, StepProcessorResult
from processors.implementations.control import CONTROL_PROCESSORS
from processors.implementations.webhook import validate_url_safety
from processors.registry import ProcessorRegistry
from services.task_service import WorkflowTaskService

HOOK_URL = "https://hooks.example.com/workflow"


def _registry(**deps):
    return ProcessorRegistry(ProcessorDependencies(config=deps.pop("config", EngineConfig()), **deps))


def _webhook_definition(**webhook):
    return {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "hook", "type": "webhook", "data": {"config": {"webhook": webhook}}},
            {"id": "end", "type": "end"},
        ],
        "edges": [{"source": "start", "target": "hook"}, {"source": "hook", "target": "end"}],
    }


class FakeNotifications:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    async def notify(self, target_user_id, payload):
        self.calls.append((target_user_id, payload))
        if self.fail:
            raise ConnectionError("gateway down")
        return [DeliveryResult(success=True, channel=NotificationChannel.IN_APP, recipient=target_user_id)]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ContextRecorder(StepProcessor):
    step_type = StepType.START

    async def process(self, instance, step):
        self.seen = structlog.contextvars.get_contextvars()
        return StepProcessorResult(completed=True)


@pytest.mark.unit
class TestProcessorRegistry:

    def test_every_step_type_has_a_processor(self):
        registry = _registry()
        for step_type in StepType:
            assert registry.get(step_type.value).step_type == step_type
        assert sorted(registry.available_types) == sorted(t.value for t in StepType)

    def test_unknown_tag_raises(self):
        with pytest.raises(UnsupportedStepTypeError, match="Unsupported step type: delay"):
            _registry().get("delay")

    def test_incomplete_table_is_rejected(self):
        with pytest.raises(RuntimeError, match="No processor registered"):
            ProcessorRegistry(ProcessorDependencies(config=EngineConfig()), processors=CONTROL_PROCESSORS)


# ---------------------------------------------------------------------------
# Control flow
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestControlProcessors:

    async def test_start_completes_without_next_step(self, snapshot_for):
        snapshot = snapshot_for({"nodes": [{"id": "start", "type": "start"}]})
        result = await _registry().get("start").run(snapshot, snapshot.definition.get_node("start"))
        assert result.completed is True
        assert result.next_step_id is None

    async def test_run_binds_step_to_log_context(self, snapshot_for):
        snapshot = snapshot_for({"nodes": [{"id": "start", "type": "start"}]})
        recorder = ContextRecorder(ProcessorDependencies(config=EngineConfig()))

        await recorder.run(snapshot, snapshot.definition.get_node("start"))

        assert recorder.seen == {"instance_id": "inst-1", "step_id": "start", "step_type": "start"}
        assert "instance_id" not in structlog.contextvars.get_contextvars()

    async def test_end_completes_without_next_step(self, snapshot_for):
        snapshot = snapshot_for({"nodes": [{"id": "end", "type": "end"}]}, current_step_id="end")
        result = await _registry().get("end").process(snapshot, snapshot.definition.get_node("end"))
        assert result.completed is True
        assert result.next_step_id is None

    async def test_condition_without_connections_completes(self, snapshot_for):
        snapshot = snapshot_for({"nodes": [{"id": "c", "type": "condition"}]}, current_step_id="c")
        result = await _registry().get("condition").process(snapshot, snapshot.definition.get_node("c"))
        assert result.completed is True
        assert result.next_step_id is None

    async def test_condition_without_expressions_is_deterministic(self, snapshot_for):
        definition = {
            "nodes": [
                {
                    "id": "c",
                    "type": "condition",
                    "data": {"config": {"connections": [{"target_id": "a"}, {"target_id": "b"}]}},
                },
                {"id": "a", "type": "end"},
                {"id": "b", "type": "end"},
            ]
        }
        processor = _registry().get("condition")
        snapshot = snapshot_for(definition, current_step_id="c")
        step = snapshot.definition.get_node("c")

        chosen = {(await processor.process(snapshot, step)).next_step_id for _ in range(5)}
        assert chosen == {"a"}

    async def test_condition_picks_first_matching_connection(self, snapshot_for):
        definition = {
            "nodes": [
                {
                    "id": "c",
                    "type": "condition",
                    "data": {
                        "config": {
                            "connections": [
                                {"target_id": "small", "condition": {"field": "data.amount", "operator": "lt", "value": 100}},
                                {"target_id": "large", "condition": {"field": "data.amount", "operator": "gte", "value": 100}},
                            ]
                        }
                    },
                },
                {"id": "small", "type": "end"},
                {"id": "large", "type": "end"},
            ]
        }
        snapshot = snapshot_for(definition, current_step_id="c", data={"amount": 250})
        result = await _registry().get("condition").process(snapshot, snapshot.definition.get_node("c"))
        assert result.next_step_id == "large"
        assert result.data == {"branch": "large", "matched": True}

    async def test_condition_falls_back_to_unconditioned_branch(self, snapshot_for):
        definition = {
            "nodes": [
                {"id": "c", "type": "condition", "data": {"conditions": {"vip": "variables.vip"}}},
                {"id": "vip", "type": "end"},
                {"id": "standard", "type": "end"},
            ],
            "edges": [{"source": "c", "target": "vip"}, {"source": "c", "target": "standard"}],
        }
        snapshot = snapshot_for(definition, current_step_id="c", variables={"vip": False})
        result = await _registry().get("condition").process(snapshot, snapshot.definition.get_node("c"))
        assert result.next_step_id == "standard"
        assert result.data["matched"] is False


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestNotificationProcessor:

    def _definition(self, notification=None):
        config = {"notification": notification} if notification is not None else {}
        return {"nodes": [{"id": "n", "type": "notification", "data": {"config": config}}]}

    async def test_no_notification_config_completes(self, snapshot_for):
        fake = FakeNotifications()
        snapshot = snapshot_for(self._definition(), current_step_id="n")
        result = await _registry(notification_service=fake).get("notification").process(
            snapshot, snapshot.definition.get_node("n")
        )
        assert result.completed is True
        assert fake.calls == []

    async def test_defaults_come_from_engine_config(self, snapshot_for):
        fake = FakeNotifications()
        config = EngineConfig(default_notification_title="Heads up")
        snapshot = snapshot_for(self._definition({"message": "hi"}), current_step_id="n")

        result = await _registry(config=config, notification_service=fake).get("notification").process(
            snapshot, snapshot.definition.get_node("n")
        )

        assert result.completed is True
        target, payload = fake.calls[0]
        assert target == snapshot.triggered_by
        assert payload.title == "Heads up"
        assert payload.type == "info"
        assert payload.priority == "medium"
        assert payload.channels.enabled() == ["in_app"]
        assert payload.metadata["step_id"] == "n"

    async def test_explicit_recipient_and_channels(self, snapshot_for):
        fake = FakeNotifications()
        notice = {"user_id": "user-9", "title": "T", "channels": {"in_app": False, "push": True}}
        snapshot = snapshot_for(self._definition(notice), current_step_id="n")
        await _registry(notification_service=fake).get("notification").process(
            snapshot, snapshot.definition.get_node("n")
        )
        target, payload = fake.calls[0]
        assert target == "user-9"
        assert payload.channels.enabled() == ["push"]

    async def test_delivery_failure_does_not_block(self, snapshot_for):
        fake = FakeNotifications(fail=True)
        snapshot = snapshot_for(self._definition({"title": "T"}), current_step_id="n")
        result = await _registry(notification_service=fake).get("notification").process(
            snapshot, snapshot.definition.get_node("n")
        )
        assert result.completed is True
        assert "gateway down" in result.error


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------

@pytest.mark.unit
class TestWebhookProcessor:

    async def _run(self, snapshot_for, client, config=None, **webhook):
        snapshot = snapshot_for(_webhook_definition(**webhook), current_step_id="hook", data={"order": 7})
        registry = _registry(config=config or EngineConfig(), http_client=client)
        return await registry.get("webhook").process(snapshot, snapshot.definition.get_node("hook"))

    async def test_success_returns_response_body(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(200, json={"accepted": True}))
        result = await self._run(snapshot_for, client, url=HOOK_URL, payload={"source": "erp"})

        assert result.completed is True
        assert result.data == {"accepted": True}

        request = client.requests[0]
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {
            "workflowInstanceId": "inst-1",
            "stepId": "hook",
            "data": {"order": 7},
            "source": "erp",
        }

    async def test_server_error_suspends(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(500))
        result = await self._run(snapshot_for, client, url=HOOK_URL)
        assert result.completed is False
        assert result.error == "Webhook failed with status 500"

    async def test_transport_error_suspends(self, snapshot_for, mock_http):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        result = await self._run(snapshot_for, mock_http(boom), url=HOOK_URL)
        assert result.completed is False
        assert "refused" in result.error

    async def test_missing_url_suspends(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(200))
        result = await self._run(snapshot_for, client)
        assert result.completed is False
        assert "url" in result.error
        assert client.requests == []

    async def test_custom_method_and_headers(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(204))
        result = await self._run(
            snapshot_for, client, url=HOOK_URL, method="put", headers={"X-Api-Key": "k"}
        )
        assert result.completed is True
        assert result.data == {}
        assert client.requests[0].method == "PUT"
        assert client.requests[0].headers["x-api-key"] == "k"

    async def test_non_json_body_returned_as_text(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(200, text="ok"))
        result = await self._run(snapshot_for, client, url=HOOK_URL)
        assert result.data == {"text": "ok"}

    async def test_signed_when_secret_configured(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(200, json={}))
        await self._run(snapshot_for, client, url=HOOK_URL, secret="whsec_test")

        request = client.requests[0]
        assert verify_webhook_signature(
            request.content,
            "whsec_test",
            request.headers[SIGNATURE_HEADER],
            request.headers[TIMESTAMP_HEADER],
        )

    async def test_private_targets_blocked(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(200))
        result = await self._run(snapshot_for, client, url="http://127.0.0.1:8080/hook")
        assert result.completed is False
        assert "not allowed" in result.error
        assert client.requests == []

    async def test_private_targets_allowed_by_config(self, snapshot_for, mock_http):
        client = mock_http(lambda request: httpx.Response(200, json={"ok": 1}))
        config = EngineConfig(allow_private_webhook_targets=True)
        result = await self._run(snapshot_for, client, config=config, url="http://localhost:8080/hook")
        assert result.completed is True


@pytest.mark.unit
class TestUrlSafety:

    @pytest.mark.parametrize("url", [
        "ftp://example.com/file",
        "http://localhost/hook",
        "http://10.1.2.3/hook",
        "http://192.168.0.5/hook",
        "http://[::1]/hook",
        "https://example.com:6379/",
        "https:///nohost",
    ])
    def test_rejected(self, url):
        with pytest.raises(ValueError):
            validate_url_safety(url)

    def test_public_host_accepted(self):
        validate_url_safety("https://hooks.example.com/path?x=1")


# ---------------------------------------------------------------------------
# Task / approval
# ---------------------------------------------------------------------------

@pytest.mark.integration
class TestHumanProcessors:

    def _definition(self, step_type="task", config=None, **data):
        return {
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "work", "type": step_type, "data": {"label": "Review invoice", "config": config or {}, **data}},
                {"id": "done", "type": "end"},
                {"id": "redo", "type": "task"},
            ],
            "edges": [
                {"source": "work", "target": "done", "data": {"label": "approved"}},
                {"source": "work", "target": "redo", "data": {"label": "rework"}},
            ],
        }

    async def _seed_instance(self, make_workflow, service, definition):
        from schemas.execution import CreateWorkflowInstanceRequest

        workflow = await make_workflow(definition["nodes"], definition["edges"])
        return await service.create_workflow_instance(
            CreateWorkflowInstanceRequest(workflow_id=workflow.id), actor_id="user-test"
        )

    async def test_task_created_and_instance_suspends(self, db_session, service, make_workflow, snapshot_for):
        definition = self._definition(config={"assigneeId": "user-5", "priority": "urgent"})
        instance = await self._seed_instance(make_workflow, service, definition)
        snapshot = snapshot_for(definition, current_step_id="work", id=instance.id)

        result = await service.registry.get("task").process(snapshot, snapshot.definition.get_node("work"))

        assert result.completed is False
        task = await service.tasks.find_step_task(instance.id, "work")
        assert task.name == "Review invoice"
        assert task.task_type == "manual"
        assert task.priority == "urgent"
        assert task.assignee_id == "user-5"
        assert task.assigned_by == "user-test"
        assert task.status == TaskStatus.PENDING.value

    async def test_approval_defaults(self, service, make_workflow, snapshot_for):
        definition = self._definition(step_type="approval")
        instance = await self._seed_instance(make_workflow, service, definition)
        snapshot = snapshot_for(definition, current_step_id="work", id=instance.id)

        await service.registry.get("approval").process(snapshot, snapshot.definition.get_node("work"))

        task = await service.tasks.find_step_task(instance.id, "work")
        assert task.name == "Approval: Review invoice"
        assert task.description == "Approval required"
        assert task.task_type == "approval"
        assert task.priority == "high"

    async def test_sla_hours_sets_due_date(self, service, make_workflow, snapshot_for):
        definition = self._definition(sla_hours=4)
        instance = await self._seed_instance(make_workflow, service, definition)
        snapshot = snapshot_for(definition, current_step_id="work", id=instance.id)

        await service.registry.get("task").process(snapshot, snapshot.definition.get_node("work"))

        task = await service.tasks.find_step_task(instance.id, "work")
        assert task.due_date is not None

    async def test_reprocessing_open_task_does_not_duplicate(self, service, make_workflow, snapshot_for):
        definition = self._definition()
        instance = await self._seed_instance(make_workflow, service, definition)
        snapshot = snapshot_for(definition, current_step_id="work", id=instance.id)
        processor = service.registry.get("task")
        step = snapshot.definition.get_node("work")

        await processor.process(snapshot, step)
        second = await processor.process(snapshot, step)

        assert second.completed is False
        assert len(await service.tasks.get_workflow_tasks(instance.id)) == 1

    async def test_completed_task_follows_outcome_label(self, service, make_workflow, snapshot_for):
        from schemas.execution import CompleteWorkflowTaskRequest

        definition = self._definition()
        instance = await self._seed_instance(make_workflow, service, definition)
        snapshot = snapshot_for(definition, current_step_id="work", id=instance.id)
        processor = service.registry.get("task")
        step = snapshot.definition.get_node("work")

        await processor.process(snapshot, step)
        task = await service.tasks.find_step_task(instance.id, "work")
        await service.tasks.complete_workflow_task(
            task.id, CompleteWorkflowTaskRequest(outcome="rework"), actor_id="user-2"
        )

        result = await processor.process(snapshot, step)
        assert result.completed is True
        assert result.next_step_id == "redo"
        assert result.data["outcome"] == "rework"

    async def test_invalid_priority_suspends_with_error(self, service, make_workflow, snapshot_for):
        definition = self._definition(config={"priority": "whenever"})
        instance = await self._seed_instance(make_workflow, service, definition)
        snapshot = snapshot_for(definition, current_step_id="work", id=instance.id)

        result = await service.registry.get("task").process(snapshot, snapshot.definition.get_node("work"))

        assert result.completed is False
        assert "Invalid task config" in result.error
        assert await service.tasks.find_step_task(instance.id, "work") is None

    async def test_task_processor_requires_task_service(self, snapshot_for):
        snapshot = snapshot_for(self._definition(), current_step_id="work")
        with pytest.raises(RuntimeError, match="task service"):
            await _registry().get("task").process(snapshot, snapshot.definition.get_node("work"))


@pytest.mark.integration
async def test_task_service_is_shared_with_processors(db_session):
    tasks = WorkflowTaskService(db_session)
    registry = _registry(task_service=tasks)
    assert registry.get("approval").deps.task_service is tasks
