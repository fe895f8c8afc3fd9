"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- In-memory async SQLite database, fresh per test
- AsyncSession bound to it
- Workflow definition factory
- Execution service wired to the test session
- httpx.MockTransport helpers for webhook / push targets
"""

import os
from typing import AsyncGenerator, Callable, Optional
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("SMTP_HOST", "")
os.environ.setdefault("PUSH_GATEWAY_URL", "")

from app.config import EngineConfig  # noqa: E402
from db.session import create_db_engine, create_session_factory, init_db  # noqa: E402
from processors.base import InstanceSnapshot  # noqa: E402
from schemas.workflow import WorkflowDefinition  # noqa: E402

ORG_ID = "org-test"
ACTOR_ID = "user-test"


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    sessions = create_session_factory(db_engine)
    async with sessions() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(max_steps_per_invocation=20)


@pytest.fixture
def make_workflow(db_session) -> Callable:
    """Persist a workflow definition built from node / edge dicts."""
    from db.models.workflow import Workflow

    async def _make(
        nodes: list,
        edges: Optional[list] = None,
        organization_id: Optional[str] = ORG_ID,
        **definition_extra,
    ) -> Workflow:
        workflow = Workflow(
            id=str(uuid4()),
            organization_id=organization_id,
            created_by=ACTOR_ID,
            name=f"Test Workflow {uuid4().hex[:6]}",
            description="A workflow for testing",
            definition={"nodes": nodes, "edges": edges or [], **definition_extra},
            version=1,
        )
        db_session.add(workflow)
        await db_session.flush()
        return workflow

    return _make


@pytest.fixture
def make_service(db_session, engine_config) -> Callable:
    """Build a WorkflowExecutionService on the test session."""
    from services.workflow_execution import WorkflowExecutionService

    def _make(http_client: Optional[httpx.AsyncClient] = None, config: Optional[EngineConfig] = None, **kwargs):
        return WorkflowExecutionService(
            db_session,
            config or engine_config,
            http_client=http_client,
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def snapshot_for() -> Callable:
    """Build an InstanceSnapshot for processor unit tests."""

    def _make(definition: dict, current_step_id: str = "start", **fields) -> InstanceSnapshot:
        values = dict(
            id="inst-1",
            workflow_id="wf-1",
            organization_id=ORG_ID,
            status="running",
            current_step_id=current_step_id,
            priority="normal",
            triggered_by=ACTOR_ID,
            version=1,
            definition=WorkflowDefinition.model_validate(definition),
        )
        values.update(fields)
        return InstanceSnapshot(**values)

    return _make


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_http() -> Callable:
    """Create an httpx.AsyncClient whose requests go to ``handler``.

    Every request seen is appended to ``client.requests``.
    """
    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        seen = []

        def _record(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
        client.requests = seen
        return client

    return _make
