"""Engine bootstrap for a host process.

A host (API server, worker, script) calls :func:`startup` once, then builds a
WorkflowExecutionService per unit of work:

    engine, sessions = await startup()
    async with sessions() as session:
        service = build_execution_service(session)
        instance = await service.execute_workflow(request, actor_id="user-1")
        await session.commit()

A step failure is the exception: the service commits the `failed` mark
itself before raising, so it survives the rollback of the caller.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config import EngineConfig, Settings, get_settings
from core.logging_config import setup_logging
from db.session import create_db_engine, create_session_factory, init_db
from notifications.manager import NotificationService
from services.workflow_execution import WorkflowExecutionService

logger = logging.getLogger(__name__)


async def startup(
    settings: Optional[Settings] = None,
    create_tables: bool = True,
) -> tuple[AsyncEngine, async_sessionmaker]:
    """Configure logging, open the database and (optionally) create tables."""
    settings = settings or get_settings()
    setup_logging(settings)

    engine = create_db_engine(settings.DATABASE_URL, settings.SQLALCHEMY_ECHO)
    if create_tables:
        await init_db(engine)

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} ready ({settings.ENVIRONMENT})")
    return engine, create_session_factory(engine)


def build_execution_service(
    session: AsyncSession,
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> WorkflowExecutionService:
    """Wire an execution service and its collaborators onto ``session``."""
    settings = settings or get_settings()
    return WorkflowExecutionService(
        session,
        EngineConfig.from_settings(settings),
        notification_service=NotificationService(session, settings, http_client=http_client),
        http_client=http_client,
    )
