"""Persistence store for workflow definitions and instances.

All instance writes go through :meth:`WorkflowInstanceStore.update_instance`,
a compare-and-set on ``version``. A caller that read version N can only write
if the row is still at N; the row then moves to N + 1.
"""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import PRIORITY_RANK
from core.exceptions import ConcurrentModificationError, NotFoundError
from core.utils import calculate_offset, utc_now
from db.models.workflow import Workflow
from db.models.workflow_instance import WorkflowInstance
from services.base import BaseService

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = ("created_at", "completed_at", "priority")


class WorkflowInstanceStore(BaseService[WorkflowInstance]):
    """Reads and versioned writes for instances, plus definition lookup."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowInstance, db)

    async def find_workflow_definition(
        self,
        workflow_id: str,
        organization_id: Optional[str] = None,
    ) -> Optional[Workflow]:
        """Fetch a live (not soft-deleted) definition, org-scoped if asked."""
        query = select(Workflow).where(
            Workflow.id == workflow_id,
            Workflow.is_deleted == False,  # noqa: E712
        )
        if organization_id:
            query = query.where(Workflow.organization_id == organization_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_instance(
        self,
        instance_id: str,
        organization_id: Optional[str] = None,
    ) -> Optional[WorkflowInstance]:
        """Fetch an instance, always reloading its columns from the database."""
        query = (
            select(WorkflowInstance)
            .where(
                WorkflowInstance.id == instance_id,
                WorkflowInstance.is_deleted == False,  # noqa: E712
            )
            .execution_options(populate_existing=True)
        )
        if organization_id:
            query = query.where(WorkflowInstance.organization_id == organization_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def create_instance(self, fields: dict[str, Any]) -> WorkflowInstance:
        fields.setdefault("version", 1)
        instance = await self.create(fields)
        logger.info(f"Workflow instance created: {instance.id} (workflow {instance.workflow_id})")
        return instance

    async def update_instance(
        self,
        instance_id: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> WorkflowInstance:
        """Apply ``patch`` only if the stored version is ``expected_version``.

        Raises:
            ConcurrentModificationError: Another writer got there first
            NotFoundError: The instance does not exist
        """
        values = {k: v for k, v in patch.items() if k not in ("id", "version")}
        values["version"] = expected_version + 1
        values["updated_at"] = utc_now()

        stmt = (
            update(WorkflowInstance)
            .where(
                WorkflowInstance.id == instance_id,
                WorkflowInstance.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            existing = await self.find_instance(instance_id)
            if existing is None:
                raise NotFoundError(f"Workflow instance {instance_id} not found")
            logger.warning(
                f"Version conflict on instance {instance_id}: "
                f"expected {expected_version}, found {existing.version}"
            )
            raise ConcurrentModificationError(instance_id, expected_version)

        instance = await self.find_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Workflow instance {instance_id} not found")
        return instance

    def _filters(self, filters: Optional[dict[str, Any]]) -> dict[str, Any]:
        out = {}
        for key, value in (filters or {}).items():
            if value is None:
                continue
            out[key] = value.value if hasattr(value, "value") else value
        return out

    async def list_instances(
        self,
        filters: Optional[dict[str, Any]] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        organization_id: Optional[str] = None,
    ) -> tuple[Sequence[WorkflowInstance], int]:
        """One page of instances matching ``filters``, with the total match count."""
        if sort_by not in SORTABLE_COLUMNS:
            sort_by = "created_at"

        if sort_by == "priority":
            column = case(PRIORITY_RANK, value=WorkflowInstance.priority, else_=-1)
        else:
            column = getattr(WorkflowInstance, sort_by)

        direction = column.asc() if sort_order == "asc" else column.desc()
        tiebreak = WorkflowInstance.id.asc() if sort_order == "asc" else WorkflowInstance.id.desc()

        return await self.list(
            organization_id=organization_id,
            offset=calculate_offset(page, limit),
            limit=limit,
            order_by=(direction, tiebreak),
            filters=self._filters(filters),
        )

    async def count_instances(
        self,
        filters: Optional[dict[str, Any]] = None,
        organization_id: Optional[str] = None,
    ) -> int:
        return await self.count(organization_id=organization_id, filters=self._filters(filters))
