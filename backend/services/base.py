"""Base service with soft-delete aware, organization scoped queries.

Engine services inherit from this and add their own semantics on top of
the shared get / list / create primitives.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic data access for any engine model.

    Usage:
        class WorkflowTaskService(BaseService[WorkflowTask]):
            def __init__(self, db: AsyncSession):
                super().__init__(WorkflowTask, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(
        self,
        id: str,
        include_deleted: bool = False,
    ) -> Optional[ModelType]:
        """Get a single record by ID."""
        query = select(self.model).where(self.model.id == id)
        if not include_deleted:
            query = query.where(self.model.is_deleted == False)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id_and_org(
        self,
        id: str,
        organization_id: Optional[str],
        include_deleted: bool = False,
    ) -> Optional[ModelType]:
        """Get a single record, scoped to an organization when one is given."""
        if not organization_id:
            return await self.get_by_id(id, include_deleted=include_deleted)

        query = select(self.model).where(
            self.model.id == id,
            self.model.organization_id == organization_id,
        )
        if not include_deleted:
            query = query.where(self.model.is_deleted == False)  # noqa: E712
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    def _apply_filters(self, query, organization_id: Optional[str], filters: Optional[dict[str, Any]]):
        if organization_id and hasattr(self.model, "organization_id"):
            query = query.where(self.model.organization_id == organization_id)

        query = query.where(self.model.is_deleted == False)  # noqa: E712

        for field, value in (filters or {}).items():
            if value is None or not hasattr(self.model, field):
                continue
            col = getattr(self.model, field)
            if isinstance(value, (list, tuple)):
                query = query.where(col.in_(value))
            else:
                query = query.where(col == value)
        return query

    async def count(
        self,
        organization_id: Optional[str] = None,
        filters: Optional[dict[str, Any]] = None,
    ) -> int:
        """Count records matching the organization scope and filters."""
        query = self._apply_filters(
            select(func.count()).select_from(self.model), organization_id, filters
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def list(
        self,
        organization_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
        order_by: Any = None,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """List records with pagination, filtering, and sorting.

        Args:
            order_by: Column expression(s) to sort by; newest first when omitted

        Returns:
            Tuple of (items, total_count)
        """
        query = self._apply_filters(select(self.model), organization_id, filters)

        if order_by is None:
            order_by = (self.model.created_at.desc(), self.model.id.desc())
        elif not isinstance(order_by, (list, tuple)):
            order_by = (order_by,)
        query = query.order_by(*order_by).offset(offset).limit(limit)

        result = await self.db.execute(query)
        items = result.scalars().all()
        total = await self.count(organization_id=organization_id, filters=filters)
        return items, total

    # ─── Create ────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create a new record.

        Args:
            data: Dict of field values

        Returns:
            Created model instance
        """
        if "id" not in data:
            data["id"] = str(uuid4())

        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance
