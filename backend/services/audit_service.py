"""Audit service — writes engine actions to the audit log."""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import AuditCategory, AuditResource, AuditSeverity
from db.models.audit_log import AuditLog
from services.base import BaseService

logger = logging.getLogger(__name__)


class AuditService(BaseService[AuditLog]):
    """Append-only audit log writer."""

    def __init__(self, db: AsyncSession):
        super().__init__(AuditLog, db)

    async def log(
        self,
        action: str,
        resource: AuditResource,
        resource_id: str,
        user_id: Optional[str],
        organization_id: Optional[str] = None,
        category: AuditCategory = AuditCategory.WORKFLOW,
        severity: AuditSeverity = AuditSeverity.INFO,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        """Record one audit event."""
        entry = await self.create({
            "action": action,
            "resource_type": resource.value,
            "resource_id": resource_id,
            "user_id": user_id,
            "organization_id": organization_id,
            "category": category.value,
            "severity": severity.value,
            "details": metadata or {},
        })
        logger.info(
            f"Audit: {action} {resource.value} {resource_id} by {user_id or 'unknown'}"
        )
        return entry

    async def for_resource(self, resource_id: str) -> Sequence[AuditLog]:
        """All audit entries for one resource, oldest first."""
        items, _ = await self.list(
            filters={"resource_id": resource_id},
            order_by=AuditLog.created_at.asc(),
            limit=1000,
        )
        return items
