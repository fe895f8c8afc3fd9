"""Workflow definition model."""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import WorkflowStatus
from db.base import BaseModel


class Workflow(BaseModel):
    """A workflow definition: the graph of typed steps an instance runs through.

    Attributes:
        id: Unique identifier (UUID string)
        organization_id: Owning organization (None for unscoped definitions)
        name: Workflow name
        description: Workflow description
        definition: JSON graph ({"nodes": [...], "edges": [...], ...})
        version: Definition version number
        status: Definition status (draft, active, inactive, archived)
        created_by: Actor who created the definition
    """

    __tablename__ = "workflows"

    organization_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    definition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(default=1)
    status: Mapped[str] = mapped_column(default=WorkflowStatus.ACTIVE.value, index=True)

    instances: Mapped[list["WorkflowInstance"]] = relationship(
        "WorkflowInstance",
        back_populates="workflow",
        lazy="raise",
    )
