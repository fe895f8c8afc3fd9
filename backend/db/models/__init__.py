"""Database models for the workflow execution engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_task import WorkflowTask
from db.models.audit_log import AuditLog
from db.models.notification import InAppNotification

__all__ = [
    "Workflow",
    "WorkflowInstance",
    "WorkflowTask",
    "AuditLog",
    "InAppNotification",
]
