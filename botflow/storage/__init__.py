"""Database models and storage layer."""

from .database import Base, get_session, configure_database, create_tables, drop_tables
from .models import (
    WorkflowModel,
    UserWorkflowModel,
    WorkflowInstanceModel,
    InboundMessageModel,
    EmailQueueModel,
    WorkflowRunModel,
)

__all__ = [
    "Base",
    "get_session",
    "configure_database",
    "create_tables",
    "drop_tables",
    "WorkflowModel",
    "UserWorkflowModel",
    "WorkflowInstanceModel",
    "InboundMessageModel",
    "EmailQueueModel",
    "WorkflowRunModel",
]
