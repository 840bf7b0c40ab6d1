"""SQLAlchemy database models for the workflow service."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="atendimento", index=True)
    definition = Column(JSON, nullable=False)  # {"nodes": [...], "edges": [...]}
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    instances = relationship("WorkflowInstanceModel", back_populates="workflow", cascade="all, delete-orphan")


class UserWorkflowModel(Base):
    """Binding of an external identity (phone number) to a workflow."""
    __tablename__ = "user_workflows"

    phone = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class WorkflowInstanceModel(Base):
    """Progress of a step-by-step workflow for one identity."""
    __tablename__ = "workflow_instances"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    identity = Column(String, nullable=False)
    step_index = Column(Integer, nullable=False, default=0)
    context = Column(JSON, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    workflow = relationship("WorkflowModel", back_populates="instances")

    __table_args__ = (
        Index("idx_workflow_instances_identity_active", "identity", "active"),
    )


class InboundMessageModel(Base):
    """Inbound chat message as received from the provider."""
    __tablename__ = "whatsapp_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender = Column("from", String, nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    received_at = Column(DateTime, default=datetime.utcnow)


class EmailQueueModel(Base):
    """Email waiting to be sent by a separate mailer."""
    __tablename__ = "email_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    to = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, default=datetime.utcnow)


class WorkflowRunModel(Base):
    """History of a workflow run or of one instance step."""
    __tablename__ = "workflow_runs"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, nullable=True, index=True)
    identity = Column(String, nullable=True)
    mode = Column(String, nullable=False)
    status = Column(String, nullable=False)
    steps = Column(JSON, nullable=False, default=list)
    error_message = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
