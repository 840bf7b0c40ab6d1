"""State management: workflow instances, run history and the inbound message log."""

import threading
import uuid
import weakref
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import (
    ExecutionStatusEnum, ExecutionTrace, RunContext, RunMode, RunRecord, WorkflowInstance
)
from ..storage.database import get_session
from ..storage.models import InboundMessageModel, WorkflowInstanceModel, WorkflowRunModel
from .error_recovery import RetryConfig, with_retry
from .exceptions import InstanceConflictError, StateManagementError, StorageError, WorkflowNotFoundError
from .logging import get_logger

logger = get_logger(__name__)


class StateManager:
    """Persists Workflow Instances and serializes their updates per identity."""

    def __init__(self):
        # Locks live only while some caller holds them.
        self._identity_locks = weakref.WeakValueDictionary()
        self._lock_manager = threading.RLock()
        logger.info("StateManager initialized")

    def identity_lock(self, identity: str) -> threading.RLock:
        """The lock guarding the instance of one identity within this process."""
        with self._lock_manager:
            lock = self._identity_locks.get(identity)
            if lock is None:
                lock = threading.RLock()
                self._identity_locks[identity] = lock
            return lock

    def create_instance(
        self,
        workflow_id: str,
        identity: str,
        context: Optional[RunContext] = None
    ) -> WorkflowInstance:
        """
        Create the active instance of an identity, deactivating any previous one.

        The new instance starts before the first node (`step_index == -1`).
        """
        context = context or RunContext(recipient=identity)
        instance_id = str(uuid.uuid4())
        now = datetime.utcnow()

        db = get_session()
        try:
            db.execute(
                update(WorkflowInstanceModel)
                .where(WorkflowInstanceModel.identity == identity, WorkflowInstanceModel.active.is_(True))
                .values(active=False, updated_at=now)
            )
            model = WorkflowInstanceModel(
                id=instance_id,
                workflow_id=workflow_id,
                identity=identity,
                step_index=-1,
                context=context.model_dump(mode="json"),
                active=True,
                created_at=now,
                updated_at=now
            )
            db.add(model)
            db.commit()
            instance = self._to_instance(model)
        except SQLAlchemyError as e:
            db.rollback()
            raise StateManagementError(
                f"Failed to create workflow instance: {e}",
                identity=identity,
                operation="create_instance"
            )
        finally:
            db.close()

        logger.info(f"Created instance {instance_id} of workflow {workflow_id} for {identity}")
        return instance

    def get_active_instance(self, identity: str) -> Optional[WorkflowInstance]:
        db = get_session()
        try:
            model = (
                db.query(WorkflowInstanceModel)
                .filter(WorkflowInstanceModel.identity == identity, WorkflowInstanceModel.active.is_(True))
                .order_by(WorkflowInstanceModel.created_at.desc())
                .first()
            )
            return self._to_instance(model) if model else None
        except SQLAlchemyError as e:
            raise StateManagementError(f"Failed to load instance: {e}", identity=identity, operation="get_active_instance")
        finally:
            db.close()

    def get_latest_instance(self, identity: str) -> Optional[WorkflowInstance]:
        """The most recent instance of an identity, active or not."""
        db = get_session()
        try:
            model = (
                db.query(WorkflowInstanceModel)
                .filter(WorkflowInstanceModel.identity == identity)
                .order_by(WorkflowInstanceModel.created_at.desc())
                .first()
            )
            return self._to_instance(model) if model else None
        except SQLAlchemyError as e:
            raise StateManagementError(f"Failed to load instance: {e}", identity=identity, operation="get_latest_instance")
        finally:
            db.close()

    def update_instance(
        self,
        instance_id: str,
        expected_step: int,
        step_index: int,
        context: RunContext,
        active: bool
    ) -> WorkflowInstance:
        """
        Move an active instance from `expected_step` to `step_index`.

        Raises:
            InstanceConflictError: If the instance is no longer active at `expected_step`
        """
        db = get_session()
        try:
            result = db.execute(
                update(WorkflowInstanceModel)
                .where(
                    WorkflowInstanceModel.id == instance_id,
                    WorkflowInstanceModel.step_index == expected_step,
                    WorkflowInstanceModel.active.is_(True)
                )
                .values(
                    step_index=step_index,
                    context=context.model_dump(mode="json"),
                    active=active,
                    updated_at=datetime.utcnow()
                )
            )
            if result.rowcount != 1:
                db.rollback()
                raise InstanceConflictError(
                    f"Instance {instance_id} was advanced concurrently",
                    expected_step=expected_step,
                    operation="update_instance"
                )
            db.commit()
            model = db.get(WorkflowInstanceModel, instance_id)
            instance = self._to_instance(model)
        except SQLAlchemyError as e:
            db.rollback()
            raise StateManagementError(f"Failed to update instance: {e}", operation="update_instance")
        finally:
            db.close()

        logger.debug(f"Instance {instance_id} moved to step {step_index} (active={active})")
        return instance

    @with_retry(RetryConfig(max_attempts=3, base_delay=0.2, retryable_exceptions=[StorageError]))
    def record_run(
        self,
        trace: ExecutionTrace,
        workflow_id: Optional[str] = None,
        identity: Optional[str] = None
    ) -> None:
        """Store a run's trace in the run history."""
        db = get_session()
        try:
            db.merge(WorkflowRunModel(
                id=trace.run_id,
                workflow_id=workflow_id,
                identity=identity,
                mode=trace.mode.value,
                status=trace.status.value,
                steps=trace.lines(),
                error_message=trace.error_message,
                started_at=trace.started_at,
                completed_at=trace.completed_at
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record run: {e}", operation="record_run", table="workflow_runs")
        finally:
            db.close()

    def get_run(self, run_id: str) -> RunRecord:
        db = get_session()
        try:
            model = db.get(WorkflowRunModel, run_id)
            if model is None:
                raise WorkflowNotFoundError(f"Run '{run_id}' not found", operation="get_run", table="workflow_runs")
            return self._to_run(model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load run: {e}", operation="get_run", table="workflow_runs")
        finally:
            db.close()

    def list_runs(self, workflow_id: Optional[str] = None, limit: int = 50) -> List[RunRecord]:
        """Most recent runs first, optionally for one workflow."""
        db = get_session()
        try:
            query = db.query(WorkflowRunModel)
            if workflow_id:
                query = query.filter(WorkflowRunModel.workflow_id == workflow_id)
            models = query.order_by(WorkflowRunModel.started_at.desc()).limit(limit).all()
            return [self._to_run(model) for model in models]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list runs: {e}", operation="list_runs", table="workflow_runs")
        finally:
            db.close()

    def record_inbound_message(self, sender: str, body: str) -> None:
        db = get_session()
        try:
            db.add(InboundMessageModel(sender=sender, body=body or ""))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to store inbound message: {e}", operation="record_message", table="whatsapp_messages")
        finally:
            db.close()

    @staticmethod
    def _to_instance(model: WorkflowInstanceModel) -> WorkflowInstance:
        return WorkflowInstance(
            id=model.id,
            workflow_id=model.workflow_id,
            identity=model.identity,
            step_index=model.step_index,
            context=RunContext(**(model.context or {})),
            active=model.active,
            created_at=model.created_at,
            updated_at=model.updated_at
        )

    @staticmethod
    def _to_run(model: WorkflowRunModel) -> RunRecord:
        return RunRecord(
            id=model.id,
            workflow_id=model.workflow_id,
            identity=model.identity,
            mode=RunMode(model.mode),
            status=ExecutionStatusEnum(model.status),
            steps=model.steps or [],
            error_message=model.error_message,
            started_at=model.started_at,
            completed_at=model.completed_at
        )
