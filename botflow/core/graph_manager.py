"""Graph Manager: stores workflow definitions and resolves identities to workflows."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import (
    Edge, Node, ValidationResult, WorkflowDefinition, WorkflowRecord,
    WorkflowSummary, find_integrity_errors
)
from ..storage.database import get_session
from ..storage.models import UserWorkflowModel, WorkflowModel
from .cache import TTLCache
from .exceptions import GraphValidationError, StorageError, WorkflowNotFoundError
from .logging import get_logger
from .scheduler import find_unordered_nodes

logger = get_logger(__name__)


class GraphManager:
    """Manages workflow definitions, validation, storage and identity bindings."""

    def __init__(self, cache: Optional[TTLCache] = None, default_workflow_type: str = "atendimento"):
        """Initialize GraphManager.

        Args:
            cache: Cache for loaded workflows and identity lookups; no caching when omitted
            default_workflow_type: Workflow type used when an identity has no binding
        """
        self.cache = cache or TTLCache(ttl_seconds=0)
        self.default_workflow_type = default_workflow_type

    def validate_graph(self, nodes: List[Node], edges: List[Edge]) -> ValidationResult:
        """
        Validate a graph for structural correctness.

        Errors: duplicate node ids, dangling edges, cycles. Warnings: empty
        graphs, unrecognized node types and nodes with no edges.
        """
        errors = find_integrity_errors(nodes, edges)
        warnings = []

        if not nodes:
            warnings.append("Graph has no nodes")

        if not errors:
            unordered = find_unordered_nodes(nodes, edges)
            if unordered:
                errors.append(f"Graph contains a cycle involving nodes: {', '.join(unordered)}")

        for node in nodes:
            if node.node_type is None:
                warnings.append(f"Node '{node.id}' has unrecognized type '{node.type}' and will not run")

        if len(nodes) > 1:
            connected = {edge.source for edge in edges} | {edge.target for edge in edges}
            isolated = [node.id for node in nodes if node.id not in connected]
            if isolated:
                warnings.append(f"Nodes without edges run in list order: {', '.join(isolated)}")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def _validated_definition(self, nodes: List[Node], edges: List[Edge], workflow_id: Optional[str] = None) -> WorkflowDefinition:
        result = self.validate_graph(nodes, edges)
        if not result.is_valid:
            message = f"Graph validation failed: {'; '.join(result.errors)}"
            logger.error(message)
            raise GraphValidationError(message, validation_errors=result.errors, workflow_id=workflow_id)
        if result.warnings:
            logger.warning(f"Graph validation warnings: {'; '.join(result.warnings)}")
        return WorkflowDefinition(nodes=nodes, edges=edges)

    def create_workflow(
        self,
        name: str,
        nodes: List[Node],
        edges: List[Edge],
        workflow_type: Optional[str] = None
    ) -> str:
        """
        Validate and store a new workflow.

        Returns:
            The new workflow id

        Raises:
            GraphValidationError: If the graph is invalid
            StorageError: If the workflow cannot be stored
        """
        definition = self._validated_definition(nodes, edges)
        workflow_id = str(uuid.uuid4())

        db = get_session()
        try:
            db.add(WorkflowModel(
                id=workflow_id,
                name=name,
                type=workflow_type or self.default_workflow_type,
                definition=definition.model_dump(mode="json"),
                created_at=datetime.utcnow()
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while creating workflow: {e}")
            raise StorageError(f"Failed to store workflow: {e}", operation="create", table="workflows")
        finally:
            db.close()

        self._invalidate_resolutions()
        logger.info(f"Created workflow '{name}' with ID: {workflow_id}")
        return workflow_id

    def update_workflow(
        self,
        workflow_id: str,
        name: Optional[str] = None,
        nodes: Optional[List[Node]] = None,
        edges: Optional[List[Edge]] = None,
        workflow_type: Optional[str] = None
    ) -> WorkflowRecord:
        """Replace the name, graph or type of a stored workflow."""
        db = get_session()
        try:
            model = db.get(WorkflowModel, workflow_id)
            if model is None:
                raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found", operation="update", table="workflows")

            if nodes is not None or edges is not None:
                current = self._load_definition(model)
                definition = self._validated_definition(
                    nodes if nodes is not None else current.nodes,
                    edges if edges is not None else current.edges,
                    workflow_id=workflow_id
                )
                model.definition = definition.model_dump(mode="json")
            if name is not None:
                model.name = name
            if workflow_type is not None:
                model.type = workflow_type
            model.updated_at = datetime.utcnow()
            db.commit()
            record = self._to_record(model)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to update workflow: {e}", operation="update", table="workflows")
        finally:
            db.close()

        self.cache.invalidate(("workflow", workflow_id))
        self._invalidate_resolutions()
        logger.info(f"Updated workflow {workflow_id}")
        return record

    def get_workflow(self, workflow_id: str) -> WorkflowRecord:
        """
        Retrieve a stored workflow.

        Raises:
            WorkflowNotFoundError: If no workflow has this id
            GraphValidationError: If the stored graph is malformed
        """
        key = ("workflow", workflow_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        db = get_session()
        try:
            model = db.get(WorkflowModel, workflow_id)
            if model is None:
                raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found", operation="get", table="workflows")
            record = self._to_record(model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to retrieve workflow: {e}", operation="get", table="workflows")
        finally:
            db.close()

        self.cache.set(key, record)
        return record

    def get_graph(self, workflow_id: str) -> WorkflowDefinition:
        """The `{nodes, edges}` definition of a stored workflow."""
        return self.get_workflow(workflow_id).definition

    def list_workflows(self, workflow_type: Optional[str] = None) -> List[WorkflowSummary]:
        db = get_session()
        try:
            query = db.query(WorkflowModel)
            if workflow_type:
                query = query.filter(WorkflowModel.type == workflow_type)
            models = query.order_by(WorkflowModel.created_at).all()
            return [
                WorkflowSummary(
                    id=model.id,
                    name=model.name,
                    type=model.type,
                    created_at=model.created_at,
                    node_count=len((model.definition or {}).get("nodes", []))
                )
                for model in models
            ]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list workflows: {e}", operation="list", table="workflows")
        finally:
            db.close()

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow with its instances and identity bindings; False if it did not exist."""
        db = get_session()
        try:
            model = db.get(WorkflowModel, workflow_id)
            if model is None:
                return False
            db.query(UserWorkflowModel).filter(UserWorkflowModel.workflow_id == workflow_id).delete()
            db.delete(model)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to delete workflow: {e}", operation="delete", table="workflows")
        finally:
            db.close()

        self.cache.invalidate(("workflow", workflow_id))
        self._invalidate_resolutions()
        logger.info(f"Deleted workflow {workflow_id}")
        return True

    def bind_identity(self, identity: str, workflow_id: str) -> None:
        """Route an identity's inbound messages to a workflow."""
        self.get_workflow(workflow_id)

        db = get_session()
        try:
            binding = db.get(UserWorkflowModel, identity)
            if binding is None:
                db.add(UserWorkflowModel(phone=identity, workflow_id=workflow_id))
            else:
                binding.workflow_id = workflow_id
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to bind identity: {e}", operation="bind", table="user_workflows")
        finally:
            db.close()

        self.cache.invalidate(("identity", identity))
        logger.info(f"Bound {identity} to workflow {workflow_id}")

    def resolve_workflow(self, identity: str) -> Optional[str]:
        """
        The workflow an identity's messages run.

        An explicit binding wins; otherwise the oldest workflow of the default
        type is used. None when neither exists.
        """
        key = ("identity", identity)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        db = get_session()
        try:
            binding = db.get(UserWorkflowModel, identity)
            if binding is not None:
                workflow_id = binding.workflow_id
            else:
                fallback = (
                    db.query(WorkflowModel.id)
                    .filter(WorkflowModel.type == self.default_workflow_type)
                    .order_by(WorkflowModel.created_at)
                    .first()
                )
                workflow_id = fallback[0] if fallback else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to resolve workflow: {e}", operation="resolve", table="user_workflows")
        finally:
            db.close()

        if workflow_id is not None:
            self.cache.set(key, workflow_id)
        logger.debug(f"Resolved {identity} to workflow {workflow_id}")
        return workflow_id

    def _invalidate_resolutions(self) -> None:
        self.cache.invalidate_where(lambda key: key[0] == "identity")

    @staticmethod
    def _load_definition(model: WorkflowModel) -> WorkflowDefinition:
        definition: Dict[str, Any] = model.definition or {}
        try:
            return WorkflowDefinition(**definition)
        except ValidationError as e:
            raise GraphValidationError(
                f"Stored workflow '{model.id}' is malformed: {e}",
                workflow_id=model.id
            )

    def _to_record(self, model: WorkflowModel) -> WorkflowRecord:
        return WorkflowRecord(
            id=model.id,
            name=model.name,
            type=model.type,
            definition=self._load_definition(model),
            created_at=model.created_at,
            updated_at=model.updated_at
        )
