"""Data models for the workflow engine."""

from .core import (
    NodeType,
    ExecutionStatusEnum,
    RunMode,
    ValidationResult,
    Node,
    Edge,
    WorkflowDefinition,
    WorkflowRecord,
    WorkflowSummary,
    RunContext,
    TraceEntry,
    ExecutionTrace,
    WorkflowInstance,
    RunRecord,
    resolve_node_type,
)

__all__ = [
    "NodeType",
    "ExecutionStatusEnum",
    "RunMode",
    "ValidationResult",
    "Node",
    "Edge",
    "WorkflowDefinition",
    "WorkflowRecord",
    "WorkflowSummary",
    "RunContext",
    "TraceEntry",
    "ExecutionTrace",
    "WorkflowInstance",
    "RunRecord",
    "resolve_node_type",
]
