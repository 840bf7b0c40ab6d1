"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    CyclicGraphError,
    NodeExecutionError,
    AIGenerationError,
    ExecutionEngineError,
    StateManagementError,
    InstanceConflictError,
    StorageError,
    WorkflowNotFoundError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .scheduler import topological_sort
from .node_executor import NodeExecutor, NodeServices, NodeOutcome
from .execution_engine import ExecutionEngine
from .graph_manager import GraphManager
from .state_manager import StateManager
from .drivers import InboundMessageDriver, StepAdvanceDriver, TestRunDriver

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "CyclicGraphError",
    "NodeExecutionError",
    "AIGenerationError",
    "ExecutionEngineError",
    "StateManagementError",
    "InstanceConflictError",
    "StorageError",
    "WorkflowNotFoundError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "topological_sort",
    "NodeExecutor",
    "NodeServices",
    "NodeOutcome",
    "ExecutionEngine",
    "GraphManager",
    "StateManager",
    "InboundMessageDriver",
    "StepAdvanceDriver",
    "TestRunDriver",
]
