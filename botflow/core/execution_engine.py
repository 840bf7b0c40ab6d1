"""Execution Engine: runs workflow graphs in full-graph or single-step mode."""

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional

from ..models.core import (
    Edge, ExecutionStatusEnum, ExecutionTrace, Node, RunContext, RunMode,
    TraceEntry, WorkflowDefinition
)
from .exceptions import ExecutionEngineError, NodeExecutionError
from .logging import get_logger, logging_context
from .node_executor import NodeExecutor, NodeOutcome
from .scheduler import topological_sort

logger = get_logger(__name__)


class ExecutionEngine:
    """Orders a graph once per run and executes its nodes strictly in that order."""

    def __init__(self, node_executor: NodeExecutor, max_concurrent_executions: int = 10):
        """Initialize the execution engine.

        Args:
            node_executor: Executor performing each node's side effect
            max_concurrent_executions: Worker threads available to `submit_run`
        """
        self.node_executor = node_executor
        self._max_concurrent_executions = max_concurrent_executions
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_executions,
            thread_name_prefix="botflow-run"
        )
        self._active_runs: Dict[str, Future] = {}
        self._active_lock = threading.RLock()
        self._shutdown = False

        logger.info(f"ExecutionEngine initialized with max_concurrent_executions={max_concurrent_executions}")

    def run(
        self,
        nodes: List[Node],
        edges: List[Edge],
        context: Optional[RunContext] = None,
        mode: RunMode = RunMode.FULL_GRAPH,
        step_index: int = 0,
        run_id: Optional[str] = None
    ) -> ExecutionTrace:
        """
        Execute a graph against a run context.

        In full-graph mode every node runs in topological order until the end
        or a terminate node. In single-step mode only the node at `step_index`
        of that order runs.

        Args:
            nodes: Nodes of the graph
            edges: Edges of the graph
            context: Run context shared by every executed node
            mode: Full-graph or single-step
            step_index: Position in topological order executed in single-step mode
            run_id: Identifier for the trace; generated when omitted

        Returns:
            The trace of the executed nodes

        Raises:
            GraphValidationError: If the graph has dangling edges, duplicate ids or a cycle
            ExecutionEngineError: If `step_index` is outside the graph in single-step mode
            NodeExecutionError: If a node halts the run with an error; the partial
                trace is attached as `partial_trace`
        """
        context = context if context is not None else RunContext()
        trace = ExecutionTrace(run_id=run_id or str(uuid.uuid4()), mode=mode)

        with logging_context(run_id=trace.run_id, identity=context.recipient):
            order = topological_sort(nodes, edges)

            if mode == RunMode.SINGLE_STEP:
                if not 0 <= step_index < len(order):
                    raise ExecutionEngineError(
                        f"Step index {step_index} is outside a graph of {len(order)} nodes",
                        run_id=trace.run_id
                    )
                selected = [order[step_index]]
            else:
                selected = order

            logger.info(f"Starting {mode.value} run with {len(selected)} of {len(order)} nodes")
            try:
                for node in selected:
                    outcome = self._execute_node(node, context, trace)
                    trace.append(TraceEntry(
                        node_id=node.id,
                        node_type=node.node_type.value if node.node_type else node.type,
                        output=outcome.output,
                        reply=outcome.reply,
                        is_error=outcome.is_error
                    ))
                    if outcome.halt:
                        trace.status = ExecutionStatusEnum.TERMINATED
                        logger.info(f"Run terminated by node {node.id}")
                        break
                else:
                    trace.status = ExecutionStatusEnum.COMPLETED
            except NodeExecutionError as e:
                trace.status = ExecutionStatusEnum.FAILED
                trace.error_message = e.message
                e.partial_trace = trace
                logger.error(f"Run halted at node {e.node_id}: {e.message}")
                raise
            finally:
                trace.completed_at = datetime.utcnow()

        logger.info(f"Run finished with status {trace.status.value} after {len(trace)} steps")
        return trace

    def run_definition(self, definition: WorkflowDefinition, context: Optional[RunContext] = None, **kwargs) -> ExecutionTrace:
        return self.run(definition.nodes, definition.edges, context, **kwargs)

    def _execute_node(self, node: Node, context: RunContext, trace: ExecutionTrace) -> NodeOutcome:
        try:
            return self.node_executor.execute(node, context)
        except NodeExecutionError as e:
            e.add_context(run_id=trace.run_id)
            raise
        except Exception as e:
            logger.exception(f"Unexpected failure in node {node.id}")
            raise NodeExecutionError(
                f"Node {node.id} execution failed: {e}",
                node_id=node.id,
                run_id=trace.run_id,
                node_type=node.type
            ) from e

    def submit_run(
        self,
        nodes: List[Node],
        edges: List[Edge],
        context: Optional[RunContext] = None,
        mode: RunMode = RunMode.FULL_GRAPH,
        step_index: int = 0
    ) -> Future:
        """
        Run a graph on the engine's worker pool.

        Returns:
            A future resolving to the run's ExecutionTrace
        """
        if self._shutdown:
            raise ExecutionEngineError("Execution engine is shut down")

        run_id = str(uuid.uuid4())
        future = self._executor.submit(self.run, nodes, edges, context, mode, step_index, run_id)
        with self._active_lock:
            self._active_runs[run_id] = future
        future.add_done_callback(lambda _: self._forget(run_id))
        return future

    def _forget(self, run_id: str) -> None:
        with self._active_lock:
            self._active_runs.pop(run_id, None)

    def get_active_runs(self) -> List[str]:
        with self._active_lock:
            return list(self._active_runs)

    def get_execution_statistics(self) -> Dict[str, int]:
        with self._active_lock:
            active = len(self._active_runs)
        return {
            "active_runs": active,
            "max_concurrent_executions": self._max_concurrent_executions,
        }

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting runs and wait for submitted ones to finish."""
        self._shutdown = True
        self._executor.shutdown(wait=wait)
        logger.info("ExecutionEngine shut down")
