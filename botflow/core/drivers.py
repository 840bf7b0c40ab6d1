"""Entry points that feed workflows into the execution engine.

- InboundMessageDriver: a chat message arrived from an identity.
- TestRunDriver: run a (possibly unsaved) graph once and return its trace.
- StepAdvanceDriver: advance an identity's Workflow Instance by one node.
"""

from typing import Any, Dict, List, NamedTuple, Optional

from ..config import CustomerReplyMode
from ..models.core import (
    Edge, ExecutionStatusEnum, ExecutionTrace, Node, RunContext, RunMode, WorkflowInstance
)
from .exceptions import NodeExecutionError, WorkflowNotFoundError
from .execution_engine import ExecutionEngine
from .graph_manager import GraphManager
from .logging import get_logger, logging_context
from .state_manager import StateManager

logger = get_logger(__name__)


class StepResult(NamedTuple):
    """Outcome of one step of a Workflow Instance."""
    instance: WorkflowInstance
    trace: Optional[ExecutionTrace]
    delivered: int = 0


class InboundResult(NamedTuple):
    """Outcome of handling one inbound chat message."""
    identity: str
    mode: RunMode
    workflow_id: Optional[str]
    trace: Optional[ExecutionTrace]
    delivered: int = 0


class InboundMessage(NamedTuple):
    sender: str
    body: str
    token: Optional[str] = None
    phone_number_id: Optional[str] = None


def parse_inbound_payload(payload: Dict[str, Any]) -> Optional[InboundMessage]:
    """
    Extract sender and text from an inbound webhook payload.

    Accepts the flat form (`from`/`From`, `body`/`Body`), a `messages` list,
    and the WhatsApp Cloud API envelope
    (`entry[0].changes[0].value.messages[0]`). Per-request WhatsApp
    credentials (`userToken` or `token`, `phoneNumberId`) are read from the
    top level of the payload. Returns None when the payload
    carries no message, e.g. delivery status callbacks.
    """
    if not isinstance(payload, dict):
        return None

    message = payload
    try:
        if payload.get("entry"):
            message = payload["entry"][0]["changes"][0]["value"]["messages"][0]
        elif payload.get("messages"):
            message = payload["messages"][0]
    except (KeyError, IndexError, TypeError):
        return None

    if not isinstance(message, dict):
        return None

    sender = message.get("from") or message.get("From")
    body = message.get("body") or message.get("Body")
    if body is None and isinstance(message.get("text"), dict):
        body = message["text"].get("body")

    if not sender:
        return None

    token = payload.get("userToken") or payload.get("token")
    phone_number_id = payload.get("phoneNumberId") or payload.get("phone_number_id")
    return InboundMessage(
        sender=str(sender),
        body=str(body or ""),
        token=str(token) if token else None,
        phone_number_id=str(phone_number_id) if phone_number_id else None
    )


def deliver_trace(
    transport,
    identity: str,
    trace: ExecutionTrace,
    reply_mode: CustomerReplyMode = CustomerReplyMode.TRACE,
    token: Optional[str] = None,
    phone_number_id: Optional[str] = None
) -> int:
    """
    Send a trace's customer-facing lines to an identity.

    Error lines are logged and never sent. Returns how many messages were
    delivered.
    """
    for line in trace.error_lines():
        logger.warning(f"Withheld error line from {identity}: {line}")

    if transport is None:
        return 0

    if reply_mode == CustomerReplyMode.REPLIES:
        lines = trace.customer_replies()
    else:
        lines = trace.customer_lines()

    delivered = 0
    for line in lines:
        if not line:
            continue
        if transport.send(identity, line, token=token, phone_number_id=phone_number_id):
            delivered += 1
    return delivered


class TestRunDriver:
    """Runs a graph once for display; nothing is sent to anyone."""

    __test__ = False

    def __init__(self, engine: ExecutionEngine, state_manager: Optional[StateManager] = None):
        self.engine = engine
        self.state_manager = state_manager

    def run(
        self,
        nodes: List[Node],
        edges: List[Edge],
        recipient: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
        workflow_id: Optional[str] = None
    ) -> ExecutionTrace:
        """
        Run the full graph and return its trace.

        Raises:
            GraphValidationError: If the graph is malformed or cyclic
            NodeExecutionError: If a node halts the run; `partial_trace` holds
                the steps executed before it
        """
        context = RunContext(recipient=recipient, variables=dict(variables or {}))
        try:
            trace = self.engine.run(nodes, edges, context, mode=RunMode.FULL_GRAPH)
        except NodeExecutionError as e:
            if e.partial_trace is not None:
                self._record(e.partial_trace, workflow_id, recipient)
            raise
        self._record(trace, workflow_id, recipient)
        return trace

    def _record(self, trace: ExecutionTrace, workflow_id: Optional[str], identity: Optional[str]) -> None:
        if self.state_manager is not None:
            self.state_manager.record_run(trace, workflow_id=workflow_id, identity=identity)


class StepAdvanceDriver:
    """
    Executes a stored workflow one node per event for an identity.

    Steps follow the same topological order as full-graph runs. An instance
    becomes inactive once its last node or a terminate node has run.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        graph_manager: GraphManager,
        state_manager: StateManager,
        transport=None,
        reply_mode: CustomerReplyMode = CustomerReplyMode.TRACE
    ):
        self.engine = engine
        self.graph_manager = graph_manager
        self.state_manager = state_manager
        self.transport = transport
        self.reply_mode = reply_mode

    def start(
        self,
        workflow_id: str,
        identity: str,
        variables: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        phone_number_id: Optional[str] = None
    ) -> StepResult:
        """Create a fresh instance for the identity and execute its first node."""
        self.graph_manager.get_workflow(workflow_id)

        with self.state_manager.identity_lock(identity):
            context = RunContext(recipient=identity, variables=dict(variables or {}))
            instance = self.state_manager.create_instance(workflow_id, identity, context)
            return self._step(instance, token, phone_number_id)

    def advance(
        self,
        identity: str,
        token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None
    ) -> Optional[StepResult]:
        """
        Execute the next node of the identity's active instance.

        Returns None when the identity has no active instance.

        Raises:
            InstanceConflictError: If another process advanced the instance first
        """
        with self.state_manager.identity_lock(identity):
            instance = self.state_manager.get_active_instance(identity)
            if instance is None:
                return None
            if variables:
                instance.context.variables.update(variables)
            return self._step(instance, token, phone_number_id)

    def _step(self, instance: WorkflowInstance, token: Optional[str], phone_number_id: Optional[str]) -> StepResult:
        definition = self.graph_manager.get_graph(instance.workflow_id)
        next_index = instance.step_index + 1
        node_count = len(definition.nodes)

        with logging_context(workflow_id=instance.workflow_id, identity=instance.identity):
            if next_index >= node_count:
                logger.info(f"Instance {instance.id} has no node left; deactivating")
                updated = self.state_manager.update_instance(
                    instance.id,
                    expected_step=instance.step_index,
                    step_index=instance.step_index,
                    context=instance.context,
                    active=False
                )
                return StepResult(instance=updated, trace=None)

            try:
                trace = self.engine.run(
                    definition.nodes,
                    definition.edges,
                    instance.context,
                    mode=RunMode.SINGLE_STEP,
                    step_index=next_index
                )
            except NodeExecutionError as e:
                # The instance stays on its step so the next event retries the node.
                if e.partial_trace is not None:
                    self.state_manager.record_run(e.partial_trace, instance.workflow_id, instance.identity)
                e.add_context(workflow_id=instance.workflow_id)
                raise

            finished = trace.status == ExecutionStatusEnum.TERMINATED or next_index == node_count - 1
            updated = self.state_manager.update_instance(
                instance.id,
                expected_step=instance.step_index,
                step_index=next_index,
                context=instance.context,
                active=not finished
            )
            self.state_manager.record_run(trace, instance.workflow_id, instance.identity)

            delivered = deliver_trace(
                self.transport, instance.identity, trace, self.reply_mode,
                token=token, phone_number_id=phone_number_id
            )
            if finished:
                logger.info(f"Instance {instance.id} finished at step {next_index}")
            return StepResult(instance=updated, trace=trace, delivered=delivered)


class InboundMessageDriver:
    """
    Handles a chat message from an identity.

    An identity with an active Workflow Instance advances it by one node;
    otherwise the identity's workflow runs in full and its customer-facing
    lines are sent back.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        graph_manager: GraphManager,
        state_manager: StateManager,
        step_driver: StepAdvanceDriver,
        transport=None,
        reply_mode: CustomerReplyMode = CustomerReplyMode.TRACE
    ):
        self.engine = engine
        self.graph_manager = graph_manager
        self.state_manager = state_manager
        self.step_driver = step_driver
        self.transport = transport
        self.reply_mode = reply_mode

    def handle(
        self,
        identity: str,
        body: str,
        token: Optional[str] = None,
        phone_number_id: Optional[str] = None
    ) -> InboundResult:
        """
        Process one inbound message.

        A run or step halted by a node error is recorded and returned with
        status FAILED; lines produced before the failure are still delivered.
        A failed step leaves the instance on its current node.

        Raises:
            WorkflowNotFoundError: If no workflow can be resolved for the identity
        """
        self.state_manager.record_inbound_message(identity, body)
        message_variables = {"last_message": body}

        with logging_context(identity=identity):
            try:
                step = self.step_driver.advance(identity, token, phone_number_id, variables=message_variables)
            except NodeExecutionError as e:
                if e.partial_trace is None:
                    raise
                logger.error(f"Step for {identity} failed: {e.message}")
                return InboundResult(
                    identity=identity,
                    mode=RunMode.SINGLE_STEP,
                    workflow_id=e.context.get("workflow_id"),
                    trace=e.partial_trace,
                    delivered=deliver_trace(
                        self.transport, identity, e.partial_trace, self.reply_mode,
                        token=token, phone_number_id=phone_number_id
                    )
                )
            if step is not None:
                return InboundResult(
                    identity=identity,
                    mode=RunMode.SINGLE_STEP,
                    workflow_id=step.instance.workflow_id,
                    trace=step.trace,
                    delivered=step.delivered
                )

            workflow_id = self.graph_manager.resolve_workflow(identity)
            if workflow_id is None:
                raise WorkflowNotFoundError(f"No workflow is bound to {identity}", operation="resolve")

            definition = self.graph_manager.get_graph(workflow_id)
            context = RunContext(recipient=identity, variables=message_variables)
            with logging_context(workflow_id=workflow_id):
                try:
                    trace = self.engine.run(definition.nodes, definition.edges, context, mode=RunMode.FULL_GRAPH)
                except NodeExecutionError as e:
                    if e.partial_trace is None:
                        raise
                    trace = e.partial_trace
                    logger.error(f"Run for {identity} failed: {e.message}")

                self.state_manager.record_run(trace, workflow_id, identity)
                delivered = deliver_trace(
                    self.transport, identity, trace, self.reply_mode,
                    token=token, phone_number_id=phone_number_id
                )

        logger.info(f"Delivered {delivered} message(s) to {identity}")
        return InboundResult(
            identity=identity,
            mode=RunMode.FULL_GRAPH,
            workflow_id=workflow_id,
            trace=trace,
            delivered=delivered
        )
