"""FastAPI REST endpoints for the workflow service."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from ..config import AppConfig
from ..core.drivers import InboundMessageDriver, StepAdvanceDriver, TestRunDriver, parse_inbound_payload
from ..core.exceptions import (
    NodeExecutionError, WorkflowEngineError, WorkflowNotFoundError, create_error_response
)
from ..core.graph_manager import GraphManager
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..core.state_manager import StateManager
from ..models.core import (
    Edge, ExecutionTrace, Node, RunRecord, ValidationResult, WorkflowInstance,
    WorkflowRecord, WorkflowSummary
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Set by the application factory at startup.
_config: Optional[AppConfig] = None
_graph_manager: Optional[GraphManager] = None
_state_manager: Optional[StateManager] = None
_test_driver: Optional[TestRunDriver] = None
_step_driver: Optional[StepAdvanceDriver] = None
_inbound_driver: Optional[InboundMessageDriver] = None


def init_dependencies(
    config: AppConfig,
    graph_manager: GraphManager,
    state_manager: StateManager,
    test_driver: TestRunDriver,
    step_driver: StepAdvanceDriver,
    inbound_driver: InboundMessageDriver
):
    """Initialize the global dependencies."""
    global _config, _graph_manager, _state_manager, _test_driver, _step_driver, _inbound_driver
    _config = config
    _graph_manager = graph_manager
    _state_manager = state_manager
    _test_driver = test_driver
    _step_driver = step_driver
    _inbound_driver = inbound_driver


def _require(component, name: str):
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{name} not initialized"
        )
    return component


def get_app_config() -> AppConfig:
    return _require(_config, "Configuration")


def get_graph_manager() -> GraphManager:
    """Dependency to get graph manager."""
    return _require(_graph_manager, "Graph manager")


def get_state_manager() -> StateManager:
    """Dependency to get state manager."""
    return _require(_state_manager, "State manager")


def get_test_driver() -> TestRunDriver:
    return _require(_test_driver, "Test driver")


def get_step_driver() -> StepAdvanceDriver:
    return _require(_step_driver, "Step driver")


def get_inbound_driver() -> InboundMessageDriver:
    return _require(_inbound_driver, "Inbound driver")


def _http_error(error: WorkflowEngineError) -> HTTPException:
    """Convert a workflow engine error into an HTTPException with a standard body."""
    if isinstance(error, NodeExecutionError) and error.partial_trace is not None:
        error.add_details(steps=error.partial_trace.lines(), run_id=error.partial_trace.run_id)
    return HTTPException(status_code=status_code_for_error(error), detail=create_error_response(error))


# Request/Response models
class GraphPayload(BaseModel):
    """A `{nodes, edges}` graph as sent by the builder."""
    nodes: List[Node] = Field(default_factory=list, description="Nodes of the graph")
    edges: List[Edge] = Field(default_factory=list, description="Edges of the graph")


class CreateWorkflowRequest(GraphPayload):
    name: str = Field(..., min_length=1, description="Workflow name")
    type: Optional[str] = Field(None, description="Workflow type; defaults to the configured type")


class UpdateWorkflowRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    type: Optional[str] = None
    nodes: Optional[List[Node]] = None
    edges: Optional[List[Edge]] = None


class CreateWorkflowResponse(BaseModel):
    workflow_id: str = Field(..., description="Identifier of the created workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class ExecuteRequest(GraphPayload):
    """A graph to test-run once."""
    recipient: Optional[str] = Field(None, description="Identity the run acts on behalf of")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Initial run variables")


class RunRequest(BaseModel):
    recipient: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)


class RunResponse(BaseModel):
    """Trace of one run."""
    run_id: str
    status: str
    steps: List[str] = Field(default_factory=list, description="Trace lines in execution order")
    error_message: Optional[str] = None

    @classmethod
    def from_trace(cls, trace: ExecutionTrace) -> "RunResponse":
        return cls(
            run_id=trace.run_id,
            status=trace.status.value,
            steps=trace.lines(),
            error_message=trace.error_message
        )


class BindIdentityRequest(BaseModel):
    workflow_id: str = Field(..., description="Workflow that handles this identity's messages")


class DeliveryCredentials(BaseModel):
    """WhatsApp credentials overriding the configured ones for one request."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    token: Optional[str] = Field(None, description="WhatsApp access token")
    phone_number_id: Optional[str] = Field(None, alias="phoneNumberId", description="Sending phone number id")


class StartInstanceRequest(DeliveryCredentials):
    identity: str = Field(..., min_length=1, description="Identity (phone number) to run the workflow for")
    variables: Dict[str, Any] = Field(default_factory=dict)


class StepResponse(BaseModel):
    """State of an instance after a step."""
    instance: WorkflowInstance
    steps: List[str] = Field(default_factory=list, description="Trace lines of the executed step")
    status: Optional[str] = Field(None, description="Status of the executed step, if one ran")
    delivered: int = Field(0, description="Messages delivered to the identity")


class InboundMessageResponse(BaseModel):
    status: str
    mode: Optional[str] = None
    workflow_id: Optional[str] = None
    run_id: Optional[str] = None
    delivered: int = 0


# Workflow definitions

@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow"
)
def create_workflow(
    request: CreateWorkflowRequest,
    graph_manager: GraphManager = Depends(get_graph_manager)
) -> CreateWorkflowResponse:
    """Validate and store a workflow graph."""
    try:
        validation = graph_manager.validate_graph(request.nodes, request.edges)
        workflow_id = graph_manager.create_workflow(request.name, request.nodes, request.edges, request.type)
    except WorkflowEngineError as e:
        logger.warning(f"Workflow creation failed: {e.message}")
        raise _http_error(e)

    return CreateWorkflowResponse(
        workflow_id=workflow_id,
        message=f"Workflow '{request.name}' created successfully",
        validation_warnings=validation.warnings
    )


@router.post("/workflows/validate", response_model=ValidationResult, summary="Validate a graph without storing it")
def validate_workflow(
    request: GraphPayload,
    graph_manager: GraphManager = Depends(get_graph_manager)
) -> ValidationResult:
    return graph_manager.validate_graph(request.nodes, request.edges)


@router.post("/workflows/execute", response_model=RunResponse, summary="Test-run a graph")
def execute_workflow(
    request: ExecuteRequest,
    driver: TestRunDriver = Depends(get_test_driver)
) -> RunResponse:
    """
    Run a possibly unsaved graph once and return its trace.

    Nothing is sent to the recipient. A node that halts the run yields a 502
    whose details carry the steps executed before it.
    """
    try:
        trace = driver.run(request.nodes, request.edges, request.recipient, request.variables)
    except WorkflowEngineError as e:
        logger.warning(f"Test run failed: {e.message}")
        raise _http_error(e)
    return RunResponse.from_trace(trace)


@router.get("/workflows", response_model=List[WorkflowSummary], summary="List workflows")
def list_workflows(
    workflow_type: Optional[str] = Query(None, alias="type", description="Only workflows of this type"),
    graph_manager: GraphManager = Depends(get_graph_manager)
) -> List[WorkflowSummary]:
    try:
        return graph_manager.list_workflows(workflow_type)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/workflows/{workflow_id}", response_model=WorkflowRecord, summary="Get a workflow")
def get_workflow(
    workflow_id: str,
    graph_manager: GraphManager = Depends(get_graph_manager)
) -> WorkflowRecord:
    try:
        return graph_manager.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.put("/workflows/{workflow_id}", response_model=WorkflowRecord, summary="Update a workflow")
def update_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    graph_manager: GraphManager = Depends(get_graph_manager)
) -> WorkflowRecord:
    try:
        return graph_manager.update_workflow(
            workflow_id,
            name=request.name,
            nodes=request.nodes,
            edges=request.edges,
            workflow_type=request.type
        )
    except WorkflowEngineError as e:
        logger.warning(f"Workflow update failed: {e.message}")
        raise _http_error(e)


@router.delete("/workflows/{workflow_id}", summary="Delete a workflow")
def delete_workflow(
    workflow_id: str,
    graph_manager: GraphManager = Depends(get_graph_manager)
) -> Dict[str, str]:
    try:
        deleted = graph_manager.delete_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    if not deleted:
        raise _http_error(WorkflowNotFoundError(f"Workflow '{workflow_id}' not found"))
    return {"message": f"Workflow '{workflow_id}' deleted"}


@router.post("/workflows/{workflow_id}/run", response_model=RunResponse, summary="Run a stored workflow")
def run_workflow(
    workflow_id: str,
    request: RunRequest,
    graph_manager: GraphManager = Depends(get_graph_manager),
    driver: TestRunDriver = Depends(get_test_driver)
) -> RunResponse:
    try:
        definition = graph_manager.get_graph(workflow_id)
        trace = driver.run(
            definition.nodes,
            definition.edges,
            request.recipient,
            request.variables,
            workflow_id=workflow_id
        )
    except WorkflowEngineError as e:
        raise _http_error(e)
    return RunResponse.from_trace(trace)


# Identities and step-by-step instances

@router.put("/identities/{identity}", summary="Bind an identity to a workflow")
def bind_identity(
    identity: str,
    request: BindIdentityRequest,
    graph_manager: GraphManager = Depends(get_graph_manager)
) -> Dict[str, str]:
    try:
        graph_manager.bind_identity(identity, request.workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return {"identity": identity, "workflow_id": request.workflow_id}


@router.post(
    "/workflows/{workflow_id}/start",
    response_model=StepResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a step-by-step instance"
)
def start_instance(
    workflow_id: str,
    request: StartInstanceRequest,
    driver: StepAdvanceDriver = Depends(get_step_driver)
) -> StepResponse:
    """Create an instance of the workflow for an identity and execute its first node."""
    try:
        result = driver.start(
            workflow_id, request.identity, request.variables,
            token=request.token, phone_number_id=request.phone_number_id
        )
    except WorkflowEngineError as e:
        raise _http_error(e)
    return _step_response(result)


@router.post("/instances/{identity}/advance", response_model=StepResponse, summary="Advance an instance one node")
def advance_instance(
    identity: str,
    request: Optional[DeliveryCredentials] = None,
    driver: StepAdvanceDriver = Depends(get_step_driver)
) -> StepResponse:
    credentials = request or DeliveryCredentials()
    try:
        result = driver.advance(identity, credentials.token, credentials.phone_number_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    if result is None:
        raise _http_error(WorkflowNotFoundError(f"No active instance for {identity}"))
    return _step_response(result)


@router.get("/instances/{identity}", response_model=WorkflowInstance, summary="Latest instance of an identity")
def get_instance(
    identity: str,
    state_manager: StateManager = Depends(get_state_manager)
) -> WorkflowInstance:
    try:
        instance = state_manager.get_latest_instance(identity)
    except WorkflowEngineError as e:
        raise _http_error(e)
    if instance is None:
        raise _http_error(WorkflowNotFoundError(f"No instance for {identity}"))
    return instance


def _step_response(result) -> StepResponse:
    return StepResponse(
        instance=result.instance,
        steps=result.trace.lines() if result.trace else [],
        status=result.trace.status.value if result.trace else None,
        delivered=result.delivered
    )


# Run history

@router.get("/runs/{run_id}", response_model=RunRecord, summary="Get a recorded run")
def get_run(
    run_id: str,
    state_manager: StateManager = Depends(get_state_manager)
) -> RunRecord:
    try:
        return state_manager.get_run(run_id)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/runs", response_model=List[RunRecord], summary="List recorded runs")
def list_runs(
    workflow_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    state_manager: StateManager = Depends(get_state_manager)
) -> List[RunRecord]:
    try:
        return state_manager.list_runs(workflow_id, limit)
    except WorkflowEngineError as e:
        raise _http_error(e)


# WhatsApp webhook

@router.get("/webhook/whatsapp", response_class=PlainTextResponse, summary="Webhook verification handshake")
def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    config: AppConfig = Depends(get_app_config)
) -> PlainTextResponse:
    if mode == "subscribe" and config.whatsapp_verify_token and token == config.whatsapp_verify_token:
        logger.info("Webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("Webhook verification failed")
    return PlainTextResponse("Verification failed", status_code=status.HTTP_403_FORBIDDEN)


@router.post("/webhook/whatsapp", response_model=InboundMessageResponse, summary="Receive an inbound message")
async def receive_message(
    request: Request,
    driver: InboundMessageDriver = Depends(get_inbound_driver)
) -> InboundMessageResponse:
    """
    Handle an inbound chat message.

    Payloads without a message (status callbacks) and senders without a
    workflow are acknowledged so the provider does not redeliver them.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be JSON")

    message = parse_inbound_payload(payload)
    if message is None:
        return InboundMessageResponse(status="ignored")

    try:
        result = await run_in_threadpool(
            driver.handle, message.sender, message.body, message.token, message.phone_number_id
        )
    except WorkflowNotFoundError as e:
        logger.warning(e.message)
        return InboundMessageResponse(status="no_workflow")
    except WorkflowEngineError as e:
        raise _http_error(e)

    trace = result.trace
    return InboundMessageResponse(
        status=trace.status.value if trace else "finished",
        mode=result.mode.value,
        workflow_id=result.workflow_id,
        run_id=trace.run_id if trace else None,
        delivered=result.delivered
    )
