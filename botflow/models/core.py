"""Core Pydantic models for the workflow engine."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class NodeType(str, Enum):
    """Recognized node variants."""
    MESSAGE = "message"
    QUESTION = "question"
    CONDITION = "condition"
    AI = "ai"
    WAIT = "wait"
    WEBHOOK = "webhook"
    CODE = "code"
    DATABASE = "database"
    EMAIL = "email"
    SET_VARIABLE = "set-variable"
    SEND_FILE = "send-file"
    HTTP = "http"
    TERMINATE = "terminate"


# Tags written by the graph builder (Portuguese) plus English spellings.
NODE_TYPE_ALIASES: Dict[str, NodeType] = {
    "mensagem": NodeType.MESSAGE,
    "send_message": NodeType.MESSAGE,
    "pergunta": NodeType.QUESTION,
    "condicao": NodeType.CONDITION,
    "condição": NodeType.CONDITION,
    "ia": NodeType.AI,
    "aguardar": NodeType.WAIT,
    "codigo": NodeType.CODE,
    "código": NodeType.CODE,
    "banco": NodeType.DATABASE,
    "variavel": NodeType.SET_VARIABLE,
    "variável": NodeType.SET_VARIABLE,
    "set_variable": NodeType.SET_VARIABLE,
    "arquivo": NodeType.SEND_FILE,
    "send_file": NodeType.SEND_FILE,
    "encerrar": NodeType.TERMINATE,
}


def resolve_node_type(tag: Optional[str]) -> Optional[NodeType]:
    """Map a raw node type tag to a NodeType, or None when unrecognized."""
    if not tag:
        return None
    normalized = tag.strip().lower()
    if normalized in NODE_TYPE_ALIASES:
        return NODE_TYPE_ALIASES[normalized]
    try:
        return NodeType(normalized)
    except ValueError:
        return None


class ExecutionStatusEnum(str, Enum):
    """Outcome of a run."""
    RUNNING = "running"
    COMPLETED = "completed"
    TERMINATED = "terminated"
    FAILED = "failed"


class RunMode(str, Enum):
    """How much of the graph a single run executes."""
    FULL_GRAPH = "full-graph"
    SINGLE_STEP = "single-step"


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class Node(BaseModel):
    """One typed unit of work in a workflow graph."""
    id: str = Field(..., description="Unique identifier for the node")
    type: str = Field(..., description="Node type tag as written by the graph builder")
    data: Dict[str, Any] = Field(default_factory=dict, description="Variant-specific payload")

    @field_validator('id', mode='before')
    @classmethod
    def validate_id(cls, id_value):
        """Accept numeric ids from the builder and reject empty ones."""
        if isinstance(id_value, int):
            id_value = str(id_value)
        if not isinstance(id_value, str) or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @field_validator('data', mode='before')
    @classmethod
    def default_data(cls, data):
        return data or {}

    @property
    def node_type(self) -> Optional[NodeType]:
        return resolve_node_type(self.type)

    @property
    def label(self) -> Optional[str]:
        return self.data.get("label")


class Edge(BaseModel):
    """A directed "executes-before" relationship between two nodes."""
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")

    @field_validator('source', 'target', mode='before')
    @classmethod
    def validate_node_ids(cls, node_id):
        if isinstance(node_id, int):
            node_id = str(node_id)
        if not isinstance(node_id, str) or not node_id.strip():
            raise ValueError("Edge endpoints cannot be empty")
        return node_id.strip()


class WorkflowDefinition(BaseModel):
    """The `{nodes, edges}` graph of a workflow."""
    nodes: List[Node] = Field(default_factory=list, description="Nodes of the graph")
    edges: List[Edge] = Field(default_factory=list, description="Edges of the graph")

    @model_validator(mode='after')
    def validate_references(self):
        """Reject duplicate node ids and edges pointing at unknown nodes."""
        errors = find_integrity_errors(self.nodes, self.edges)
        if errors:
            raise ValueError("; ".join(errors))
        return self


def find_integrity_errors(nodes: List[Node], edges: List[Edge]) -> List[str]:
    """Return duplicate-id and dangling-edge problems of a graph."""
    errors = []
    seen = set()
    for node in nodes:
        if node.id in seen:
            errors.append(f"Duplicate node id: '{node.id}'")
        seen.add(node.id)

    for edge in edges:
        if edge.source not in seen:
            errors.append(f"Edge references non-existent source node: '{edge.source}'")
        if edge.target not in seen:
            errors.append(f"Edge references non-existent target node: '{edge.target}'")
    return errors


class WorkflowRecord(BaseModel):
    """A stored workflow with its definition."""
    id: str
    name: str
    type: str
    definition: WorkflowDefinition
    created_at: datetime
    updated_at: Optional[datetime] = None


class WorkflowSummary(BaseModel):
    """Summary information about a stored workflow."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    type: str = Field(..., description="Workflow type")
    created_at: datetime = Field(..., description="Creation timestamp")
    node_count: int = Field(..., description="Number of nodes in the graph")


class RunContext(BaseModel):
    """Mutable state threaded through every node of one run."""
    recipient: Optional[str] = Field(None, description="Identity receiving message side effects")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Variables set during the run")

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def get_variable(self, name: str, default: Any = None) -> Any:
        return self.variables.get(name, default)


class TraceEntry(BaseModel):
    """Outcome of one executed node."""
    node_id: str
    node_type: str
    output: str
    reply: Optional[str] = Field(None, description="Text delivered to the recipient, if any")
    is_error: bool = False


class ExecutionTrace(BaseModel):
    """Ordered outcomes of a run."""
    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    mode: RunMode = RunMode.FULL_GRAPH
    status: ExecutionStatusEnum = ExecutionStatusEnum.RUNNING
    entries: List[TraceEntry] = Field(default_factory=list)
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def append(self, entry: TraceEntry) -> None:
        self.entries.append(entry)

    def lines(self) -> List[str]:
        """The human-readable trace, one line per executed node."""
        return [entry.output for entry in self.entries]

    def customer_lines(self) -> List[str]:
        """Trace lines that are safe to show to the end customer."""
        return [entry.output for entry in self.entries if not entry.is_error]

    def customer_replies(self) -> List[str]:
        return [entry.reply for entry in self.entries if entry.reply and not entry.is_error]

    def error_lines(self) -> List[str]:
        return [entry.output for entry in self.entries if entry.is_error]

    def __len__(self) -> int:
        return len(self.entries)


class WorkflowInstance(BaseModel):
    """Persisted progress marker of the single-step execution model."""
    id: str
    workflow_id: str
    identity: str
    step_index: int = Field(..., description="Index of the last executed node in topological order")
    context: RunContext = Field(default_factory=RunContext)
    active: bool = True
    created_at: datetime
    updated_at: Optional[datetime] = None


class RunRecord(BaseModel):
    """Stored history entry of a run or instance step."""
    id: str
    workflow_id: Optional[str] = None
    identity: Optional[str] = None
    mode: RunMode
    status: ExecutionStatusEnum
    steps: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
