"""Node Executor: performs the side effect of one node and describes it."""

import json
import re
import time
from typing import Any, Callable, Dict, NamedTuple, Optional, Type

from pydantic import ValidationError
from simpleeval import EvalWithCompoundTypes

from ..config import TraceLocale
from ..models.core import Node, NodeType, RunContext
from ..models.nodes import (
    AIPayload, CodePayload, ConditionPayload, DatabasePayload, EmailPayload,
    HttpPayload, MessagePayload, NodePayload, QuestionPayload, SendFilePayload,
    SetVariablePayload, TerminatePayload, WaitPayload, WebhookPayload
)
from .exceptions import AIGenerationError, ConfigurationError, NodeExecutionError
from .logging import get_logger
from .messages import DEFAULT_EMAIL_SUBJECT, TraceMessages

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")
_LEADING_RETURN = re.compile(r"^\s*return\s+")

# Functions available to code and condition expressions.
SAFE_FUNCTIONS: Dict[str, Callable] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sum": sum,
    "any": any,
    "all": all,
    "sorted": sorted,
}


class NodeServices:
    """External collaborators the node handlers call into."""

    def __init__(
        self,
        text_generator=None,
        http_client=None,
        query_executor=None,
        email_queue=None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.text_generator = text_generator
        self.http_client = http_client
        self.query_executor = query_executor
        self.email_queue = email_queue
        self.sleep = sleep


class NodeOutcome(NamedTuple):
    """Result of executing one node."""
    output: str
    reply: Optional[str] = None
    is_error: bool = False
    halt: bool = False


def interpolate(template: Optional[str], variables: Dict[str, Any]) -> str:
    """Replace `{{name}}` placeholders with run variables; unknown names stay as written."""
    if not template:
        return ""

    def replace(match):
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return display_value(variables[name])

    return _PLACEHOLDER.sub(replace, template)


def display_value(value: Any) -> str:
    """Render a value the way trace lines show it (1.0 as 1, lists as JSON)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


class NodeExecutor:
    """
    Executes single nodes by type.

    Every NodeType must have a handler; an executor with an incomplete table
    cannot be constructed. Expected failures of external calls become error
    trace lines; only text generation failures halt the run.
    """

    def __init__(
        self,
        services: Optional[NodeServices] = None,
        locale: TraceLocale = TraceLocale.PT,
        max_wait_seconds: float = 300.0
    ):
        self.services = services or NodeServices()
        self.messages = TraceMessages(locale)
        self.max_wait_seconds = max_wait_seconds

        self._handlers: Dict[NodeType, Callable[[Node, RunContext], NodeOutcome]] = {
            NodeType.MESSAGE: self._execute_message,
            NodeType.QUESTION: self._execute_question,
            NodeType.CONDITION: self._execute_condition,
            NodeType.AI: self._execute_ai,
            NodeType.WAIT: self._execute_wait,
            NodeType.WEBHOOK: self._execute_webhook,
            NodeType.CODE: self._execute_code,
            NodeType.DATABASE: self._execute_database,
            NodeType.EMAIL: self._execute_email,
            NodeType.SET_VARIABLE: self._execute_set_variable,
            NodeType.SEND_FILE: self._execute_send_file,
            NodeType.HTTP: self._execute_http,
            NodeType.TERMINATE: self._execute_terminate,
        }
        self._check_handlers()

    def _check_handlers(self) -> None:
        missing = [node_type.value for node_type in NodeType if node_type not in self._handlers]
        if missing:
            raise ConfigurationError(
                f"No handler registered for node types: {', '.join(missing)}",
                config_key="node_handlers"
            )

    def execute(self, node: Node, context: RunContext) -> NodeOutcome:
        """
        Execute one node against the run context.

        Args:
            node: Node to execute; never mutated
            context: Run context; handlers may set variables on it

        Returns:
            The node's trace line, customer reply and control flags

        Raises:
            AIGenerationError: If an ai node cannot produce text
        """
        node_type = node.node_type
        if node_type is None:
            logger.warning(f"Node {node.id} has unrecognized type '{node.type}'")
            return NodeOutcome(self.messages.format("not_implemented", type=node.type), is_error=True)

        handler = self._handlers[node_type]
        logger.debug(f"Executing node {node.id} ({node_type.value})")
        try:
            return handler(node, context)
        except ValidationError as e:
            logger.warning(f"Node {node.id} has invalid data: {e.errors()}")
            return NodeOutcome(
                self.messages.format("invalid_data", node=node.id, error=self._first_error(e)),
                is_error=True
            )
        except NodeExecutionError as e:
            if e.node_id is None:
                e.node_id = node.id
                e.add_context(node_id=node.id, node_type=node_type.value)
            raise

    @staticmethod
    def _payload(node: Node, model: Type[NodePayload]):
        return model.model_validate(node.data)

    @staticmethod
    def _first_error(error: ValidationError) -> str:
        errors = error.errors()
        if not errors:
            return str(error)
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        return f"{location}: {first.get('msg')}" if location else first.get("msg", "")

    def _evaluate(self, expression: str, context: RunContext) -> Any:
        names = {"true": True, "false": False, "null": None, "none": None}
        names.update(context.variables)
        names.setdefault("recipient", context.recipient)
        evaluator = EvalWithCompoundTypes(names=names, functions=SAFE_FUNCTIONS)
        return evaluator.eval(expression)

    def _execute_message(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, MessagePayload)
        text = interpolate(payload.text, context.variables)
        return NodeOutcome(self.messages.format("message", text=text), reply=text)

    def _execute_question(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, QuestionPayload)
        text = interpolate(payload.text, context.variables)
        options = payload.option_list(self.messages.default_options)

        # No live customer is waiting here, so the first option is taken as the answer.
        answer = options[0]
        context.set_variable("last_answer", answer)

        title = interpolate(payload.title or "", context.variables)
        footer = interpolate(payload.footer or "", context.variables)

        # Rendered as a text menu: title, text, numbered options, footer.
        lines = [line for line in (title, text) if line]
        lines.extend(f"{number}. {option}" for number, option in enumerate(options, start=1))
        if footer:
            lines.append(footer)
        return NodeOutcome(self.messages.format("question", option=answer), reply="\n".join(lines))

    def _execute_condition(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, ConditionPayload)
        if payload.condition.strip():
            try:
                result = bool(self._evaluate(payload.condition, context))
                context.set_variable("last_condition", result)
            except Exception as e:
                logger.warning(f"Condition evaluation error for node {node.id}: {e}")
        return NodeOutcome(self.messages.format("condition", condition=payload.condition))

    def _execute_ai(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, AIPayload)
        generator = self.services.text_generator
        if generator is None:
            raise AIGenerationError("No text generation provider is configured", node_id=node.id)

        prompt = interpolate(payload.prompt, context.variables)
        try:
            text = generator.generate(prompt, max_tokens=payload.max_tokens, temperature=payload.temperature)
        except AIGenerationError:
            raise
        except Exception as e:
            raise AIGenerationError(f"Text generation failed: {e}", node_id=node.id) from e

        context.set_variable("ai_output", text)
        return NodeOutcome(text, reply=text)

    def _execute_wait(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, WaitPayload)
        delay = max(payload.delay, 0.0)
        if delay > self.max_wait_seconds:
            logger.warning(f"Wait node {node.id} asked for {delay}s; capped at {self.max_wait_seconds}s")
            delay = self.max_wait_seconds
        if delay:
            self.services.sleep(delay)
        return NodeOutcome(self.messages.format("wait", delay=display_value(delay)))

    def _execute_webhook(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, WebhookPayload)
        url = interpolate(payload.webhook_url, context.variables)
        try:
            self._require(self.services.http_client, "http client").fetch(url, "GET")
        except Exception as e:
            logger.warning(f"Webhook node {node.id} failed: {e}")
            return NodeOutcome(self.messages.format("webhook_error", error=self.messages.error_text(e)), is_error=True)
        return NodeOutcome(self.messages.format("webhook"))

    def _execute_code(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, CodePayload)
        expression = _LEADING_RETURN.sub("", payload.code.strip()).rstrip(";").strip()
        try:
            if not expression:
                raise ValueError("empty expression")
            value = self._evaluate(expression, context)
        except Exception as e:
            logger.warning(f"Code node {node.id} failed: {e}")
            return NodeOutcome(self.messages.format("code_error", error=self.messages.error_text(e)), is_error=True)

        context.set_variable("code_result", value)
        return NodeOutcome(self.messages.format("code", value=display_value(value)))

    def _execute_database(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, DatabasePayload)
        try:
            rows = self._require(self.services.query_executor, "query executor").query(payload.sql)
        except Exception as e:
            logger.warning(f"Database node {node.id} failed: {e}")
            return NodeOutcome(self.messages.format("database_error", error=self.messages.error_text(e)), is_error=True)

        context.set_variable("query_result", rows)
        return NodeOutcome(json.dumps(rows, ensure_ascii=False, default=str))

    def _execute_email(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, EmailPayload)
        to = interpolate(payload.to, context.variables)
        subject = interpolate(payload.subject, context.variables) or DEFAULT_EMAIL_SUBJECT
        body = interpolate(payload.email_text, context.variables)
        try:
            self._require(self.services.email_queue, "email queue").enqueue(to, subject, body)
        except Exception as e:
            logger.warning(f"Email node {node.id} failed: {e}")
            return NodeOutcome(self.messages.format("email_error", error=self.messages.error_text(e)), is_error=True)
        return NodeOutcome(self.messages.format("email", to=to))

    def _execute_set_variable(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, SetVariablePayload)
        value = payload.var_value
        if isinstance(value, str):
            value = interpolate(value, context.variables)
        context.set_variable(payload.var_name, value)
        return NodeOutcome(self.messages.format("set_variable", name=payload.var_name, value=display_value(value)))

    def _execute_send_file(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, SendFilePayload)
        url = interpolate(payload.file_url, context.variables)
        return NodeOutcome(self.messages.format("send_file", url=url), reply=url)

    def _execute_http(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, HttpPayload)
        url = interpolate(payload.http_url, context.variables)
        try:
            status = self._require(self.services.http_client, "http client").fetch(url, payload.http_method)
        except Exception as e:
            logger.warning(f"HTTP node {node.id} failed: {e}")
            return NodeOutcome(self.messages.format("http_error", error=self.messages.error_text(e)), is_error=True)
        return NodeOutcome(self.messages.format("http", status=status))

    def _execute_terminate(self, node: Node, context: RunContext) -> NodeOutcome:
        payload = self._payload(node, TerminatePayload)
        text = interpolate(payload.end_text, context.variables)
        return NodeOutcome(text, reply=text or None, halt=True)

    @staticmethod
    def _require(service, name: str):
        if service is None:
            raise RuntimeError(f"No {name} is configured")
        return service
