"""Trace line templates per locale."""

from typing import Dict, List

from ..config import TraceLocale

TRACE_MESSAGES: Dict[TraceLocale, Dict[str, str]] = {
    TraceLocale.PT: {
        "message": "Mensagem enviada: {text}",
        "question": "Pergunta respondida: {option}",
        "condition": "Condição {condition} avaliada",
        "wait": "Aguardou {delay} segundos",
        "webhook": "Webhook recebido",
        "webhook_error": "Webhook error: {error}",
        "code": "Resultado do código: {value}",
        "code_error": "Erro de código: {error}",
        "database_error": "Erro SQL: {error}",
        "email": "E-mail enfileirado para {to}",
        "email_error": "Erro ao enfileirar e-mail: {error}",
        "set_variable": "Variável {name} = {value}",
        "send_file": "Arquivo enviado: {url}",
        "http": "HTTP {status}",
        "http_error": "Erro HTTP: {error}",
        "not_implemented": "Não implementado: {type}",
        "invalid_data": "Dados inválidos no nó {node}: {error}",
        "unknown_error": "Erro desconhecido",
    },
    TraceLocale.EN: {
        "message": "Message sent: {text}",
        "question": "Question answered: {option}",
        "condition": "Condition {condition} evaluated",
        "wait": "Waited {delay} seconds",
        "webhook": "Webhook received",
        "webhook_error": "Webhook error: {error}",
        "code": "Code result: {value}",
        "code_error": "Code error: {error}",
        "database_error": "SQL error: {error}",
        "email": "Email queued for {to}",
        "email_error": "Error queuing email: {error}",
        "set_variable": "Variable {name} = {value}",
        "send_file": "File sent: {url}",
        "http": "HTTP {status}",
        "http_error": "HTTP error: {error}",
        "not_implemented": "Not implemented: {type}",
        "invalid_data": "Invalid data for node {node}: {error}",
        "unknown_error": "Unknown error",
    },
}

DEFAULT_QUESTION_OPTIONS: Dict[TraceLocale, List[str]] = {
    TraceLocale.PT: ["Sim", "Não"],
    TraceLocale.EN: ["Yes", "No"],
}

DEFAULT_EMAIL_SUBJECT = "Workflow Email"


class TraceMessages:
    """Formats trace lines in one locale."""

    def __init__(self, locale: TraceLocale = TraceLocale.PT):
        self.locale = TraceLocale(locale)
        self._templates = TRACE_MESSAGES[self.locale]

    def format(self, key: str, **values) -> str:
        return self._templates[key].format(**values)

    def error_text(self, error: BaseException) -> str:
        """Message of an exception, or the locale's unknown-error text."""
        text = str(error).strip()
        return text or self._templates["unknown_error"]

    @property
    def default_options(self) -> List[str]:
        return list(DEFAULT_QUESTION_OPTIONS[self.locale])
