"""Typed payloads of each node variant, read from `Node.data`."""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NodePayload(BaseModel):
    """Base for node payloads; camelCase keys as saved by the graph builder."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    label: Optional[str] = None


class MessagePayload(NodePayload):
    text: str = ""


class QuestionPayload(NodePayload):
    text: str = ""
    options: Optional[str] = None
    title: Optional[str] = None
    footer: Optional[str] = None

    @field_validator('options', mode='before')
    @classmethod
    def join_option_list(cls, options):
        if isinstance(options, list):
            return ",".join(str(option) for option in options)
        return options

    def option_list(self, default: List[str]) -> List[str]:
        """Comma-separated options, trimmed; the default when none are given."""
        if not self.options:
            return list(default)
        parsed = [option.strip() for option in self.options.split(",")]
        parsed = [option for option in parsed if option]
        return parsed or list(default)


class ConditionPayload(NodePayload):
    condition: str = ""


class AIPayload(NodePayload):
    prompt: str = ""
    max_tokens: int = Field(150, alias="maxTokens")
    temperature: float = 0.7

    @field_validator('max_tokens', 'temperature', mode='before')
    @classmethod
    def falsy_to_default(cls, value, info):
        # The builder stores cleared inputs as "" or 0.
        if value in (None, "", 0):
            return cls.model_fields[info.field_name].default
        return value


class WaitPayload(NodePayload):
    delay: float = 0

    @field_validator('delay', mode='before')
    @classmethod
    def parse_delay(cls, value):
        if value in (None, ""):
            return 0
        return value


class WebhookPayload(NodePayload):
    webhook_url: str = Field("", alias="webhookUrl")


class CodePayload(NodePayload):
    code: str = ""


class DatabasePayload(NodePayload):
    sql: str = ""


class EmailPayload(NodePayload):
    to: str = ""
    subject: Optional[str] = None
    email_text: str = Field("", alias="emailText")


class SetVariablePayload(NodePayload):
    var_name: str = Field("", alias="varName")
    var_value: Any = Field(None, alias="varValue")


class SendFilePayload(NodePayload):
    file_url: str = Field("", alias="fileUrl")


class HttpPayload(NodePayload):
    http_url: str = Field("", alias="httpUrl")
    http_method: str = Field("GET", alias="httpMethod")

    @field_validator('http_method', mode='before')
    @classmethod
    def normalize_method(cls, method):
        if not method:
            return "GET"
        return str(method).upper()


class TerminatePayload(NodePayload):
    end_text: str = Field("", alias="endText")
