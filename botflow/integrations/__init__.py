"""External collaborators called by workflow nodes and drivers."""

from .http_client import HttpClient
from .text_generation import CohereTextGenerator
from .transport import WhatsAppCloudTransport
from .query_executor import QueryExecutor
from .email_queue import EmailQueue

__all__ = [
    "HttpClient",
    "CohereTextGenerator",
    "WhatsAppCloudTransport",
    "QueryExecutor",
    "EmailQueue",
]
