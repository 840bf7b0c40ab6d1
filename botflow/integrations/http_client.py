"""Outbound HTTP calls made by webhook and http nodes."""

from typing import Optional

import requests

from ..core.logging import get_logger

logger = get_logger(__name__)

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


class HttpClient:
    """Thin wrapper around a requests session with a fixed timeout."""

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, url: str, method: str = "GET") -> int:
        """
        Fire a request and return the HTTP status code.

        Raises:
            ValueError: If the URL or method is unusable
            requests.RequestException: On network failure or timeout
        """
        if not url:
            raise ValueError("URL is empty")
        method = (method or "GET").upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        logger.debug(f"{method} {url}")
        response = self._session.request(method, url, timeout=self.timeout)
        logger.debug(f"{method} {url} -> {response.status_code}")
        return response.status_code

    def close(self) -> None:
        self._session.close()
