"""Text generation provider used by ai nodes."""

from typing import Any, Dict, Optional

import requests

from ..core.error_recovery import CircuitBreaker
from ..core.exceptions import AIGenerationError, TransientError
from ..core.logging import get_logger

logger = get_logger(__name__)


class CohereTextGenerator:
    """Calls the Cohere `generate` endpoint."""

    provider = "cohere"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "command",
        api_url: str = "https://api.cohere.ai/v1/generate",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60.0,
            expected_exception=TransientError,
            name="cohere"
        )

    def generate(self, prompt: str, max_tokens: int = 150, temperature: float = 0.7) -> str:
        """
        Generate text for a prompt.

        Raises:
            AIGenerationError: If the key is missing, the call fails or no text comes back
        """
        if not self.api_key:
            raise AIGenerationError(
                "Cohere API key not set",
                provider=self.provider
            ).add_details(config_key="COHERE_API_KEY")

        try:
            payload = self._breaker.call(self._request, prompt, max_tokens, temperature)
        except TransientError as e:
            raise AIGenerationError(f"Text generation failed: {e.message}", provider=self.provider)

        text = self._extract_text(payload)
        if not text:
            raise AIGenerationError("Text generation returned no text", provider=self.provider)
        return text

    def _request(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        try:
            response = self._session.post(
                self.api_url,
                json={
                    "model": self.model,
                    "prompt": prompt,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                },
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.api_key}",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientError(f"Cohere request failed: {e}")

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientError(f"Cohere returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise AIGenerationError(
                f"Cohere rejected the request with HTTP {response.status_code}: {response.text[:200]}",
                provider=self.provider
            )

        try:
            payload = response.json()
        except ValueError:
            raise AIGenerationError("Cohere returned a non-JSON response", provider=self.provider)
        logger.debug(f"Cohere response keys: {sorted(payload)}")
        return payload

    @staticmethod
    def _extract_text(payload: Dict[str, Any]) -> str:
        generations = payload.get("generations") or []
        if generations and isinstance(generations[0], dict):
            text = generations[0].get("text") or ""
            if text.strip():
                return text.strip()
        return (payload.get("text") or "").strip()
