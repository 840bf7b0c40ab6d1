"""Message transport: delivering text to a WhatsApp number."""

from typing import Optional

import requests

from ..core.error_recovery import RetryConfig, with_retry
from ..core.exceptions import TransientError, TransportError
from ..core.logging import get_logger

logger = get_logger(__name__)


class WhatsAppCloudTransport:
    """Sends text messages through the WhatsApp Cloud (Graph) API."""

    def __init__(
        self,
        token: Optional[str],
        phone_number_id: Optional[str],
        api_version: str = "v18.0",
        base_url: str = "https://graph.facebook.com",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.token = token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def send(
        self,
        identity: str,
        text: str,
        token: Optional[str] = None,
        phone_number_id: Optional[str] = None
    ) -> bool:
        """
        Send a text message to an identity.

        Per-request credentials override the configured ones. Failures are
        logged and reported as False; they never raise.
        """
        token = token or self.token
        phone_number_id = phone_number_id or self.phone_number_id
        if not token or not phone_number_id:
            logger.error("WhatsApp credentials are not configured; message not sent")
            return False

        try:
            self._post_message(identity, text, token, phone_number_id)
            return True
        except (TransportError, TransientError) as e:
            logger.error(f"Failed to send message to {identity}: {e.message}")
            return False

    @with_retry(RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0))
    def _post_message(self, identity: str, text: str, token: str, phone_number_id: str) -> None:
        url = f"{self.base_url}/{self.api_version}/{phone_number_id}/messages"
        try:
            response = self._session.post(
                url,
                json={
                    "messaging_product": "whatsapp",
                    "to": identity,
                    "type": "text",
                    "text": {"body": text},
                },
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {token}",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientError(f"WhatsApp request failed: {e}")

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientError(f"WhatsApp API returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise TransportError(
                f"WhatsApp API rejected the message: {response.text[:200]}",
                identity=identity,
                status_code=response.status_code
            )
        logger.debug(f"Message delivered to {identity}")
