"""Email transports."""

from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class EmailSendError(Exception):
    """The provider rejected or could not accept a message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        # Client errors other than rate limiting will fail again
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class EmailTransport(ABC):
    @abstractmethod
    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """Send one message and return the provider's delivery id."""

    async def close(self) -> None:
        return None


class ResendTransport(EmailTransport):
    """Sends through the Resend HTTP API.

    The idempotency key lets a replayed send step reach the provider twice
    while delivering once.
    """

    API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            response = await self._client.post(
                self.API_URL,
                headers=headers,
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("email_send_rejected", status_code=status, body=e.response.text[:200])
            raise EmailSendError(f"Resend returned {status}", status_code=status) from e
        except httpx.RequestError as e:
            logger.warning("email_send_failed", error=str(e))
            raise EmailSendError(f"Resend request failed: {e}") from e

        delivery_id = response.json().get("id", "")
        logger.info("email_sent", delivery_id=delivery_id, idempotency_key=idempotency_key)
        return delivery_id

    async def close(self) -> None:
        await self._client.aclose()
