"""Object storage access for uploaded source documents."""

from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class DocumentNotFound(Exception):
    retryable = False


class HttpDocumentStore:
    """Fetches stored objects by key from an HTTP object store."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def fetch(self, key: str) -> bytes:
        response = await self._client.get(f"{self.base_url}/{key.lstrip('/')}")
        if response.status_code == 404:
            raise DocumentNotFound(f"Document not found: {key}")
        response.raise_for_status()
        logger.info("document_fetched", key=key, size=len(response.content))
        return response.content

    async def close(self) -> None:
        await self._client.aclose()
