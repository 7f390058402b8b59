"""Identity provider account revocation."""

from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class IdentityError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class IdentityProvider(ABC):
    @abstractmethod
    async def delete_user(self, uid: str) -> bool:
        """Delete an account. Returns False if it did not exist."""


class NullIdentityProvider(IdentityProvider):
    """Used when no identity provider is configured."""

    async def delete_user(self, uid: str) -> bool:
        logger.info("identity_delete_skipped", uid=uid, reason="not configured")
        return False


class IdentityToolkitProvider(IdentityProvider):
    """Deletes accounts through the Identity Toolkit REST API."""

    BASE_URL = "https://identitytoolkit.googleapis.com/v1"

    def __init__(
        self,
        api_key: str,
        project_id: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.project_id = project_id
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self) -> str:
        if self.project_id:
            return f"{self.BASE_URL}/projects/{self.project_id}/accounts:delete"
        return f"{self.BASE_URL}/accounts:delete"

    async def delete_user(self, uid: str) -> bool:
        try:
            response = await self._client.post(
                self._url(),
                params={"key": self.api_key},
                json={"localId": uid},
            )
        except httpx.RequestError as e:
            raise IdentityError(f"Identity request failed: {e}") from e

        if response.status_code == 400 and "USER_NOT_FOUND" in response.text:
            logger.info("identity_user_already_deleted", uid=uid)
            return False
        if response.is_error:
            raise IdentityError(
                f"Identity provider returned {response.status_code}",
                status_code=response.status_code,
            )
        logger.info("identity_user_deleted", uid=uid)
        return True

    async def close(self) -> None:
        await self._client.aclose()
