"""Security dependencies for FastAPI routes.

Provides:
- Admin token authentication (constant-time compare)
- Webhook signature verification
"""

import hmac

import structlog
from fastapi import Depends, HTTPException, Request, status

from edujobs.config import Settings, get_settings
from edujobs.engine.signing import SIGNATURE_HEADER, verify

logger = structlog.get_logger(__name__)


# =============================================================================
# Admin Token Authentication
# =============================================================================


def require_admin_token(
    request: Request, settings: Settings = Depends(get_settings)
) -> bool:
    """
    Require a valid admin token for the runs API.

    Security guarantees:
    - Uses hmac.compare_digest() for constant-time comparison
    - No bypass when ADMIN_TOKEN is unset: the routes are closed
    - Returns 401 for a missing token, 403 for an invalid one

    Usage:
        @router.get("/admin/runs")
        async def list_runs(..., _: bool = Depends(require_admin_token)):
            ...
    """
    admin_token = settings.admin_token
    if not admin_token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_TOKEN not configured. Contact system administrator.",
        )

    provided_token = request.headers.get("X-Admin-Token")
    if not provided_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin token required. Provide X-Admin-Token header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(provided_token.encode(), admin_token.encode()):
        logger.warning(
            "invalid_admin_token",
            path=request.url.path,
            client=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )

    return True


# =============================================================================
# Webhook Signatures
# =============================================================================


async def verify_signature(
    request: Request, settings: Settings = Depends(get_settings)
) -> bytes:
    """Check X-Signature when a signing key is configured. Returns the raw body."""
    body = await request.body()
    if not settings.signing_key:
        return body

    if not verify(
        settings.signing_key,
        body,
        request.headers.get(SIGNATURE_HEADER),
        tolerance_s=settings.signature_tolerance_s,
    ):
        logger.warning(
            "webhook_signature_rejected",
            path=request.url.path,
            client=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing request signature",
        )
    return body
