"""Bearer-key guard for the exclusion management API.

Every route under /api/v1 mutates or exposes per-user visibility data, so the
routers attach ``require_admin`` as a router-level dependency.
"""

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from library_visibility.config import Settings, get_settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def admin_key_matches(presented: str | None, configured: str | None) -> bool:
    """Constant-time key check. An unset key on either side never matches."""
    if not presented or not configured:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), configured.encode("utf-8"))


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Reject the request unless it carries ``Authorization: Bearer <ADMIN_API_KEY>``.

    Missing key configuration is a deployment problem and answers 503, so a
    misconfigured server never looks like a bad client key.
    """
    if not settings.admin_api_key:
        logger.error("ADMIN_API_KEY is not set; refusing exclusion API request")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Exclusion API is disabled: no admin key configured",
        )

    if credentials is None:
        raise _unauthorized("Missing bearer token")

    if not admin_key_matches(credentials.credentials, settings.admin_api_key):
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected exclusion API call to {request.url.path} from {client}: bad admin key")
        raise _unauthorized("Bearer token does not match the admin key")
