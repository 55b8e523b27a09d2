"""
Request authentication for the clip worker.

Two FastAPI dependencies:
- verify_api_key: service key in X-API-Key, enforced once REELCUTTER_API_KEY is set
- get_acting_user: optional X-User-Id; when sent, the caller may only touch
  jobs and clips that user owns (see ensure_owner)
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from app.config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
USER_ID_HEADER = "X-User-Id"

api_key_scheme = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": API_KEY_HEADER},
    )


async def verify_api_key(api_key: Optional[str] = Security(api_key_scheme)) -> None:
    """Reject the request unless it carries the configured service key."""
    expected_key = get_settings().reelcutter_api_key
    if not expected_key:
        return

    if not api_key:
        raise _unauthorized("Missing API key")
    if not hmac.compare_digest(api_key.encode("utf-8"), expected_key.encode("utf-8")):
        logger.warning("Invalid API key received")
        raise _unauthorized("Invalid API key")


async def get_acting_user(
    x_user_id: Optional[str] = Header(None, alias=USER_ID_HEADER),
) -> Optional[str]:
    """User the request acts for; None for service-level callers."""
    return x_user_id or None


def ensure_owner(acting_user: Optional[str], owner_id: str, resource: str) -> None:
    """
    Raise 403 when a user-scoped request reaches another user's resource.

    Service-level callers (no X-User-Id) pass unchecked.
    """
    if acting_user is None or acting_user == owner_id:
        return

    logger.warning(f"User {acting_user} denied access to {resource}")
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=f"Not allowed to access {resource}",
    )
