"""Authentication dependencies."""
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, Header, HTTPException
import logging

from errors import AuthenticationError
from monitoring import auth_failures_counter, auth_attempts_counter
from security import decode_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """Identity carried by a verified access token."""
    id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _bearer_token(authorization: str) -> str:
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format", extra={
            "auth_header": authorization[:20] + "..." if len(authorization) > 20 else authorization
        })
        raise HTTPException(status_code=401, detail="Invalid authorization header format")
    return parts[1]


def get_current_user(authorization: Optional[str] = Header(None)) -> CurrentUser:
    """
    Verify the bearer access token.

    Args:
        authorization: Authorization header value

    Returns:
        Authenticated user

    Raises:
        HTTPException: If token is invalid, expired or missing
    """
    auth_attempts_counter.add(1, {"type": "bearer_token"})

    if authorization is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise HTTPException(status_code=401, detail="Missing authorization header")

    token = _bearer_token(authorization)
    try:
        payload = decode_access_token(token)
    except AuthenticationError as e:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed", extra={"reason": str(e)})
        raise HTTPException(status_code=401, detail=str(e))

    user = CurrentUser(id=payload["id"], email=payload.get("email", ""), role=payload.get("role", "customer"))
    logger.debug("Authentication successful", extra={"user_id": user.id})
    return user


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[CurrentUser]:
    """Same as get_current_user, but anonymous requests yield None."""
    if authorization is None:
        return None
    return get_current_user(authorization)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        logger.warning("Admin route refused", extra={"user_id": user.id})
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
