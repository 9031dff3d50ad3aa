from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from quotedesk.services.auth_service import verify_access_token
from quotedesk.services.collaborators import Actor

logger = structlog.get_logger()

# auto_error=False so a missing header gets the same error envelope as a bad token
security = HTTPBearer(auto_error=False)


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": {"code": code, "message": message}},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Verify the bearer token and return the caller's claims."""
    if credentials is None:
        raise _unauthorized("AUTH_REQUIRED", "Missing bearer token")
    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise _unauthorized("AUTH_TOKEN_INVALID", "Invalid or expired token")
    return {
        "user_id": payload["sub"],
        "organization_id": payload["organization_id"],
        "role": payload["role"],
        "email": payload.get("email"),
    }


async def get_current_actor(current_user: dict = Depends(get_current_user)) -> Actor:
    try:
        actor = Actor.from_claims(current_user)
    except (KeyError, ValueError) as e:
        logger.warning("auth_claims_malformed", error=str(e))
        raise _unauthorized("AUTH_TOKEN_INVALID", "Token claims are malformed")
    structlog.contextvars.bind_contextvars(
        user_id=str(actor.user_id), organization_id=str(actor.organization_id)
    )
    return actor
