"""Access token verification. Tokens are issued by the identity service."""

from typing import Optional

from jose import jwt, JWTError
import structlog

from quotedesk.config import settings

logger = structlog.get_logger()

REQUIRED_CLAIMS = ("sub", "organization_id", "role")

# ---------- JWT key loading ----------

_public_key: Optional[str] = None


def _load_public_key() -> str:
    global _public_key
    if _public_key is None:
        with open(settings.JWT_PUBLIC_KEY_PATH, "r") as f:
            _public_key = f.read()
    return _public_key


def _verification_key() -> str:
    if settings.JWT_ALGORITHM.startswith("HS"):
        if not settings.JWT_SECRET_KEY:
            raise JWTError("JWT_SECRET_KEY is not configured")
        return settings.JWT_SECRET_KEY
    return _load_public_key()


# ---------- token verification ----------

def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    return jwt.decode(token, _verification_key(), algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    """Verify an access token and return its claims."""
    payload = decode_token(token)
    if payload.get("type", "access") != "access":
        raise JWTError("Not an access token")
    missing = [c for c in REQUIRED_CLAIMS if not payload.get(c)]
    if missing:
        raise JWTError(f"Token is missing claims: {', '.join(missing)}")
    return payload
