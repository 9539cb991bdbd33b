from datetime import datetime, timedelta, timezone

from fastapi import Depends, Header
from jose import JWTError, jwt

from assetmarket.config import settings
from assetmarket.core.exceptions import ForbiddenError, UnauthorizedError


def create_access_token(principal: str) -> str:
    """Create a JWT token whose subject is the caller's principal."""
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.jwt_expire_hours)
    payload = {
        "sub": principal,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Returns the payload."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise UnauthorizedError("Invalid or expired token")
    if not payload.get("sub"):
        raise UnauthorizedError("Token missing subject")
    return payload


def get_current_principal(authorization: str = Header(None)) -> str:
    """FastAPI dependency that extracts the caller principal from the Authorization header."""
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Authorization header must be: Bearer <token>")

    payload = decode_token(parts[1])
    return payload["sub"]


def require_admin(principal: str = Depends(get_current_principal)) -> str:
    """FastAPI dependency that admits only configured admin principals."""
    if principal not in settings.admin_principal_set:
        raise ForbiddenError("Admin access required")
    return principal
