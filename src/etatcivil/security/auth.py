"""
Authentication and authorization for the registry API.

Implements:
- JWT bearer token issue and verification
- Role hierarchy: viewer < officer < admin

The registry engine itself never checks permissions; only the HTTP layer
does, through the dependencies in ``etatcivil.api.deps``.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel, Field

from etatcivil.config import settings

logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    """User roles for RBAC."""
    VIEWER = "viewer"      # Read-only access
    OFFICER = "officer"    # Registers and edits acts and persons
    ADMIN = "admin"        # Vital status overrides


ROLE_HIERARCHY = {
    UserRole.VIEWER: 0,
    UserRole.OFFICER: 1,
    UserRole.ADMIN: 2,
}


class TokenPayload(BaseModel):
    """JWT token payload."""
    sub: str                          # Username
    role: UserRole
    exp: datetime
    iat: datetime = Field(default_factory=datetime.utcnow)


class User(BaseModel):
    """Authenticated caller."""
    id: str
    username: str
    full_name: Optional[str] = None
    role: UserRole = UserRole.VIEWER
    is_active: bool = True


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class AuthorizationError(Exception):
    """Raised when authorization fails."""
    pass


def create_access_token(
    user: User,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user: User to create token for
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    payload = TokenPayload(
        sub=user.id,
        role=user.role,
        exp=datetime.utcnow() + expires_delta,
    )

    claims = payload.model_dump(mode="json")
    # Time claims must stay datetimes so jose encodes them as NumericDate
    claims["exp"] = payload.exp
    claims["iat"] = payload.iat

    return jwt.encode(
        claims,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def verify_access_token(token: str) -> TokenPayload:
    """
    Decode and validate an access token.

    Raises:
        AuthenticationError: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return TokenPayload(**payload)
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        raise AuthenticationError("Invalid or expired token") from e


def require_role(user: User, required_role: UserRole) -> None:
    """
    Check if user has the required role or higher.

    Raises:
        AuthorizationError: If user doesn't have required role
    """
    if ROLE_HIERARCHY.get(user.role, -1) < ROLE_HIERARCHY.get(required_role, 99):
        raise AuthorizationError(
            f"Insufficient permissions. Required: {required_role.value}, "
            f"Current: {user.role.value}"
        )
