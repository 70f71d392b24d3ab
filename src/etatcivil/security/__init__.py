"""
Security module: bearer token verification and role checks.
"""

from etatcivil.security.auth import (
    AuthenticationError,
    AuthorizationError,
    TokenPayload,
    User,
    UserRole,
    create_access_token,
    require_role,
    verify_access_token,
)

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "TokenPayload",
    "User",
    "UserRole",
    "create_access_token",
    "require_role",
    "verify_access_token",
]
