"""
Authentication Middleware and Dependencies

Provides:
- get_current_user_required: Extract and validate user from JWT token
- RoleChecker: Dependency for role validation
"""

from typing import List
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from services.auth import decode_token, AuthUser, TokenData, UserRole

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


def _authenticate(credentials: HTTPAuthorizationCredentials) -> TokenData:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    token_data = decode_token(credentials.credentials)

    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if token_data.token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return token_data


# ==================== DEPENDENCIES ====================

async def get_current_user_required(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> AuthUser:
    """
    Extract current user from JWT token.
    Raises 401 if no token or invalid token.
    """
    token_data = _authenticate(credentials)
    return AuthUser(id=token_data.user_id, email=token_data.email, role=token_data.role)


class RoleChecker:
    """
    Dependency class for role-based access control.

    Usage:
        @router.post("/categories")
        async def create(user: AuthUser = Depends(RoleChecker(["admin"]))):
            ...
    """

    def __init__(self, allowed_roles: List[str]):
        self.allowed_roles = allowed_roles

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> AuthUser:
        token_data = _authenticate(credentials)

        if token_data.role not in self.allowed_roles:
            logger.warning(f"Role {token_data.role} denied; required {self.allowed_roles}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {self.allowed_roles}"
            )

        return AuthUser(id=token_data.user_id, email=token_data.email, role=token_data.role)


# Convenience role checkers
require_admin = RoleChecker([UserRole.admin.value])
