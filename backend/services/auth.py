"""
Authentication Service

Users and passwords live with the identity provider; this service only
issues and validates the JWT access tokens it shares a secret with.

Provides:
- JWT token creation and validation
- Authenticated user context with role checks
"""

from datetime import datetime, timedelta
from typing import Optional
import logging
from enum import Enum

from jose import JWTError, jwt
from pydantic import BaseModel

from config import get_settings

logger = logging.getLogger(__name__)


# ==================== ENUMS ====================

class UserRole(str, Enum):
    admin = "admin"
    user = "user"


# ==================== MODELS ====================

class TokenData(BaseModel):
    """Data extracted from JWT token"""
    user_id: str
    email: str
    role: str
    exp: Optional[datetime] = None
    token_type: str = "access"


class AuthUser(BaseModel):
    """Authenticated user context"""
    id: str
    email: str
    role: str

    def is_admin(self) -> bool:
        return self.role == UserRole.admin.value


# ==================== JWT UTILITIES ====================

def create_access_token(
    user_id: str,
    email: str,
    role: str = UserRole.user.value,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a JWT access token"""
    settings = get_settings()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": user_id,
        "email": email,
        "role": role,
        "type": "access",
        "exp": expire,
        "iat": datetime.utcnow()
    }

    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[TokenData]:
    """Decode and validate a JWT token"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        user_id = payload.get("sub")
        email = payload.get("email")
        role = payload.get("role")
        token_type = payload.get("type", "access")
        exp = payload.get("exp")

        if not user_id or not email or not role:
            return None

        return TokenData(
            user_id=user_id,
            email=email,
            role=role,
            token_type=token_type,
            exp=datetime.fromtimestamp(exp) if exp else None
        )
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None
