"""
Counsel Engine - Authentication Utilities
JWT bearer tokens and auth dependencies

Identity lives elsewhere; this service only verifies tokens it shares a
secret with and reads the caller's id and role from them.
"""
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .models.db_models import utcnow

# Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "counsel-engine-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")

ROLES = ("user", "counselor", "admin")

# Bearer token security
security = HTTPBearer()


@dataclass
class Principal:
    """The authenticated caller."""
    user_id: str
    email: Optional[str]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def may_act_as(self, user_id: str) -> bool:
        return self.is_admin or self.user_id == user_id


def create_access_token(user_id: str, email: str, role: str = "user") -> str:
    """Create a JWT access token with role claim."""
    expire = utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": expire
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    Dependency to get the authenticated caller.
    Validates the JWT token; no database lookup.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user_id: str = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    # Check token expiration
    exp = payload.get("exp")
    if exp is None or datetime.fromtimestamp(exp, tz=timezone.utc).replace(tzinfo=None) < utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )

    role = payload.get("role", "user")
    if role not in ROLES:
        raise credentials_exception

    return Principal(user_id=user_id, email=payload.get("email"), role=role)


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """
    Dependency to require admin role.
    Use this on admin-only routes.
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return principal


def require_self_or_admin(principal: Principal, user_id: str):
    """Raise 403 unless the caller is acting for themselves or is an admin."""
    if not principal.may_act_as(user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to act for another user"
        )


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True
