"""
Authentication and authorization dependencies

The caller's identity comes from a bearer JWT (``sub`` = user id, ``role`` =
customer or staff). Replace ``get_current_caller`` through
``app.dependency_overrides`` to plug in another authenticator.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..system import BankingSystem
from ..users import User, UserRole
from ..errors import Unauthorized, Forbidden


security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Authenticated identity of the current request"""
    user_id: str
    role: UserRole = UserRole.CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.STAFF


# Dependency to get banking system
def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.banking_system


def get_current_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: BankingSystem = Depends(get_banking_system)
) -> Caller:
    """Dependency that validates the JWT and returns the caller"""
    if not credentials:
        raise Unauthorized("Authentication required")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.settings.jwt_secret,
            algorithms=[system.settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    try:
        role = UserRole(payload.get("role", UserRole.CUSTOMER.value))
    except ValueError:
        raise Unauthorized("Invalid token")

    return Caller(user_id=user_id, role=role)


def require_staff(caller: Caller = Depends(get_current_caller)) -> Caller:
    """Dependency for staff-only routes"""
    if not caller.is_staff:
        raise Forbidden("Staff access required")
    return caller


def issue_token(user: User, secret: str, algorithm: str = "HS256", expires_minutes: int = 60) -> str:
    """Sign a bearer token for a user"""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "role": user.role.value,
        "name": user.name,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes)
    }
    return jwt.encode(payload, secret, algorithm=algorithm)
