"""Authentication (bearer token verification) and role capabilities."""
from __future__ import annotations

import enum
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .domain_errors import PermissionDenied
from .models import User

logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


class Role(str, enum.Enum):
    OPERATOR = "operator"
    TENANT_USER = "tenant_user"


class Capability(str, enum.Enum):
    VIEW_GEOFENCES = "canViewGeofences"
    CREATE_GEOFENCES = "canCreateGeofences"
    EDIT_OWN_GEOFENCES = "canEditOwnGeofences"
    EDIT_ANY_GEOFENCE = "canEditAnyGeofence"
    SHARE_GEOFENCES = "canShareGeofences"
    VIEW_ANY_CLIENT = "canViewAnyClient"
    MANAGE_OWN_RECIPIENTS = "canManageOwnRecipients"
    MANAGE_ANY_RECIPIENTS = "canManageAnyRecipients"
    TEST_RECIPIENTS = "canTestRecipients"
    VIEW_DELIVERIES = "canViewDeliveries"
    VIEW_AUDIT = "canViewAudit"


# Role capability matrix
ROLE_PERMISSIONS: dict[Role, dict[Capability, bool]] = {
    Role.OPERATOR: {
        Capability.VIEW_GEOFENCES: True,
        Capability.CREATE_GEOFENCES: True,
        Capability.EDIT_OWN_GEOFENCES: True,
        Capability.EDIT_ANY_GEOFENCE: True,
        Capability.SHARE_GEOFENCES: True,
        Capability.VIEW_ANY_CLIENT: True,
        Capability.MANAGE_OWN_RECIPIENTS: True,
        Capability.MANAGE_ANY_RECIPIENTS: True,
        Capability.TEST_RECIPIENTS: True,
        Capability.VIEW_DELIVERIES: True,
        Capability.VIEW_AUDIT: True,
    },
    Role.TENANT_USER: {
        Capability.VIEW_GEOFENCES: True,
        Capability.CREATE_GEOFENCES: True,
        Capability.EDIT_OWN_GEOFENCES: True,
        Capability.EDIT_ANY_GEOFENCE: False,
        Capability.SHARE_GEOFENCES: False,
        Capability.VIEW_ANY_CLIENT: False,
        Capability.MANAGE_OWN_RECIPIENTS: True,
        Capability.MANAGE_ANY_RECIPIENTS: False,
        Capability.TEST_RECIPIENTS: False,
        Capability.VIEW_DELIVERIES: False,
        Capability.VIEW_AUDIT: False,
    },
}


@dataclass(frozen=True)
class Caller:
    """Authenticated identity used by every use-case."""

    user_id: UUID | None
    name: str
    role: Role
    client_id: UUID | None = None

    @property
    def is_operator(self) -> bool:
        return self.role is Role.OPERATOR

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        return cls(
            user_id=user.id,
            name=user.username,
            role=Role(user.role),
            client_id=user.client_id,
        )


# Actor used for audit entries written by background workers.
SYSTEM_CALLER = Caller(user_id=None, name="system", role=Role.OPERATOR)


def check_permission(caller: Caller, capability: Capability) -> bool:
    """Check if caller's role grants a capability."""
    return ROLE_PERMISSIONS.get(caller.role, {}).get(capability, False)


def require_capability(caller: Caller, capability: Capability) -> None:
    """Enforce a role capability at the authorization boundary."""
    if not check_permission(caller, capability):
        raise PermissionDenied(
            code="PERMISSION_DENIED",
            message=f"Permission denied: {capability.value} required",
            reason=f"Role '{caller.role.value}' lacks {capability.value}",
        )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token (used by tooling and tests; login lives in the auth service)."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + 60 * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _credentials_exception(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """Decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_exception()

    now = int(time.time())
    exp = payload.get("exp")
    if exp is None:
        raise _credentials_exception()
    try:
        exp_int = int(exp)
    except (TypeError, ValueError):
        raise _credentials_exception()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_exception("Token expired")
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _credentials_exception()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _credentials_exception()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


def get_current_caller(current_user: User = Depends(get_current_user)) -> Caller:
    """Get the authenticated caller identity."""
    return Caller.from_user(current_user)


class PermissionChecker:
    """Check caller capability based on role."""

    def __init__(self, required: Capability):
        self.required = required

    def __call__(self, caller: Caller = Depends(get_current_caller)) -> Caller:
        require_capability(caller, self.required)
        return caller


def verify_detector_secret(authorization: str = Header(None)) -> None:
    """Authenticate the upstream crossing detector by shared secret."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    token = authorization.split(" ", 1)[1]
    if not hmac.compare_digest(token.encode("utf-8"), settings.DETECTOR_SHARED_SECRET.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Invalid shared secret")
