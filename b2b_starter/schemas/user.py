"""User and authentication schemas"""

import re
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, Optional, List
from datetime import datetime
from enum import Enum

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class UserRole(str, Enum):
    """User role enumeration"""
    ADMIN = "admin"
    USER = "user"


class UserStatus(str, Enum):
    """Account lifecycle status"""
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


def normalize_email(value: str) -> str:
    return value.strip().lower()


class _EmailModel(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def email_format(cls, v):
        """Normalize and sanity-check email address"""
        v = normalize_email(v)
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v


class RegisterRequest(_EmailModel):
    """Self-service registration"""
    password: str = Field(..., min_length=1, max_length=1024)
    full_name: Optional[str] = Field(None, max_length=255)


class UserLogin(_EmailModel):
    """User login schema"""
    password: str = Field(..., min_length=1, max_length=1024)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=1024)
    new_password: str = Field(..., min_length=1, max_length=1024)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=255)


class UserAdminUpdate(BaseModel):
    """Administrative changes; email verification has its own endpoint."""
    full_name: Optional[str] = Field(None, max_length=255)
    status: Optional[UserStatus] = None
    role: Optional[UserRole] = None

    @field_validator("status")
    @classmethod
    def status_not_active(cls, v):
        """Activation only happens through email verification"""
        if v == UserStatus.ACTIVE:
            raise ValueError("Use the verify-email endpoint to activate an account")
        return v


class UserResponse(BaseModel):
    """User response schema"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    email_verified: bool
    full_name: Optional[str] = None
    status: str
    role: str
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class UserListResponse(BaseModel):
    items: List[UserResponse]
    total: int
    limit: int
    offset: int


class AuditEventResponse(BaseModel):
    """Audit trail entry"""
    id: int
    action: str
    actor_id: Optional[int] = None
    target_user_id: int
    ip_address: Optional[str] = None
    details: Dict[str, Any] = {}
    created_at: Optional[datetime] = None

    @classmethod
    def from_event(cls, event) -> "AuditEventResponse":
        return cls(
            id=event.id,
            action=event.action,
            actor_id=event.actor_id,
            target_user_id=event.target_user_id,
            ip_address=event.ip_address,
            details=event.details_dict(),
            created_at=event.created_at,
        )


class TokenResponse(BaseModel):
    """JWT token pair response"""
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: datetime
    expires_in: int
    user: Optional[UserResponse] = None


class IdentityResponse(BaseModel):
    user_id: int
    email: str
    email_verified: bool
    roles: List[str]
    permissions: List[str]
    expires_at: datetime
