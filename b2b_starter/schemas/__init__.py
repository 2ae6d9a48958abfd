"""Pydantic schemas for API validation"""

from b2b_starter.schemas.user import (
    UserRole,
    UserStatus,
    RegisterRequest,
    UserLogin,
    RefreshTokenRequest,
    LogoutRequest,
    ChangePasswordRequest,
    ProfileUpdate,
    UserAdminUpdate,
    UserResponse,
    UserListResponse,
    TokenResponse,
    IdentityResponse,
)
from b2b_starter.schemas.response import ErrorResponse

__all__ = [
    "UserRole", "UserStatus",
    "RegisterRequest", "UserLogin", "RefreshTokenRequest", "LogoutRequest", "ChangePasswordRequest",
    "ProfileUpdate", "UserAdminUpdate", "UserResponse", "UserListResponse", "TokenResponse",
    "IdentityResponse",
    "ErrorResponse",
]
