"""User management routes"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request, status

from b2b_starter.schemas.user import (
    AuditEventResponse,
    ProfileUpdate,
    UserAdminUpdate,
    UserListResponse,
    UserResponse,
)
from b2b_starter.services.auth_service import AuthService
from b2b_starter.services.permissions import Identity
from b2b_starter.api.deps import AUTH_DEPENDENCIES, client_ip, get_auth_service, require_permission

router = APIRouter()
authenticated = AUTH_DEPENDENCIES["auth"]


@router.get("/me", response_model=UserResponse)
def get_my_profile(
    identity: Identity = Depends(authenticated),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Get current user profile

    Args:
        identity: Current authenticated caller

    Returns:
        User profile
    """
    return UserResponse.model_validate(auth_service.users.get_by_id(identity.user_id))


@router.patch("/me", response_model=UserResponse)
def update_my_profile(
    body: ProfileUpdate,
    identity: Identity = Depends(authenticated),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Update own profile fields"""
    user = auth_service.users.update(identity.user_id, full_name=body.full_name)
    return UserResponse.model_validate(user)


@router.get("/", response_model=UserListResponse)
def list_users(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(require_permission("users", "read")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    List users (admin only)

    Args:
        limit: Page size
        offset: Rows to skip

    Returns:
        Page of users and the total count
    """
    users = auth_service.users.list(limit, offset)
    return UserListResponse(
        items=[UserResponse.model_validate(u) for u in users],
        total=auth_service.users.count(),
        limit=limit,
        offset=offset,
    )


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    identity: Identity = Depends(require_permission("users", "read")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Get a single user (admin only)"""
    return UserResponse.model_validate(auth_service.users.get_by_id(user_id))


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    body: UserAdminUpdate,
    request: Request,
    identity: Identity = Depends(require_permission("users", "write")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Update name, status or role of a user (admin only)

    Suspending or deleting an account revokes all of its refresh tokens.
    """
    user = auth_service.update_user(
        user_id,
        full_name=body.full_name,
        role=body.role.value if body.role else None,
        status=body.status.value if body.status else None,
        actor_id=identity.user_id,
        ip_address=client_ip(request),
    )
    return UserResponse.model_validate(user)


@router.get("/{user_id}/audit", response_model=List[AuditEventResponse])
def get_user_audit_trail(
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(require_permission("users", "read")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Administrative changes recorded for a user, newest first (admin only)"""
    return [AuditEventResponse.from_event(e) for e in auth_service.audit_trail(user_id, limit)]


@router.post("/{user_id}/verify-email", response_model=UserResponse)
def verify_user_email(
    user_id: int,
    request: Request,
    identity: Identity = Depends(require_permission("users", "write")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Mark a user's email as verified and activate a pending account (admin only)"""
    user = auth_service.verify_email(user_id, actor_id=identity.user_id, ip_address=client_ip(request))
    return UserResponse.model_validate(user)


@router.post("/{user_id}/unlock", status_code=status.HTTP_200_OK)
def unlock_user(
    user_id: int,
    request: Request,
    identity: Identity = Depends(require_permission("users", "write")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Clear failed-login counter and lockout (admin only)"""
    auth_service.unlock(user_id, actor_id=identity.user_id, ip_address=client_ip(request))
    return {"success": True, "message": f"User {user_id} unlocked"}


@router.post("/{user_id}/logout-all", status_code=status.HTTP_200_OK)
def logout_user_everywhere(
    user_id: int,
    request: Request,
    identity: Identity = Depends(require_permission("users", "write")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke every refresh token of a user (admin only)"""
    revoked = auth_service.revoke_sessions(user_id, actor_id=identity.user_id, ip_address=client_ip(request))
    return {"success": True, "revoked_count": revoked}


@router.delete("/{user_id}", status_code=status.HTTP_200_OK)
def delete_user(
    user_id: int,
    request: Request,
    identity: Identity = Depends(require_permission("users", "delete")),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Delete user (admin only)

    Args:
        user_id: User ID to delete

    Returns:
        Success message
    """
    auth_service.delete_user(user_id, actor_id=identity.user_id, ip_address=client_ip(request))

    return {
        "success": True,
        "message": f"User {user_id} deleted successfully"
    }
