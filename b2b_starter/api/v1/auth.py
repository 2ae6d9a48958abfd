"""Authentication routes"""

from fastapi import APIRouter, Depends, status, Request

from b2b_starter.config import Settings
from b2b_starter.core.timeutil import utcnow
from b2b_starter.core.tokens import TokenPair
from b2b_starter.schemas.user import (
    RegisterRequest,
    UserLogin,
    TokenResponse,
    UserResponse,
    RefreshTokenRequest,
    LogoutRequest,
    ChangePasswordRequest,
    IdentityResponse,
)
from b2b_starter.services.auth_service import AuthService
from b2b_starter.services.permissions import Identity
from b2b_starter.services.rate_limiter import rate_limiter
from b2b_starter.api.deps import AUTH_DEPENDENCIES, client_ip, get_auth_service, get_config

router = APIRouter()
authenticated = AUTH_DEPENDENCIES["auth"]


def _token_response(pair: TokenPair, user=None) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_at=pair.expires_at,
        expires_in=max(0, int((pair.expires_at - utcnow()).total_seconds())),
        user=UserResponse.model_validate(user) if user is not None else None,
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    config: Settings = Depends(get_config),
):
    """
    Register endpoint - create an account pending email verification

    Registration does not log the user in.
    """
    ip = client_ip(request) or "unknown"
    rate_limiter.enforce(f"register:min:{ip}", config.LOGIN_RATE_LIMIT_PER_MINUTE, 60,
                         "Too many registration attempts. Please wait a minute.")

    user = auth_service.register(body.email, body.password, body.full_name)
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenResponse, status_code=status.HTTP_200_OK)
def login(
    credentials: UserLogin,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    config: Settings = Depends(get_config),
):
    """
    Login endpoint - authenticate user and return a JWT token pair

    Args:
        credentials: Email and password

    Returns:
        Token pair and user info
    """
    ip = client_ip(request)
    per_min_key = f"login:min:{ip}:{credentials.email}"
    per_hour_key = f"login:hour:{ip}:{credentials.email}"
    rate_limiter.enforce(per_min_key, config.LOGIN_RATE_LIMIT_PER_MINUTE, 60,
                         "Too many login attempts. Please wait a minute.")
    rate_limiter.enforce(per_hour_key, config.LOGIN_RATE_LIMIT_PER_HOUR, 3600,
                         "Too many login attempts. Please try again later.")

    pair, user = auth_service.login(
        credentials.email,
        credentials.password,
        ip_address=ip,
        user_agent=request.headers.get("user-agent"),
    )
    return _token_response(pair, user)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(
    req: RefreshTokenRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    config: Settings = Depends(get_config),
):
    """
    Rotate a refresh token into a new token pair

    The presented refresh token is revoked; presenting it again revokes every
    session of the user.
    """
    ip = client_ip(request) or "unknown"
    rate_limiter.enforce(f"refresh:min:{ip}", config.RATE_LIMIT_PER_MINUTE, 60, "Too many refresh attempts. Slow down.")
    rate_limiter.enforce(f"refresh:hour:{ip}", config.RATE_LIMIT_PER_HOUR, 3600, "Too many refresh attempts. Try later.")

    pair = auth_service.refresh_tokens(req.refresh_token)
    return _token_response(pair)


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout(
    body: LogoutRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Logout endpoint - revoke the presented refresh token

    Other sessions of the same user stay valid.
    """
    revoked = auth_service.logout(body.refresh_token)
    return {
        "success": True,
        "message": "Logged out successfully",
        "refresh_token_revoked": revoked
    }


@router.post("/logout-all", status_code=status.HTTP_200_OK)
def logout_all(
    identity: Identity = Depends(authenticated),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke every refresh token of the current user"""
    revoked = auth_service.logout_all(identity.user_id)
    return {
        "success": True,
        "message": "Logged out from all sessions",
        "revoked_count": revoked
    }


@router.post("/change-password", status_code=status.HTTP_200_OK)
def change_password(
    body: ChangePasswordRequest,
    identity: Identity = Depends(authenticated),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Change password and sign out everywhere"""
    auth_service.change_password(identity.user_id, body.current_password, body.new_password)
    return {
        "success": True,
        "message": "Password changed. Please log in again."
    }


@router.get("/me", response_model=IdentityResponse)
def get_identity(identity: Identity = Depends(authenticated)):
    """Return the identity carried by the access token"""
    return IdentityResponse(
        user_id=identity.user_id,
        email=identity.email,
        email_verified=identity.email_verified,
        roles=list(identity.roles),
        permissions=sorted(str(p) for p in identity.permissions),
        expires_at=identity.expires_at,
    )
