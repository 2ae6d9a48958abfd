"""API dependencies - authentication and authorization"""

from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from b2b_starter.config import Settings
from b2b_starter.core.exceptions import AuthenticationError, AuthorizationError
from b2b_starter.services.auth_service import AuthService
from b2b_starter.services.contracts import AuthProvider
from b2b_starter.services.permissions import Identity

# HTTP Bearer token scheme; missing headers are rejected by require_auth itself
security = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService constructed at startup."""
    return request.app.state.auth_service


def get_config(request: Request) -> Settings:
    return request.app.state.config


def require_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthProvider = Depends(get_auth_service),
) -> Identity:
    """
    Verify the bearer access token and attach the caller identity

    Access tokens are self-contained; no server-side session is consulted.

    Returns:
        Identity of the caller, also stored on ``request.state.identity``

    Raises:
        AuthenticationError: Missing token
        TokenExpiredError: Token has expired
        InvalidTokenError: Token is invalid
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise AuthenticationError("Missing bearer token")

    identity = auth_service.verify_token(credentials.credentials)
    request.state.identity = identity
    return identity


def require_permission(resource: str, action: str) -> Callable[..., Identity]:
    """
    Build a dependency that requires ``resource:action`` on the caller

    Raises:
        AuthorizationError: If the identity lacks the permission
    """

    def _check(identity: Identity = Depends(require_auth)) -> Identity:
        if not identity.has_permission(resource, action):
            raise AuthorizationError(f"Permission {resource}:{action} required")
        return identity

    return _check


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# Named auth dependencies available to routers.
AUTH_DEPENDENCIES = {
    "auth": require_auth,
}
