"""
Collaborator contracts consumed and produced by the auth core.

The SQLAlchemy stores in this package are the shipped implementations; any
object satisfying these protocols can be handed to :class:`AuthService`.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple

from b2b_starter.core.tokens import TokenPair
from b2b_starter.models.audit import AuditEvent
from b2b_starter.models.security import RefreshToken
from b2b_starter.models.user import User
from b2b_starter.services.permissions import Identity


class UserStore(Protocol):
    """User persistence. ``get_by_*`` raise ``UserNotFoundError``."""

    def create(self, email: str, password_hash: str, full_name: Optional[str], role: str) -> User: ...
    def get_by_id(self, user_id: int) -> User: ...
    def get_by_email(self, email: str) -> User: ...
    def update(
        self,
        user_id: int,
        *,
        full_name: Optional[str] = None,
        status: Optional[str] = None,
        role: Optional[str] = None,
    ) -> User: ...
    def update_password(self, user_id: int, password_hash: str) -> None: ...
    def rehash_password(self, user_id: int, password_hash: str) -> None: ...
    def mark_email_verified(self, user_id: int) -> None: ...
    def update_last_login(self, user_id: int, ip_address: Optional[str]) -> None: ...
    def increment_failed_attempts(self, user_id: int) -> int: ...
    def reset_failed_attempts(self, user_id: int) -> None: ...
    def lock_until(self, user_id: int, until: datetime) -> None: ...
    def delete(self, user_id: int) -> None: ...
    def list(self, limit: int, offset: int) -> List[User]: ...
    def count(self) -> int: ...


class RefreshTokenStore(Protocol):
    """Hashed refresh-token persistence with revocation state."""

    def create(
        self,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        *,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshToken: ...
    def get_by_hash(self, token_hash: str) -> Optional[RefreshToken]: ...
    def revoke(self, token_hash: str) -> bool: ...
    def revoke_all_for_user(self, user_id: int) -> int: ...
    def delete_expired(self, retention: timedelta) -> int: ...


class AuditLog(Protocol):
    """Append-only record of administrative account changes."""

    def record(
        self,
        action: str,
        *,
        actor_id: Optional[int],
        target_user_id: int,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent: ...
    def for_user(self, target_user_id: int, limit: int = 50) -> List[AuditEvent]: ...


class AuthProvider(Protocol):
    """Operations the HTTP layer relies on; implemented by ``AuthService``."""

    def register(self, email: str, password: str, full_name: Optional[str] = None) -> User: ...
    def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[TokenPair, User]: ...
    def refresh_tokens(self, refresh_token: str) -> TokenPair: ...
    def logout(self, refresh_token: str) -> bool: ...
    def logout_all(self, user_id: int) -> int: ...
    def change_password(self, user_id: int, current_password: str, new_password: str) -> None: ...
    def verify_token(self, token: str) -> Identity: ...
