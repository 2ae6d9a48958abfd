"""Auth service - registration, login, token rotation and password changes"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from b2b_starter.config import Settings
from b2b_starter.core.database import SessionLocal
from b2b_starter.core.exceptions import (
    AccountInactiveError,
    AccountLockedError,
    InvalidCredentialsError,
    InvalidTokenError,
    PasswordHashDecodeError,
    UserNotFoundError,
    ValidationError,
)
from b2b_starter.core.metrics import AUDIT_WRITE_FAILURES, AUTH_LOCKOUTS, AUTH_LOGINS, AUTH_REFRESH_REUSE
from b2b_starter.core.security import PasswordHasher, PasswordPolicy
from b2b_starter.core.timeutil import utcnow
from b2b_starter.core.tokens import SigningKeys, TokenManager, TokenPair, hash_token
from b2b_starter.models.audit import AuditEvent
from b2b_starter.models.user import User
from b2b_starter.schemas.user import UserRole, UserStatus
from b2b_starter.services.audit_log import SqlAuditLog
from b2b_starter.services.contracts import AuditLog, RefreshTokenStore, UserStore
from b2b_starter.services.permissions import Identity, permissions_for
from b2b_starter.services.refresh_token_store import SqlRefreshTokenStore
from b2b_starter.services.user_store import SqlUserStore

logger = logging.getLogger(__name__)

LOGIN_ALLOWED_STATUSES = frozenset({UserStatus.ACTIVE.value, UserStatus.PENDING_VERIFICATION.value})
SESSION_ENDING_STATUSES = frozenset({UserStatus.SUSPENDED.value, UserStatus.DELETED.value})

# Errors from secondary writes (telemetry, counters) that must not fail the primary operation.
_SECONDARY_WRITE_ERRORS = (SQLAlchemyError, UserNotFoundError)


@dataclass(frozen=True)
class AuthConfig:
    max_failed_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=15)
    refresh_token_retention: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthConfig":
        return cls(
            max_failed_attempts=settings.AUTH_MAX_FAILED_ATTEMPTS,
            lockout_duration=timedelta(minutes=settings.AUTH_LOCKOUT_MINUTES),
            refresh_token_retention=timedelta(days=settings.REFRESH_TOKEN_RETENTION_DAYS),
        )


class AuthService:
    """
    Self-hosted JWT authentication.

    Built once at startup from explicit collaborators. Holds no per-user or
    per-session state; all coordination goes through the two stores.
    """

    def __init__(
        self,
        *,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        hasher: PasswordHasher,
        policy: PasswordPolicy,
        token_manager: TokenManager,
        config: Optional[AuthConfig] = None,
        audit: Optional[AuditLog] = None,
    ):
        self.users = users
        self.refresh_token_store = refresh_tokens
        self.hasher = hasher
        self.policy = policy
        self.token_manager = token_manager
        self.config = config or AuthConfig()
        self.audit = audit
        # Verified against when the email is unknown so both paths cost one KDF run.
        self._dummy_hash = hasher.hash("unknown-user-placeholder")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        keys: Optional[SigningKeys] = None,
    ) -> "AuthService":
        return cls(
            users=SqlUserStore(session_factory),
            refresh_tokens=SqlRefreshTokenStore(session_factory),
            hasher=PasswordHasher.from_settings(settings),
            policy=PasswordPolicy.from_settings(settings),
            token_manager=TokenManager.from_settings(settings, keys),
            config=AuthConfig.from_settings(settings),
            audit=SqlAuditLog(session_factory),
        )

    # --------- Core operations ----------
    def register(self, email: str, password: str, full_name: Optional[str] = None) -> User:
        """
        Create an account in ``pending_verification``. Does not log the user in.

        Raises:
            PasswordPolicyError: If the password violates the policy
            UserAlreadyExistsError: If the email is taken
        """
        self.policy.validate(password)
        password_hash = self.hasher.hash(password)
        user = self.users.create(email, password_hash, full_name, UserRole.USER.value)
        logger.info(f"User registered: id={user.id}")
        return user

    def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[TokenPair, User]:
        """
        Authenticate credentials with lockout protection and issue a token pair

        Returns:
            Tuple of (token pair, user)

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            AccountLockedError: Account is inside a lockout window
            AccountInactiveError: Account is suspended or deleted
        """
        try:
            user = self.users.get_by_email(email)
        except UserNotFoundError:
            self._verify_quietly(password, self._dummy_hash)
            AUTH_LOGINS.labels("invalid_credentials").inc()
            raise InvalidCredentialsError()

        if user.is_locked():
            AUTH_LOGINS.labels("locked").inc()
            raise AccountLockedError()

        if user.status not in LOGIN_ALLOWED_STATUSES:
            AUTH_LOGINS.labels("inactive").inc()
            raise AccountInactiveError()

        if not self._verify_quietly(password, user.password_hash, user_id=user.id):
            self._record_failed_attempt(user.id)
            AUTH_LOGINS.labels("invalid_credentials").inc()
            raise InvalidCredentialsError()

        if user.failed_login_attempts:
            self._best_effort("reset failed login attempts", user.id, self.users.reset_failed_attempts, user.id)
        self._upgrade_hash_if_needed(user, password)

        pair = self._issue(user, ip_address=ip_address, user_agent=user_agent)

        self._best_effort("update last login", user.id, self.users.update_last_login, user.id, ip_address)
        AUTH_LOGINS.labels("success").inc()
        logger.info(f"User logged in: id={user.id}")
        return pair, user

    def refresh_tokens(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair. Refresh tokens are single-use.

        Presenting a token that was already revoked is treated as theft: every
        refresh token of that user is revoked.

        Raises:
            TokenExpiredError: Token signature is valid but it has expired
            InvalidTokenError: Token is malformed, unknown, revoked or reused
            AccountInactiveError: Account was suspended or deleted since issuance
        """
        claims = self.token_manager.verify_refresh_token(refresh_token)
        token_hash = hash_token(refresh_token)

        record = self.refresh_token_store.get_by_hash(token_hash)
        if record is None or record.user_id != claims.user_id:
            raise InvalidTokenError()

        if record.revoked:
            self._handle_reuse(claims.user_id)
            raise InvalidTokenError()

        try:
            user = self.users.get_by_id(claims.user_id)
        except UserNotFoundError:
            raise InvalidTokenError()
        if user.status not in LOGIN_ALLOWED_STATUSES:
            raise AccountInactiveError()

        # A concurrent refresh with the same token loses here and is handled as reuse.
        if not self.refresh_token_store.revoke(token_hash):
            self._handle_reuse(claims.user_id)
            raise InvalidTokenError()

        return self._issue(
            user,
            device_info=record.device_info,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
        )

    def logout(self, refresh_token: str) -> bool:
        """Revoke the presented refresh token. Returns False if it was unknown or already revoked."""
        return self.refresh_token_store.revoke(hash_token(refresh_token))

    def logout_all(self, user_id: int) -> int:
        revoked = self.refresh_token_store.revoke_all_for_user(user_id)
        logger.info(f"Revoked {revoked} refresh tokens for user id={user_id}")
        return revoked

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """
        Change password after re-verifying the current one, then end every session

        Raises:
            InvalidCredentialsError: Current password does not match
            PasswordPolicyError: New password violates the policy
        """
        user = self.users.get_by_id(user_id)
        if not self._verify_quietly(current_password, user.password_hash, user_id=user.id):
            raise InvalidCredentialsError()

        self.policy.validate(new_password)
        self.users.update_password(user_id, self.hasher.hash(new_password))

        self._best_effort("revoke tokens after password change", user_id,
                          self.refresh_token_store.revoke_all_for_user, user_id)
        logger.info(f"User changed password: id={user_id}")

    def verify_token(self, token: str) -> Identity:
        """
        Verify an access token and map it to a request identity

        Raises:
            TokenExpiredError, InvalidTokenError
        """
        claims = self.token_manager.verify_access_token(token)
        return Identity(
            user_id=claims.user_id,
            email=claims.email,
            email_verified=claims.email_verified,
            roles=[claims.role],
            permissions=permissions_for(claims.role),
            expires_at=claims.expires_at,
            raw=dict(claims.raw),
        )

    # --------- Administrative operations ----------
    # Each change is committed before its audit entry is written. When
    # ``actor_id`` is given the change is recorded; a failed audit write is
    # logged and does not undo or fail the change.
    def verify_email(self, user_id: int, *, actor_id: Optional[int] = None,
                     ip_address: Optional[str] = None) -> User:
        """Mark the email verified; moves ``pending_verification`` accounts to ``active``."""
        self.users.mark_email_verified(user_id)
        self._audit("verify_email", user_id, actor_id, ip_address)
        return self.users.get_by_id(user_id)

    def update_user(
        self,
        user_id: int,
        *,
        full_name: Optional[str] = None,
        role: Optional[str] = None,
        status: Optional[str] = None,
        actor_id: Optional[int] = None,
        ip_address: Optional[str] = None,
    ) -> User:
        """
        Change name, role or status of an account

        Suspending or deleting ends all sessions of the account.
        """
        user = self.users.update(user_id, full_name=full_name, status=status, role=role)
        if status in SESSION_ENDING_STATUSES:
            self.refresh_token_store.revoke_all_for_user(user_id)

        changes = {"full_name": full_name, "role": role, "status": status}
        self._audit("update_user", user_id, actor_id, ip_address,
                    {k: v for k, v in changes.items() if v is not None})
        return user

    def set_status(self, user_id: int, status: str, *, actor_id: Optional[int] = None,
                   ip_address: Optional[str] = None) -> User:
        return self.update_user(user_id, status=status, actor_id=actor_id, ip_address=ip_address)

    def unlock(self, user_id: int, *, actor_id: Optional[int] = None, ip_address: Optional[str] = None) -> None:
        self.users.reset_failed_attempts(user_id)
        self._audit("unlock_user", user_id, actor_id, ip_address)

    def revoke_sessions(self, user_id: int, *, actor_id: Optional[int] = None,
                        ip_address: Optional[str] = None) -> int:
        """Revoke every refresh token of another account. Raises ``UserNotFoundError``."""
        self.users.get_by_id(user_id)
        revoked = self.logout_all(user_id)
        self._audit("logout_all", user_id, actor_id, ip_address, {"revoked_count": revoked})
        return revoked

    def delete_user(self, user_id: int, *, actor_id: Optional[int] = None,
                    ip_address: Optional[str] = None) -> None:
        """
        Remove an account together with its refresh tokens

        Raises:
            ValidationError: If the actor tries to delete their own account
            UserNotFoundError: If the account does not exist
        """
        if actor_id is not None and actor_id == user_id:
            raise ValidationError("Cannot delete your own account")
        self.users.delete(user_id)
        self._audit("delete_user", user_id, actor_id, ip_address)

    def audit_trail(self, user_id: int, limit: int = 50) -> List[AuditEvent]:
        if self.audit is None:
            return []
        return self.audit.for_user(user_id, limit)

    def purge_expired_tokens(self) -> int:
        deleted = self.refresh_token_store.delete_expired(self.config.refresh_token_retention)
        logger.info(f"Purged {deleted} expired refresh tokens")
        return deleted

    def bootstrap_admin(self, email: str, password: str) -> Optional[User]:
        """Create a verified admin account unless the email already exists."""
        try:
            self.users.get_by_email(email)
            return None
        except UserNotFoundError:
            pass

        self.policy.validate(password)
        user = self.users.create(email, self.hasher.hash(password), None, UserRole.ADMIN.value)
        self.users.mark_email_verified(user.id)
        logger.info(f"Created admin user: {user.email}")
        return self.users.get_by_id(user.id)

    # --------- Helpers ----------
    def _issue(
        self,
        user: User,
        *,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenPair:
        pair = self.token_manager.generate_token_pair(user.id, user.email, user.email_verified, user.role)
        self.refresh_token_store.create(
            user.id,
            hash_token(pair.refresh_token),
            pair.refresh_expires_at,
            device_info=device_info,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return pair

    def _verify_quietly(self, password: str, encoded_hash: str, user_id: Optional[int] = None) -> bool:
        """Verify a password; an undecodable stored hash counts as a mismatch."""
        try:
            return self.hasher.verify(password, encoded_hash)
        except PasswordHashDecodeError as exc:
            logger.error(f"Stored password hash cannot be decoded: user_id={user_id} error={exc}")
            return False

    def _record_failed_attempt(self, user_id: int) -> None:
        try:
            attempts = self.users.increment_failed_attempts(user_id)
        except _SECONDARY_WRITE_ERRORS as exc:
            logger.error(f"Failed to increment failed login attempts: user_id={user_id} error={exc}")
            return

        if attempts < self.config.max_failed_attempts:
            return

        lock_until = utcnow() + self.config.lockout_duration
        try:
            self.users.lock_until(user_id, lock_until)
        except _SECONDARY_WRITE_ERRORS as exc:
            logger.error(f"Failed to lock account: user_id={user_id} error={exc}")
            return
        AUTH_LOCKOUTS.inc()
        logger.warning(f"Account locked after {attempts} failed logins: user_id={user_id} until={lock_until.isoformat()}")

    def _handle_reuse(self, user_id: int) -> None:
        AUTH_REFRESH_REUSE.inc()
        logger.warning(f"Refresh token reuse detected, revoking all sessions: user_id={user_id}")
        self._best_effort("revoke all tokens after reuse detection", user_id,
                          self.refresh_token_store.revoke_all_for_user, user_id)

    def _upgrade_hash_if_needed(self, user: User, password: str) -> None:
        try:
            stale = self.hasher.needs_rehash(user.password_hash)
        except PasswordHashDecodeError:
            return
        if stale:
            self._best_effort("upgrade password hash", user.id,
                              self.users.rehash_password, user.id, self.hasher.hash(password))

    def _audit(
        self,
        action: str,
        target_user_id: int,
        actor_id: Optional[int],
        ip_address: Optional[str],
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.audit is None or actor_id is None:
            return
        try:
            self.audit.record(
                action,
                actor_id=actor_id,
                target_user_id=target_user_id,
                ip_address=ip_address,
                details=details,
            )
        except SQLAlchemyError as exc:
            AUDIT_WRITE_FAILURES.inc()
            logger.error(
                f"Failed to write audit entry: action={action} actor_id={actor_id} "
                f"target_user_id={target_user_id} ip={ip_address} details={details} error={exc}"
            )

    @staticmethod
    def _best_effort(action: str, user_id: int, fn, *args) -> None:
        try:
            fn(*args)
        except _SECONDARY_WRITE_ERRORS as exc:
            logger.error(f"Failed to {action}: user_id={user_id} error={exc}")
