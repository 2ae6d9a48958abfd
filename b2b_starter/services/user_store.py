"""SQLAlchemy-backed user store"""

from datetime import datetime
from typing import Callable, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from b2b_starter.core.database import SessionLocal
from b2b_starter.core.exceptions import UserAlreadyExistsError, UserNotFoundError
from b2b_starter.core.timeutil import utcnow
from b2b_starter.models.user import User
from b2b_starter.schemas.user import UserStatus, normalize_email

logger = logging.getLogger(__name__)


class SqlUserStore:
    """
    User persistence over the ``users`` table.

    Every method runs in its own short transaction and commits before
    returning; nothing is cached between calls.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def create(self, email: str, password_hash: str, full_name: Optional[str] = None, role: str = "user") -> User:
        """
        Create new user in ``pending_verification`` status

        Raises:
            UserAlreadyExistsError: If the email is taken
        """
        email = normalize_email(email)
        with self._session_factory() as db:
            if db.query(User.id).filter(User.email == email).first():
                raise UserAlreadyExistsError()

            user = User(
                email=email,
                password_hash=password_hash,
                full_name=full_name or None,
                role=role,
                status=UserStatus.PENDING_VERIFICATION.value,
                email_verified=False,
                failed_login_attempts=0,
            )
            db.add(user)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise UserAlreadyExistsError() from exc
            db.refresh(user)
            return user

    def get_by_id(self, user_id: int) -> User:
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise UserNotFoundError()
            return user

    def get_by_email(self, email: str) -> User:
        with self._session_factory() as db:
            user = db.query(User).filter(User.email == normalize_email(email)).first()
            if not user:
                raise UserNotFoundError()
            return user

    def update(
        self,
        user_id: int,
        *,
        full_name: Optional[str] = None,
        status: Optional[str] = None,
        role: Optional[str] = None,
    ) -> User:
        """Update profile fields; ``None`` leaves a field unchanged."""
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise UserNotFoundError()
            if full_name is not None:
                user.full_name = full_name
            if status is not None:
                user.status = status
            if role is not None:
                user.role = role
            db.commit()
            db.refresh(user)
            return user

    def update_password(self, user_id: int, password_hash: str) -> None:
        self._update(user_id, {User.password_hash: password_hash, User.password_changed_at: utcnow()})

    def rehash_password(self, user_id: int, password_hash: str) -> None:
        """Replace the stored hash without touching ``password_changed_at``."""
        self._update(user_id, {User.password_hash: password_hash})

    def mark_email_verified(self, user_id: int) -> None:
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise UserNotFoundError()
            user.email_verified = True
            if user.status == UserStatus.PENDING_VERIFICATION.value:
                user.status = UserStatus.ACTIVE.value
            db.commit()

    def update_last_login(self, user_id: int, ip_address: Optional[str]) -> None:
        self._update(user_id, {User.last_login_at: utcnow(), User.last_login_ip: ip_address})

    def increment_failed_attempts(self, user_id: int) -> int:
        """Increment in the database and return the post-increment value."""
        with self._session_factory() as db:
            updated = (
                db.query(User)
                .filter(User.id == user_id)
                .update(
                    {User.failed_login_attempts: User.failed_login_attempts + 1},
                    synchronize_session=False,
                )
            )
            if not updated:
                db.rollback()
                raise UserNotFoundError()
            count = db.query(User.failed_login_attempts).filter(User.id == user_id).scalar()
            db.commit()
            return int(count or 0)

    def reset_failed_attempts(self, user_id: int) -> None:
        self._update(user_id, {User.failed_login_attempts: 0, User.locked_until: None})

    def lock_until(self, user_id: int, until: datetime) -> None:
        self._update(user_id, {User.locked_until: until})

    def delete(self, user_id: int) -> None:
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise UserNotFoundError()
            db.delete(user)
            db.commit()
        logger.info(f"Deleted user id={user_id}")

    def list(self, limit: int = 50, offset: int = 0) -> List[User]:
        with self._session_factory() as db:
            return (
                db.query(User)
                .order_by(User.created_at.desc(), User.id.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )

    def count(self) -> int:
        with self._session_factory() as db:
            return db.query(User).count()

    def _update(self, user_id: int, values: dict) -> None:
        with self._session_factory() as db:
            updated = db.query(User).filter(User.id == user_id).update(values, synchronize_session=False)
            if not updated:
                db.rollback()
                raise UserNotFoundError()
            db.commit()
