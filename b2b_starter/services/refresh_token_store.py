"""SQLAlchemy-backed refresh token store."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from b2b_starter.core.database import SessionLocal
from b2b_starter.core.timeutil import utcnow
from b2b_starter.models.security import RefreshToken


class SqlRefreshTokenStore:
    """Persist refresh-token fingerprints and their revocation state."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def create(
        self,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        *,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            revoked=False,
            device_info=device_info,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        with self._session_factory() as db:
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    def get_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        """Return the row for ``token_hash`` unless it has expired (revoked rows are returned)."""
        with self._session_factory() as db:
            return (
                db.query(RefreshToken)
                .filter(RefreshToken.token_hash == token_hash, RefreshToken.expires_at > utcnow())
                .first()
            )

    def revoke(self, token_hash: str) -> bool:
        """
        Revoke a token if it is still live.

        The update is conditional on ``revoked = false``, so when two callers
        race on the same hash exactly one of them gets ``True``.
        """
        with self._session_factory() as db:
            updated = (
                db.query(RefreshToken)
                .filter(RefreshToken.token_hash == token_hash, RefreshToken.revoked == False)  # noqa: E712
                .update({RefreshToken.revoked: True, RefreshToken.revoked_at: utcnow()}, synchronize_session=False)
            )
            db.commit()
            return updated == 1

    def revoke_all_for_user(self, user_id: int) -> int:
        with self._session_factory() as db:
            updated = (
                db.query(RefreshToken)
                .filter(RefreshToken.user_id == user_id, RefreshToken.revoked == False)  # noqa: E712
                .update({RefreshToken.revoked: True, RefreshToken.revoked_at: utcnow()}, synchronize_session=False)
            )
            db.commit()
            return updated

    def delete_expired(self, retention: timedelta) -> int:
        """
        Delete rows that expired more than ``retention`` ago.

        Revoked rows stay until they expire so a replayed token is still
        recognised as reuse.
        """
        cutoff = utcnow() - retention
        with self._session_factory() as db:
            deleted = (
                db.query(RefreshToken)
                .filter(RefreshToken.expires_at < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted
