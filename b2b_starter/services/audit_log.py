"""SQLAlchemy-backed audit log for administrative account changes."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from b2b_starter.core.database import SessionLocal
from b2b_starter.models.audit import AuditEvent


class SqlAuditLog:
    """Append-only writer over ``audit_events``; shares the stores' session factory."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def record(
        self,
        action: str,
        *,
        actor_id: Optional[int],
        target_user_id: int,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor_id=actor_id,
            action=action,
            target_user_id=target_user_id,
            ip_address=ip_address,
            details=json.dumps(details, ensure_ascii=False, sort_keys=True) if details else None,
        )
        with self._session_factory() as db:
            db.add(event)
            db.commit()
            db.refresh(event)
            return event

    def for_user(self, target_user_id: int, limit: int = 50) -> List[AuditEvent]:
        """Newest first."""
        with self._session_factory() as db:
            return (
                db.query(AuditEvent)
                .filter(AuditEvent.target_user_id == target_user_id)
                .order_by(AuditEvent.id.desc())
                .limit(limit)
                .all()
            )
