"""Audit trail of administrative changes to user accounts."""

import json
from typing import Any, Dict

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.sql import func

from b2b_starter.core.database import Base


class AuditEvent(Base):
    """
    One administrative action on a user account.

    ``target_user_id`` carries no foreign key so entries outlive the account
    they describe; the acting admin is nulled out if that account is removed.
    """

    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(64), nullable=False)
    target_user_id = Column(Integer, nullable=False)
    ip_address = Column(String(45), nullable=True)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_audit_events_target_user_id", "target_user_id"),
        Index("idx_audit_events_created_at", "created_at"),
    )

    def details_dict(self) -> Dict[str, Any]:
        return json.loads(self.details) if self.details else {}

    def __repr__(self):
        return f"<AuditEvent {self.action} actor={self.actor_id} target={self.target_user_id}>"
