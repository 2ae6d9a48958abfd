"""User model"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from b2b_starter.core.database import Base
from b2b_starter.core.timeutil import as_utc, utcnow


class User(Base):
    """User model for authentication and authorization"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    full_name = Column(String(255))
    status = Column(String(32), default="pending_verification", nullable=False)
    role = Column(String(20), default="user", nullable=False)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True))
    password_changed_at = Column(DateTime(timezone=True))
    last_login_at = Column(DateTime(timezone=True))
    last_login_ip = Column(String(45))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    refresh_tokens = relationship("RefreshToken", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_users_email', 'email'),
        Index('idx_users_status', 'status'),
        CheckConstraint(
            "status IN ('pending_verification', 'active', 'suspended', 'deleted')",
            name='chk_user_status'
        ),
        CheckConstraint("role IN ('user', 'admin')", name='chk_user_role'),
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}', status='{self.status}')>"

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        """A future locked_until blocks login regardless of status."""
        if self.locked_until is None:
            return False
        return as_utc(self.locked_until) > (now or utcnow())
