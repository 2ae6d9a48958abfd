"""Database models"""

from b2b_starter.models.user import User
from b2b_starter.models.security import RefreshToken
from b2b_starter.models.audit import AuditEvent

__all__ = ["User", "RefreshToken", "AuditEvent"]
