"""Error envelope returned by every exception handler"""

from pydantic import BaseModel, Field
from typing import Optional, Any

from b2b_starter.core.timeutil import utcnow


def _now_iso() -> str:
    return utcnow().isoformat()


class ErrorResponse(BaseModel):
    """Generic API error response"""
    success: bool = False
    error: str
    details: Optional[Any] = None
    path: Optional[str] = None
    timestamp: str = Field(default_factory=_now_iso)
