"""Role to permission mapping and the request-scoped identity."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, NamedTuple


class Permission(NamedTuple):
    resource: str
    action: str

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}"


def _grant(resource: str, *actions: str) -> FrozenSet[Permission]:
    return frozenset(Permission(resource, action) for action in actions)


# Adding a role is a table edit.
ROLE_PERMISSIONS: Mapping[str, FrozenSet[Permission]] = {
    "admin": (
        _grant("users", "read", "write", "delete")
        | _grant("files", "read", "write", "delete")
        | _grant("documents", "read", "write", "delete")
        | _grant("admin", "read", "write")
    ),
    "user": (
        _grant("files", "read", "write")
        | _grant("documents", "read", "write")
    ),
}


def permissions_for(role: str) -> FrozenSet[Permission]:
    return ROLE_PERMISSIONS.get(role, frozenset())


@dataclass(frozen=True)
class Identity:
    """Caller identity derived from a verified access token."""

    user_id: int
    email: str
    email_verified: bool
    roles: List[str]
    permissions: FrozenSet[Permission]
    expires_at: datetime
    raw: Dict[str, Any] = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, resource: str, action: str) -> bool:
        return Permission(resource, action) in self.permissions
