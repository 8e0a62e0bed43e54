from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set
import uuid


class Role(str, Enum):
    """Roles carried in the bearer token's ``role`` claim."""
    ADMIN = "admin"
    RUNNER = "runner"
    SERVICE_ROLE = "service_role"


ALL_PERMISSIONS: FrozenSet[str] = frozenset({
    "runs:view",
    "runs:create",
    "runs:manage",
    "runs:cancel",
    "picking:update",
    "ledger:view",
    "ledger:manage",
    "orders:manage",
    "returns:manage",
})

# Cancellation touches source records the caller does not own, so it is
# limited to the trusted roles.
ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    Role.ADMIN.value: ALL_PERMISSIONS,
    Role.SERVICE_ROLE.value: ALL_PERMISSIONS,
    Role.RUNNER.value: frozenset({
        "runs:view",
        "picking:update",
    }),
}


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as described by the token claims."""
    user_id: uuid.UUID
    role: str
    name: Optional[str] = None


def permissions_for_role(role: str) -> Set[str]:
    """Permission codes granted to a role; unknown roles get none."""
    return set(ROLE_PERMISSIONS.get(role, frozenset()))


class PermissionChecker:
    """
    Permission checker utility for role-based access.
    """

    def __init__(self, principal: Principal, user_permissions: Set[str]):
        self.principal = principal
        self.permissions = user_permissions

    def is_admin(self) -> bool:
        return self.principal.role in (Role.ADMIN.value, Role.SERVICE_ROLE.value)

    def has_permission(self, permission_code: str) -> bool:
        """
        Check if the caller has a specific permission.

        Args:
            permission_code: The permission code to check (e.g., 'runs:cancel')
        """
        return permission_code in self.permissions

    def can_pick_on_run(self, runner_id: Optional[uuid.UUID]) -> bool:
        """
        Runners may only pick on runs assigned to them or not yet assigned.
        """
        if self.is_admin():
            return True
        return runner_id is None or runner_id == self.principal.user_id
