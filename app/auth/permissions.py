# app/auth/permissions.py
# Role-based capability policy for the audit engine

from typing import Dict, FrozenSet, List, Optional
import logging

from app.core.exceptions import AuthorizationError
from app.models.shared.enums import UserRole

logger = logging.getLogger(__name__)

_ALL_ROLES = frozenset({UserRole.ADMIN.value, UserRole.AUDIT_MANAGER.value, UserRole.AUDIT_USER.value})
_MANAGERS = frozenset({UserRole.ADMIN.value, UserRole.AUDIT_MANAGER.value})

# capability -> roles allowed to exercise it. Warehouse scope is checked separately.
CAPABILITY_POLICY: Dict[str, FrozenSet[str]] = {
    "manager_warehouse:assign": frozenset({UserRole.ADMIN.value}),
    "team:manage": _MANAGERS,
    "team:view": _MANAGERS,
    "session:create": _MANAGERS,
    "session:start": _ALL_ROLES,
    "session:transition": _MANAGERS,
    "session:view": _ALL_ROLES,
    "verification:record": _ALL_ROLES,
    "verification:override": _MANAGERS,
    "report:view": _ALL_ROLES,
}


class AuditPolicy:
    """
    Check what a role may do against the capability table
    """

    def __init__(self, role: str):
        self.role = role.value if isinstance(role, UserRole) else role

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def can(self, capability: str) -> bool:
        """
        Check if the role may exercise a capability

        Examples:
            can("session:create")  # audit managers and admins
        """
        allowed = CAPABILITY_POLICY.get(capability)
        if allowed is None:
            raise ValueError(f"Unknown capability: {capability}")
        granted = self.role in allowed
        logger.debug(f"Capability {capability} {'granted' if granted else 'denied'} for role {self.role}")
        return granted

    def cannot(self, capability: str) -> bool:
        return not self.can(capability)

    def require(self, capability: str, custom_message: Optional[str] = None):
        """
        Require capability or raise AuthorizationError
        """
        if self.cannot(capability):
            message = custom_message or f"Role '{self.role}' is not allowed to {capability.replace(':', ' ')}"
            logger.warning(f"Capability check failed: {message}")
            raise AuthorizationError(message)

    def capabilities(self) -> List[str]:
        """
        Get all capabilities for this role
        """
        return sorted(name for name, roles in CAPABILITY_POLICY.items() if self.role in roles)


def get_policy(user) -> AuditPolicy:
    return AuditPolicy(user.role)
