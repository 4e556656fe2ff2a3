"""Role-based access policies.

Roles form a closed set; the database stores role names as strings and
``RoleName.parse`` is the only place those strings are interpreted. Each
policy is a fixed set of roles, and the three policies nest:
admin-full access implies edit, edit implies view.
"""

from enum import Enum
from typing import Optional, Union

from fastapi import Depends, HTTPException, status

from ..dependencies import get_current_session
from ..utils.logging import get_logger
from .session import SessionClaims

logger = get_logger("auth.policies")


class RoleName(str, Enum):
    ADMINISTRATOR = "Administrator"
    INCIDENT_MANAGER = "Incident Manager"
    DEVELOPER = "Developer"
    VIEWER = "Viewer"

    @classmethod
    def parse(cls, value: Union["RoleName", str, None]) -> Optional["RoleName"]:
        """Map a stored role string to its member; unknown or empty gives None."""
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class Policy(str, Enum):
    ADMIN_FULL_ACCESS = "AdminFullAccess"
    CAN_EDIT_OPS_DATA = "CanEditOpsData"
    CAN_VIEW_OPS_DATA = "CanViewOpsData"


POLICY_ROLES: dict[Policy, frozenset[RoleName]] = {
    Policy.ADMIN_FULL_ACCESS: frozenset({
        RoleName.ADMINISTRATOR, RoleName.INCIDENT_MANAGER,
    }),
    Policy.CAN_EDIT_OPS_DATA: frozenset({
        RoleName.ADMINISTRATOR, RoleName.INCIDENT_MANAGER, RoleName.DEVELOPER,
    }),
    Policy.CAN_VIEW_OPS_DATA: frozenset({
        RoleName.ADMINISTRATOR, RoleName.INCIDENT_MANAGER, RoleName.DEVELOPER, RoleName.VIEWER,
    }),
}

DEFAULT_ROLES = {
    RoleName.ADMINISTRATOR: "Full system access with all permissions",
    RoleName.INCIDENT_MANAGER: "Can create and manage incidents, assign tasks",
    RoleName.DEVELOPER: "Can view incidents and update action items",
    RoleName.VIEWER: "Read-only access to incidents and reports",
}


def is_allowed(policy: Policy, role: Union[RoleName, str, None]) -> bool:
    """Check a role against a policy."""
    parsed = RoleName.parse(role)
    return parsed is not None and parsed in POLICY_ROLES[policy]


def is_admin_full(role: Union[RoleName, str, None]) -> bool:
    """True for Administrator and Incident Manager."""
    return is_allowed(Policy.ADMIN_FULL_ACCESS, role)


def can_edit(role: Union[RoleName, str, None]) -> bool:
    """True for roles allowed to change operations data."""
    return is_allowed(Policy.CAN_EDIT_OPS_DATA, role)


def can_view(role: Union[RoleName, str, None]) -> bool:
    """True for every known role."""
    return is_allowed(Policy.CAN_VIEW_OPS_DATA, role)


def granted_policies(role: Union[RoleName, str, None]) -> list[str]:
    """All policies a role satisfies, for display in session info."""
    return [policy.value for policy in Policy if is_allowed(policy, role)]


def require_policy(policy: Policy):
    """FastAPI dependency factory that checks the session role satisfies a policy."""
    async def _check(session: SessionClaims = Depends(get_current_session)) -> SessionClaims:
        if not is_allowed(policy, session.role):
            logger.info("policy_denied", policy=policy.value, user_id=session.user_id, role=session.role)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Policy required: {policy.value}",
            )
        return session

    return _check
