"""
Role -> permission set.
A user's permissions are always exactly the set for their role: they are
written on creation, approval and role change, and never merged.
"""
from types import MappingProxyType
from typing import Dict, Mapping, Union

from ..errors import InvalidStatus
from ..schemas.common import UserRole


def _grant(*names: str) -> Mapping[str, bool]:
    return MappingProxyType({name: True for name in names})


ROLE_PERMISSIONS: Mapping[UserRole, Mapping[str, bool]] = MappingProxyType({
    UserRole.admin: _grant(
        "manage_users",
        "view_all_reports",
        "assign_tasks",
        "generate_reports",
        "manage_system",
        "approve_requests",
        "manage_feeder_points",
        "manage_vehicles",
        "manage_assignments",
    ),
    UserRole.transport_contractor: _grant(
        "manage_drivers",
        "view_driver_reports",
        "assign_routes",
        "manage_vehicles",
        "approve_drivers",
    ),
    UserRole.swachh_hr: _grant(
        "manage_workers",
        "view_reports",
        "assign_tasks",
        "generate_reports",
    ),
    UserRole.driver: _grant(
        "submit_reports",
        "view_assigned_routes",
        "update_status",
    ),
})

assert set(ROLE_PERMISSIONS) == set(UserRole), "every role needs a permission set"


def parse_role(value: Union[str, UserRole]) -> UserRole:
    try:
        return UserRole(value)
    except ValueError:
        raise InvalidStatus(f"Invalid role: {value}")


def role_from_request(value: str) -> UserRole:
    """Roles on stored registration requests fall back to driver."""
    try:
        return UserRole(value)
    except ValueError:
        return UserRole.driver


def permissions_for_role(role: Union[str, UserRole]) -> Dict[str, bool]:
    return dict(ROLE_PERMISSIONS[parse_role(role)])
