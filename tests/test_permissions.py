import pytest

from wasteadmin.errors import InvalidStatus
from wasteadmin.schemas.common import UserRole
from wasteadmin.services.permissions import (
    ROLE_PERMISSIONS,
    parse_role,
    permissions_for_role,
    role_from_request,
)


def test_admin_permission_set():
    assert permissions_for_role(UserRole.admin) == {
        "manage_users": True,
        "view_all_reports": True,
        "assign_tasks": True,
        "generate_reports": True,
        "manage_system": True,
        "approve_requests": True,
        "manage_feeder_points": True,
        "manage_vehicles": True,
        "manage_assignments": True,
    }


def test_transport_contractor_has_no_admin_flags():
    perms = permissions_for_role("transport_contractor")
    assert set(perms) == {
        "manage_drivers",
        "view_driver_reports",
        "assign_routes",
        "manage_vehicles",
        "approve_drivers",
    }
    for flag in ("manage_users", "manage_system", "approve_requests", "manage_assignments"):
        assert flag not in perms


def test_every_role_grants_only_true_flags():
    for role in UserRole:
        assert all(value is True for value in ROLE_PERMISSIONS[role].values())


def test_permission_sets_are_copies():
    perms = permissions_for_role(UserRole.driver)
    perms["manage_users"] = True
    assert "manage_users" not in permissions_for_role(UserRole.driver)


def test_role_table_is_read_only():
    with pytest.raises(TypeError):
        ROLE_PERMISSIONS[UserRole.driver]["manage_users"] = True


def test_parse_role_rejects_unknown_values():
    assert parse_role("swachh_hr") is UserRole.swachh_hr
    with pytest.raises(InvalidStatus):
        parse_role("root")


def test_stored_request_roles_fall_back_to_driver():
    assert role_from_request("admin") is UserRole.admin
    assert role_from_request("") is UserRole.driver
    assert role_from_request("cleaner") is UserRole.driver


def test_missing_token_is_unauthorized(client):
    resp = client.get("/api/users")
    assert resp.status_code == 401
    assert resp.json()["kind"] == "unauthorized"


def test_garbage_token_is_unauthorized(client):
    resp = client.get("/api/users", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_permission_gate_is_forbidden(client, driver_headers):
    resp = client.get("/api/users", headers=driver_headers)
    assert resp.status_code == 403
    assert resp.json() == {
        "detail": "Permission denied. Required permission: manage_users",
        "kind": "forbidden",
    }


def test_deactivated_user_is_forbidden(client, db_session, admin_user, admin_headers):
    admin_user.is_active = False
    db_session.commit()

    resp = client.get("/api/users", headers=admin_headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Account is deactivated"
