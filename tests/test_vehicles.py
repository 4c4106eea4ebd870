import pytest

from wasteadmin.db import SessionLocal
from wasteadmin.models.models import Vehicle, VehicleAssignment
from wasteadmin.routes import vehicles as vehicle_routes
from wasteadmin.services import assignments as workflow


def _payload(**overrides):
    data = {
        "registration_number": "mh12ab1234",
        "make": "Tata",
        "model": "Ultra",
        "vehicle_type": "compactor",
        "year": 2022,
        "capacity": 6.5,
        "fuel_type": "diesel",
    }
    data.update(overrides)
    return data


def test_create_vehicle_upper_cases_registration(client, admin_headers):
    resp = client.post("/api/vehicles", json=_payload(), headers=admin_headers)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["registration_number"] == "MH12AB1234"
    assert body["status"] == "available"


def test_duplicate_registration_conflicts(client, admin_headers):
    client.post("/api/vehicles", json=_payload(), headers=admin_headers)

    resp = client.post("/api/vehicles", json=_payload(registration_number="MH12AB1234"), headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["kind"] == "conflict"


def test_vehicle_cannot_be_created_assigned(client, admin_headers):
    resp = client.post("/api/vehicles", json=_payload(status="assigned"), headers=admin_headers)
    assert resp.status_code == 409

    resp = client.post("/api/vehicles", json=_payload(status="parked"), headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "invalid_status"


def test_missing_required_fields_fail_validation(client, admin_headers):
    resp = client.post("/api/vehicles", json={"make": "Tata"}, headers=admin_headers)
    assert resp.status_code == 422


def test_driver_cannot_create_vehicle(client, driver_headers):
    resp = client.post("/api/vehicles", json=_payload(), headers=driver_headers)
    assert resp.status_code == 403


def test_list_filters_search_and_paginates(client, driver_headers, make_vehicle):
    make_vehicle(registration_number="KA01AA0001", make="Tata", vehicle_type="truck")
    make_vehicle(registration_number="KA01AA0002", make="Ashok Leyland", vehicle_type="truck")
    make_vehicle(registration_number="KA01AA0003", make="Mahindra", vehicle_type="tipper", status="maintenance")

    resp = client.get("/api/vehicles", params={"type": "truck"}, headers=driver_headers)
    body = resp.json()
    assert resp.status_code == 200
    assert body["total"] == 2

    resp = client.get("/api/vehicles", params={"search": "leyland"}, headers=driver_headers)
    assert [v["registration_number"] for v in resp.json()["items"]] == ["KA01AA0002"]

    resp = client.get("/api/vehicles", params={"limit": 2, "page": 2}, headers=driver_headers)
    body = resp.json()
    assert body["total"] == 3
    assert body["total_pages"] == 2
    assert len(body["items"]) == 1

    resp = client.get("/api/vehicles/available", headers=driver_headers)
    assert len(resp.json()) == 2


def test_stats_count_by_status_and_type(client, admin_headers, make_vehicle):
    make_vehicle(vehicle_type="truck")
    make_vehicle(vehicle_type="truck", status="out_of_service")
    make_vehicle(vehicle_type="tipper", status="maintenance")

    resp = client.get("/api/vehicles/stats", headers=admin_headers)
    assert resp.json() == {
        "total": 3,
        "available": 1,
        "assigned": 0,
        "maintenance": 1,
        "out_of_service": 1,
        "by_type": {"truck": 2, "tipper": 1},
    }


def test_manual_status_changes_keep_assignment_invariant(
    client, db_session, admin_user, admin_headers, driver_user, make_vehicle
):
    vehicle = make_vehicle()

    resp = client.put(f"/api/vehicles/{vehicle.id}/status", json={"status": "assigned"}, headers=admin_headers)
    assert resp.status_code == 409

    workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=vehicle.id, assigned_to=driver_user.id, assignment_type="driver"
    )
    resp = client.put(f"/api/vehicles/{vehicle.id}/status", json={"status": "maintenance"}, headers=admin_headers)
    assert resp.status_code == 409

    resp = client.put(f"/api/vehicles/{vehicle.id}", json={"status": "available"}, headers=admin_headers)
    assert resp.status_code == 409

    db_session.expire_all()
    assert db_session.get(Vehicle, vehicle.id).status == "assigned"


def test_status_update_and_invalid_value(client, admin_headers, make_vehicle):
    vehicle = make_vehicle()

    resp = client.put(f"/api/vehicles/{vehicle.id}/status", json={"status": "maintenance"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "maintenance"

    resp = client.put(f"/api/vehicles/{vehicle.id}/status", json={"status": "broken"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["kind"] == "invalid_status"


def test_update_rejects_taken_registration(client, admin_headers, make_vehicle):
    make_vehicle(registration_number="DL01ZZ9999")
    other = make_vehicle()

    resp = client.put(f"/api/vehicles/{other.id}", json={"registration_number": "dl01zz9999"}, headers=admin_headers)
    assert resp.status_code == 409

    resp = client.put(f"/api/vehicles/{other.id}", json={"make": "Eicher"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["make"] == "Eicher"


def test_delete_with_active_assignment_conflicts(
    client, db_session, admin_user, admin_headers, driver_user, make_vehicle
):
    vehicle = make_vehicle()
    assignment = workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=vehicle.id, assigned_to=driver_user.id, assignment_type="driver"
    )

    resp = client.delete(f"/api/vehicles/{vehicle.id}", headers=admin_headers)
    assert resp.status_code == 409

    workflow.change_assignment_status(db_session, admin_user, assignment.id, "completed")
    resp = client.delete(f"/api/vehicles/{vehicle.id}", headers=admin_headers)
    assert resp.status_code == 200

    resp = client.get(f"/api/vehicles/{vehicle.id}", headers=admin_headers)
    assert resp.status_code == 404


def test_vehicle_assignment_history(client, db_session, admin_user, admin_headers, driver_user, make_vehicle):
    vehicle = make_vehicle()
    first = workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=vehicle.id, assigned_to=driver_user.id, assignment_type="driver"
    )
    workflow.change_assignment_status(db_session, admin_user, first.id, "completed")
    workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=vehicle.id, assigned_to=driver_user.id, assignment_type="driver"
    )

    resp = client.get(f"/api/vehicles/{vehicle.id}/assignments", headers=admin_headers)
    history = resp.json()
    assert [a["status"] for a in history] == ["active", "completed"]


def test_blank_fields_are_rejected_on_update(client, admin_headers, make_vehicle):
    vehicle = make_vehicle(registration_number="GJ05CD4321")

    for payload in ({"registration_number": ""}, {"registration_number": "   "}, {"make": ""}, {"vehicle_type": ""}):
        resp = client.put(f"/api/vehicles/{vehicle.id}", json=payload, headers=admin_headers)
        assert resp.status_code == 422, payload

    resp = client.get(f"/api/vehicles/{vehicle.id}", headers=admin_headers)
    assert resp.json()["registration_number"] == "GJ05CD4321"


@pytest.fixture
def claim_during_check(monkeypatch, admin_user, driver_user):
    """Lets another session claim the vehicle right after the route counted active assignments"""

    def _install(vehicle_id):
        counted = vehicle_routes.active_assignment_count

        def _count_then_claim(db, **kwargs):
            result = counted(db, **kwargs)
            other = SessionLocal()
            try:
                workflow.create_vehicle_assignment(
                    other, admin_user, vehicle_id=vehicle_id, assigned_to=driver_user.id, assignment_type="driver"
                )
            finally:
                other.close()
            return result

        monkeypatch.setattr(vehicle_routes, "active_assignment_count", _count_then_claim)

    return _install


def _active_assignments(db_session, vehicle_id):
    return (
        db_session.query(VehicleAssignment)
        .filter(VehicleAssignment.vehicle_id == vehicle_id, VehicleAssignment.status == "active")
        .count()
    )


@pytest.mark.parametrize("route", ["/status", ""])
def test_status_change_loses_to_concurrent_claim(client, db_session, admin_headers, make_vehicle, claim_during_check, route):
    vehicle = make_vehicle()
    claim_during_check(vehicle.id)

    resp = client.put(f"/api/vehicles/{vehicle.id}{route}", json={"status": "maintenance"}, headers=admin_headers)
    assert resp.status_code == 409

    db_session.expire_all()
    assert db_session.get(Vehicle, vehicle.id).status == "assigned"
    assert _active_assignments(db_session, vehicle.id) == 1


def test_delete_loses_to_concurrent_claim(client, db_session, admin_headers, make_vehicle, claim_during_check):
    vehicle = make_vehicle()
    claim_during_check(vehicle.id)

    resp = client.delete(f"/api/vehicles/{vehicle.id}", headers=admin_headers)
    assert resp.status_code == 409

    db_session.expire_all()
    assert db_session.get(Vehicle, vehicle.id).status == "assigned"
    assert _active_assignments(db_session, vehicle.id) == 1
