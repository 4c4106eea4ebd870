from datetime import datetime

import pytest

from wasteadmin.models.models import Assignment
from wasteadmin.schemas.common import ReportGroupBy, UserRole
from wasteadmin.services import assignments as workflow
from wasteadmin.services import reports


@pytest.mark.parametrize(
    "group_by, expected",
    [
        (ReportGroupBy.day, "2024-01-07"),
        (ReportGroupBy.week, "2024-01-07"),
        (ReportGroupBy.month, "2024-01"),
    ],
)
def test_period_key_truncates_in_local_zone(group_by, expected):
    # 20:00 UTC on Saturday is already Sunday morning in Kolkata
    assert reports.period_key(datetime(2024, 1, 6, 20, 0), group_by, "Asia/Kolkata") == expected


def test_weeks_start_on_sunday():
    saturday = datetime(2024, 1, 6, 10, 0)
    assert reports.period_key(saturday, ReportGroupBy.week, "Asia/Kolkata") == "2023-12-31"
    assert reports.period_key(saturday, ReportGroupBy.week, "UTC") == "2023-12-31"
    # Month boundaries also follow the local zone
    assert reports.period_key(datetime(2024, 1, 31, 19, 0), ReportGroupBy.month, "Asia/Kolkata") == "2024-02"


@pytest.fixture
def fleet_fixture(db_session, admin_user, driver_user, make_vehicle):
    """Three vehicles: one assigned, two available; one active and one completed assignment"""
    busy, freed, idle = make_vehicle(), make_vehicle(), make_vehicle()
    workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=busy.id, assigned_to=driver_user.id, assignment_type="driver"
    )
    finished = workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=freed.id, assigned_to=driver_user.id, assignment_type="driver"
    )
    workflow.change_assignment_status(db_session, admin_user, finished.id, "completed")
    return busy, freed, idle


def test_dashboard_counts(db_session, fleet_fixture, make_approval_request):
    make_approval_request()

    stats = reports.dashboard_stats(db_session)

    assert stats["vehicles"] == {
        "total": 3,
        "available": 2,
        "assigned": 1,
        "maintenance": 0,
        "out_of_service": 0,
    }
    assert stats["assignments"] == {"total": 2, "active": 1, "completed": 1, "cancelled": 0}
    assert stats["users"] == {"total": 2, "active": 2, "pending": 1}
    assert stats["recent_activities"] == []


def test_dashboard_ignores_feeder_point_assignments(db_session, admin_user, driver_user, make_feeder_point):
    point = make_feeder_point()
    workflow.create_feeder_point_assignment(
        db_session, admin_user, feeder_point_id=point.id, assigned_to=driver_user.id
    )

    assert reports.dashboard_stats(db_session)["assignments"]["total"] == 0


def test_dashboard_endpoint_lists_recent_audited_actions(client, fleet_fixture, admin_headers, make_vehicle):
    vehicle = make_vehicle()
    client.put(f"/api/vehicles/{vehicle.id}/status", json={"status": "maintenance"}, headers=admin_headers)

    resp = client.get("/api/reports/dashboard", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["vehicles"]["maintenance"] == 1
    assert [a["action"] for a in body["recent_activities"]] == [f"PUT /api/vehicles/{vehicle.id}/status"]


def test_user_report_groups_registrations(db_session, make_user):
    make_user(UserRole.driver, created_at=datetime(2024, 1, 6, 20, 0))
    make_user(UserRole.driver, created_at=datetime(2024, 1, 7, 9, 0))
    make_user(UserRole.swachh_hr, created_at=datetime(2024, 2, 3, 9, 0))

    report = reports.user_report(db_session, group_by=ReportGroupBy.week)
    assert report["total"] == 3
    assert report["role_stats"] == {"driver": 2, "swachh_hr": 1}
    assert report["registration_trend"] == [
        {"period": "2024-01-07", "count": 2},
        {"period": "2024-01-28", "count": 1},
    ]

    ranged = reports.user_report(
        db_session,
        start_date=datetime(2024, 2, 1),
        end_date=datetime(2024, 2, 28),
        group_by=ReportGroupBy.month,
    )
    assert ranged["registration_trend"] == [{"period": "2024-02", "count": 1}]


def test_vehicle_utilization(db_session, admin_user, driver_user, make_vehicle):
    vehicle = make_vehicle(vehicle_type="compactor")
    make_vehicle(vehicle_type="tipper", status="maintenance")
    first = workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=vehicle.id, assigned_to=driver_user.id, assignment_type="driver"
    )
    workflow.change_assignment_status(db_session, admin_user, first.id, "completed")
    workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=vehicle.id, assigned_to=driver_user.id, assignment_type="driver"
    )

    report = reports.vehicle_report(db_session)
    assert report["total"] == 2
    assert report["status_stats"] == {"assigned": 1, "maintenance": 1}
    assert report["type_stats"] == {"compactor": 1, "tipper": 1}

    by_id = {u["vehicle_id"]: u for u in report["utilization"]}
    assert by_id[vehicle.id]["total_assignments"] == 2
    assert by_id[vehicle.id]["active_assignments"] == 1
    assert by_id[vehicle.id]["utilization_rate"] == 50
    idle = next(u for u in report["utilization"] if u["vehicle_id"] != vehicle.id)
    assert idle["utilization_rate"] == 0


def test_assignment_performance_metrics(db_session, admin_user, driver_user, make_vehicle, make_feeder_point):
    vehicle = make_vehicle()
    point = make_feeder_point()
    done = workflow.create_vehicle_assignment(
        db_session, admin_user, vehicle_id=vehicle.id, assigned_to=driver_user.id, assignment_type="driver"
    )
    workflow.change_assignment_status(db_session, admin_user, done.id, "completed")
    workflow.create_feeder_point_assignment(
        db_session, admin_user, feeder_point_id=point.id, assigned_to=driver_user.id
    )
    # Two days between assignment and completion
    db_session.query(Assignment).filter(Assignment.id == done.id).update({
        Assignment.assigned_at: datetime(2024, 3, 1, 8, 0),
        Assignment.completed_at: datetime(2024, 3, 3, 8, 0),
    })
    db_session.commit()

    report = reports.assignment_report(db_session)
    assert report["status_stats"] == {"vehicle_completed": 1, "feeder_active": 1}
    metrics = report["performance_metrics"]
    assert metrics["total_assignments"] == 2
    assert metrics["completed_assignments"] == 1
    assert metrics["active_assignments"] == 1
    assert metrics["completion_rate"] == 50
    assert metrics["average_assignment_duration"] == pytest.approx(2.0)

    feeder_only = reports.assignment_report(db_session, type="feeder")
    assert feeder_only["performance_metrics"]["completion_rate"] == 0
    assert feeder_only["performance_metrics"]["average_assignment_duration"] == 0


def test_csv_export(client, admin_headers, make_user):
    make_user(UserRole.driver, full_name="Asha Patil")

    resp = client.get("/api/reports/export", params={"type": "users", "format": "csv"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert 'filename="users_report_' in resp.headers["content-disposition"]
    assert resp.headers["content-disposition"].endswith('.csv"')

    lines = resp.text.strip().splitlines()
    assert lines[0].split(",")[:3] == ["id", "email", "full_name"]
    assert len(lines) == 3
    assert "Asha Patil" in resp.text


def test_json_export(client, admin_headers, make_vehicle):
    make_vehicle()
    make_vehicle()

    resp = client.get("/api/reports/export", params={"type": "vehicles"}, headers=admin_headers)
    body = resp.json()
    assert body["type"] == "vehicles"
    assert body["format"] == "json"
    assert len(body["data"]["vehicles"]) == 2
    assert resp.headers["content-disposition"].endswith('.json"')


def test_unknown_export_type_is_rejected(client, admin_headers):
    resp = client.get("/api/reports/export", params={"type": "feeder_points"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Invalid export type", "kind": "validation"}


def test_empty_csv_export(db_session):
    assert reports.rows_to_csv(reports.export_rows(db_session, "assignments")) == ""


def test_reports_require_report_permission(client, driver_headers):
    assert client.get("/api/reports/users", headers=driver_headers).status_code == 403
    assert client.get("/api/reports/export", params={"type": "users"}, headers=driver_headers).status_code == 403
    assert client.get("/api/reports/dashboard", headers=driver_headers).status_code == 200
