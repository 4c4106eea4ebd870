"""
Read-only aggregates for the dashboard and analytics reports.
"""
import csv
import json
import io
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

import pytz
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..db import as_utc_naive
from ..errors import ValidationFailed
from ..models.models import (
    ApprovalRequest,
    Assignment,
    AuditLog,
    FeederPointAssignment,
    User,
    Vehicle,
    VehicleAssignment,
)
from ..schemas.common import (
    ApprovalStatus,
    AssignmentKind,
    AssignmentStatus,
    ExportType,
    ReportGroupBy,
    VehicleStatus,
)


def period_key(ts: datetime, group_by: ReportGroupBy, tz_name: Optional[str] = None) -> str:
    """
    Bucket key for a stored (naive UTC) timestamp, truncated in the local zone.
    day -> YYYY-MM-DD, week -> the Sunday starting the week as YYYY-MM-DD,
    month -> YYYY-MM.
    """
    tz = pytz.timezone(tz_name or settings.tz_default)
    if ts.tzinfo is None:
        ts = pytz.utc.localize(ts)
    local = ts.astimezone(tz).date()
    if group_by == ReportGroupBy.day:
        return local.isoformat()
    if group_by == ReportGroupBy.week:
        # weekday(): Monday=0 .. Sunday=6
        return (local - timedelta(days=(local.weekday() + 1) % 7)).isoformat()
    return f"{local.year:04d}-{local.month:02d}"


def _date_range(query, column, start_date: Optional[datetime], end_date: Optional[datetime]):
    if start_date:
        query = query.filter(column >= as_utc_naive(start_date))
    if end_date:
        query = query.filter(column <= as_utc_naive(end_date))
    return query


def _count_by(db: Session, column, *criteria) -> Dict[str, int]:
    rows = db.query(column, func.count()).filter(*criteria).group_by(column).all()
    return {key: count for key, count in rows}


def dashboard_stats(db: Session) -> Dict[str, Any]:
    users_total = db.query(func.count(User.id)).scalar() or 0
    users_active = db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0
    pending = (
        db.query(func.count(ApprovalRequest.id))
        .filter(ApprovalRequest.status == ApprovalStatus.pending.value)
        .scalar()
        or 0
    )

    vehicles = {"total": 0, **{s.value: 0 for s in VehicleStatus}}
    for status, count in _count_by(db, Vehicle.status).items():
        vehicles["total"] += count
        vehicles[status] = vehicles.get(status, 0) + count

    assignments = {"total": 0, **{s.value: 0 for s in AssignmentStatus}}
    for status, count in _count_by(db, Assignment.status, Assignment.kind == AssignmentKind.vehicle.value).items():
        assignments["total"] += count
        assignments[status] = assignments.get(status, 0) + count

    recent = (
        db.query(AuditLog)
        .order_by(AuditLog.timestamp.desc())
        .limit(settings.recent_activity_limit)
        .all()
    )
    return {
        "users": {"total": users_total, "active": users_active, "pending": pending},
        "vehicles": vehicles,
        "assignments": assignments,
        "recent_activities": [audit_log_to_dict(a) for a in recent],
    }


def audit_log_to_dict(entry: AuditLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "admin_id": entry.admin_id,
        "admin_email": entry.admin_email,
        "action": entry.action,
        "timestamp": entry.timestamp,
        "status_code": entry.status_code,
        "details": entry.details,
    }


def user_report(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    group_by: ReportGroupBy = ReportGroupBy.month,
) -> Dict[str, Any]:
    users = _date_range(db.query(User), User.created_at, start_date, end_date).all()
    role_stats = Counter(u.role for u in users)
    trend = Counter(period_key(u.created_at, group_by) for u in users if u.created_at)
    return {
        "total": len(users),
        "role_stats": dict(role_stats),
        "registration_trend": [{"period": p, "count": trend[p]} for p in sorted(trend)],
    }


def vehicle_report(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    vehicles = _date_range(db.query(Vehicle), Vehicle.created_at, start_date, end_date).all()

    per_vehicle: Dict[str, Counter] = defaultdict(Counter)
    rows = (
        db.query(VehicleAssignment.vehicle_id, VehicleAssignment.status, func.count(VehicleAssignment.id))
        .group_by(VehicleAssignment.vehicle_id, VehicleAssignment.status)
        .all()
    )
    for vehicle_id, status, count in rows:
        per_vehicle[vehicle_id][status] += count

    utilization = []
    for v in vehicles:
        counts = per_vehicle.get(v.id, Counter())
        total = sum(counts.values())
        active = counts[AssignmentStatus.active.value]
        utilization.append({
            "vehicle_id": v.id,
            "registration_number": v.registration_number,
            "active_assignments": active,
            "total_assignments": total,
            "utilization_rate": (active / total) * 100 if total else 0,
        })

    return {
        "total": len(vehicles),
        "status_stats": dict(Counter(v.status for v in vehicles)),
        "type_stats": dict(Counter(v.vehicle_type for v in vehicles)),
        "utilization": utilization,
    }


def average_duration_days(assignments: Iterable[Assignment]) -> float:
    durations = [
        (a.completed_at - a.assigned_at).total_seconds() / 86400
        for a in assignments
        if a.completed_at and a.assigned_at
    ]
    return sum(durations) / len(durations) if durations else 0


def assignment_report(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    type: str = "all",
) -> Dict[str, Any]:
    models = []
    if type in ("all", "vehicle"):
        models.append(("vehicle", VehicleAssignment))
    if type in ("all", "feeder"):
        models.append(("feeder", FeederPointAssignment))

    everything: List[Assignment] = []
    status_stats: Counter = Counter()
    for label, model in models:
        rows = _date_range(db.query(model), model.assigned_at, start_date, end_date).all()
        everything.extend(rows)
        status_stats.update(f"{label}_{a.status}" for a in rows)

    total = len(everything)
    completed = [a for a in everything if a.status == AssignmentStatus.completed.value]
    active = sum(1 for a in everything if a.status == AssignmentStatus.active.value)
    return {
        "status_stats": dict(status_stats),
        "performance_metrics": {
            "total_assignments": total,
            "completed_assignments": len(completed),
            "active_assignments": active,
            "completion_rate": (len(completed) / total) * 100 if total else 0,
            "average_assignment_duration": average_duration_days(completed),
        },
    }


def _row(obj) -> Dict[str, Any]:
    return {c.key: getattr(obj, c.key) for c in obj.__mapper__.column_attrs}


def export_rows(db: Session, export_type: str) -> List[Dict[str, Any]]:
    try:
        kind = ExportType(export_type)
    except ValueError:
        raise ValidationFailed("Invalid export type")

    if kind == ExportType.users:
        return [_row(u) for u in db.query(User).order_by(User.created_at).all()]
    if kind == ExportType.vehicles:
        return [_row(v) for v in db.query(Vehicle).order_by(Vehicle.created_at).all()]
    return [
        _row(a)
        for a in db.query(VehicleAssignment).order_by(VehicleAssignment.assigned_at).all()
    ]


def _csv_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return value


def rows_to_csv(rows: List[Dict[str, Any]]) -> str:
    """Header from the first record's keys; empty string for no rows."""
    if not rows:
        return ""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(rows[0].keys()), extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: _csv_value(v) for k, v in row.items()})
    return buf.getvalue()
