"""
Assignment workflow.

An assignment links a resource (vehicle or feeder point) to an assignee and
moves active -> completed | cancelled exactly once. Vehicle assignments keep
the vehicle's status in step: the vehicle is ``assigned`` while an active
assignment references it and ``available`` otherwise.

Every guard that depends on current state is a conditional UPDATE checked by
rowcount, committed together with the dependent writes, so two concurrent
callers cannot both claim one vehicle or both close one assignment.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Type

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import as_utc_naive, utcnow
from ..errors import Conflict, InvalidStatus, NotFound, ValidationFailed
from ..models.models import (
    Assignment,
    FeederPoint,
    FeederPointAssignment,
    User,
    Vehicle,
    VehicleAssignment,
)
from ..schemas.common import AssignmentKind, AssignmentStatus, VehicleStatus
from ..schemas.fleet import FeederPointResponse, VehicleResponse


logger = structlog.get_logger(__name__)

TERMINAL_STATUSES = {AssignmentStatus.completed.value, AssignmentStatus.cancelled.value}

ASSIGNMENT_CLASSES: Dict[AssignmentKind, Type[Assignment]] = {
    AssignmentKind.vehicle: VehicleAssignment,
    AssignmentKind.feeder_point: FeederPointAssignment,
}


def _check_dates(start_date: Optional[datetime], end_date: Optional[datetime]):
    if start_date and end_date and end_date < start_date:
        raise ValidationFailed("End date must not be before start date")


def _require_assignee(db: Session, assigned_to: str) -> User:
    assignee = db.get(User, assigned_to)
    if assignee is None:
        raise NotFound("Assignee not found")
    return assignee


def create_vehicle_assignment(
    db: Session,
    actor: User,
    *,
    vehicle_id: str,
    assigned_to: str,
    assignment_type: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> VehicleAssignment:
    start_date, end_date = as_utc_naive(start_date), as_utc_naive(end_date)
    _check_dates(start_date, end_date)

    if db.get(Vehicle, vehicle_id) is None:
        raise NotFound("Vehicle not found")
    _require_assignee(db, assigned_to)

    now = utcnow()
    try:
        claimed = (
            db.query(Vehicle)
            .filter(Vehicle.id == vehicle_id, Vehicle.status == VehicleStatus.available.value)
            .update(
                {
                    Vehicle.status: VehicleStatus.assigned.value,
                    Vehicle.updated_at: now,
                    Vehicle.updated_by: actor.id,
                },
                synchronize_session="fetch",
            )
        )
        if claimed == 0:
            raise Conflict("Vehicle is not available for assignment")

        assignment = VehicleAssignment(
            vehicle_id=vehicle_id,
            assigned_to=assigned_to,
            assignment_type=assignment_type,
            assigned_by=actor.id,
            assigned_at=now,
            start_date=start_date or now,
            end_date=end_date,
            status=AssignmentStatus.active.value,
            notes=notes or "",
            created_at=now,
        )
        db.add(assignment)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(assignment)
    logger.info(
        "vehicle_assignment_created",
        assignment_id=assignment.id,
        vehicle_id=vehicle_id,
        assigned_to=assigned_to,
        actor_id=actor.id,
    )
    return assignment


def create_feeder_point_assignment(
    db: Session,
    actor: User,
    *,
    feeder_point_id: str,
    assigned_to: str,
    assignment_type: str = "feeder_point",
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> FeederPointAssignment:
    """Feeder points carry no status, so several active assignments may coexist."""
    start_date, end_date = as_utc_naive(start_date), as_utc_naive(end_date)
    _check_dates(start_date, end_date)

    if db.get(FeederPoint, feeder_point_id) is None:
        raise NotFound("Feeder point not found")
    _require_assignee(db, assigned_to)

    now = utcnow()
    assignment = FeederPointAssignment(
        feeder_point_id=feeder_point_id,
        assigned_to=assigned_to,
        assignment_type=assignment_type,
        assigned_by=actor.id,
        assigned_at=now,
        start_date=start_date or now,
        end_date=end_date,
        status=AssignmentStatus.active.value,
        notes=notes or "",
        created_at=now,
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    logger.info(
        "feeder_point_assignment_created",
        assignment_id=assignment.id,
        feeder_point_id=feeder_point_id,
        assigned_to=assigned_to,
        actor_id=actor.id,
    )
    return assignment


def change_assignment_status(
    db: Session,
    actor: User,
    assignment_id: str,
    new_status: str,
    kind: Optional[AssignmentKind] = None,
) -> Assignment:
    if new_status not in TERMINAL_STATUSES:
        raise InvalidStatus("Invalid status")

    model = ASSIGNMENT_CLASSES[kind] if kind else Assignment
    assignment = db.query(model).filter(model.id == assignment_id).first()
    if assignment is None:
        raise NotFound("Assignment not found")

    now = utcnow()
    values = {
        Assignment.status: new_status,
        Assignment.updated_at: now,
        Assignment.updated_by: actor.id,
    }
    if new_status == AssignmentStatus.completed.value:
        values[Assignment.completed_at] = now
    else:
        values[Assignment.cancelled_at] = now

    try:
        closed = (
            db.query(Assignment)
            .filter(Assignment.id == assignment_id, Assignment.status == AssignmentStatus.active.value)
            .update(values, synchronize_session="fetch")
        )
        if closed == 0:
            raise Conflict("Assignment is not active")

        if isinstance(assignment, VehicleAssignment) and assignment.vehicle_id:
            released = (
                db.query(Vehicle)
                .filter(Vehicle.id == assignment.vehicle_id)
                .update(
                    {
                        Vehicle.status: VehicleStatus.available.value,
                        Vehicle.updated_at: now,
                        Vehicle.updated_by: actor.id,
                    },
                    synchronize_session="fetch",
                )
            )
            if released == 0:
                logger.warning(
                    "assignment_vehicle_missing",
                    assignment_id=assignment_id,
                    vehicle_id=assignment.vehicle_id,
                )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(assignment)
    logger.info(
        "assignment_status_changed",
        assignment_id=assignment_id,
        kind=assignment.kind,
        status=new_status,
        actor_id=actor.id,
    )
    return assignment


def assignment_stats(db: Session) -> Dict[str, Dict[str, int]]:
    stats = {
        kind.value: {"total": 0, **{s.value: 0 for s in AssignmentStatus}}
        for kind in AssignmentKind
    }
    rows = (
        db.query(Assignment.kind, Assignment.status, func.count(Assignment.id))
        .group_by(Assignment.kind, Assignment.status)
        .all()
    )
    for kind, status, count in rows:
        bucket = stats.setdefault(kind, {"total": 0})
        bucket["total"] += count
        bucket[status] = bucket.get(status, 0) + count
    return stats


def _user_summary(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {"id": user.id, "full_name": user.full_name, "email": user.email, "role": user.role}


def _by_id(db: Session, model, ids: Iterable[str]) -> dict:
    ids = {i for i in ids if i}
    if not ids:
        return {}
    return {row.id: row for row in db.query(model).filter(model.id.in_(ids)).all()}


def list_assignments(
    db: Session,
    kind: AssignmentKind,
    status: Optional[str] = None,
    assignment_type: Optional[str] = None,
) -> List[dict]:
    """Assignments of one kind, newest first, joined with resource and assignee."""
    model = ASSIGNMENT_CLASSES[kind]
    query = db.query(model)
    if status and status != "all":
        query = query.filter(model.status == status)
    if assignment_type and assignment_type != "all":
        query = query.filter(model.assignment_type == assignment_type)
    assignments = query.order_by(model.assigned_at.desc()).all()

    users = _by_id(db, User, (a.assigned_to for a in assignments))
    if kind == AssignmentKind.vehicle:
        resources = _by_id(db, Vehicle, (a.vehicle_id for a in assignments))
        resource_key, schema = "vehicle", VehicleResponse
    else:
        resources = _by_id(db, FeederPoint, (a.feeder_point_id for a in assignments))
        resource_key, schema = "feeder_point", FeederPointResponse

    result = []
    for a in assignments:
        resource = resources.get(a.resource_id)
        row = {c.key: getattr(a, c.key) for c in model.__mapper__.column_attrs}
        row[resource_key] = schema.model_validate(resource).model_dump() if resource else None
        row["assignee"] = _user_summary(users.get(a.assigned_to))
        result.append(row)
    return result


def active_assignment_count(
    db: Session,
    *,
    vehicle_id: Optional[str] = None,
    feeder_point_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> int:
    query = db.query(func.count(Assignment.id)).filter(Assignment.status == AssignmentStatus.active.value)
    if vehicle_id:
        query = query.filter(
            Assignment.kind == AssignmentKind.vehicle.value,
            VehicleAssignment.vehicle_id == vehicle_id,
        )
    if feeder_point_id:
        query = query.filter(
            Assignment.kind == AssignmentKind.feeder_point.value,
            FeederPointAssignment.feeder_point_id == feeder_point_id,
        )
    if assigned_to:
        query = query.filter(Assignment.assigned_to == assigned_to)
    return query.scalar() or 0
