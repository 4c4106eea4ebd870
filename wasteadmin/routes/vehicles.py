from collections import Counter
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db, utcnow
from ..errors import Conflict, InvalidStatus, NotFound
from ..models.models import User, Vehicle, VehicleAssignment
from ..schemas.assignments import AssignmentResponse
from ..schemas.common import Page, VehicleStatus
from ..schemas.fleet import (
    VehicleCreate,
    VehicleResponse,
    VehicleStatsResponse,
    VehicleStatusUpdate,
    VehicleUpdate,
)
from ..services.assignments import active_assignment_count
from ..services.pagination import PageParams, paginate, text_search


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/vehicles", tags=["vehicles"])

# ``assigned`` is only ever set by the assignment workflow
MANUAL_STATUSES = {
    VehicleStatus.available.value,
    VehicleStatus.maintenance.value,
    VehicleStatus.out_of_service.value,
}


def _get_vehicle(db: Session, vehicle_id: str) -> Vehicle:
    vehicle = db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFound("Vehicle not found")
    return vehicle


def _check_registration_free(db: Session, registration_number: str, exclude_id: Optional[str] = None):
    query = db.query(Vehicle).filter(Vehicle.registration_number == registration_number)
    if exclude_id:
        query = query.filter(Vehicle.id != exclude_id)
    if query.first():
        raise Conflict("Vehicle with this registration number already exists")


def _check_status_change(db: Session, vehicle: Vehicle, new_status: str):
    """Keeps vehicle.status == assigned exactly while an active assignment exists."""
    if new_status not in {s.value for s in VehicleStatus}:
        raise InvalidStatus("Invalid status")
    if new_status == vehicle.status:
        return
    if new_status == VehicleStatus.assigned.value:
        raise Conflict("Vehicles are assigned through the assignment workflow")
    if active_assignment_count(db, vehicle_id=vehicle.id):
        raise Conflict("Vehicle has an active assignment")


def _commit_or_conflict(db: Session):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Vehicle with this registration number already exists")


def _write_if_status_unchanged(db: Session, vehicle: Vehicle, values: dict):
    """
    Applies ``values`` only while the vehicle still has the status read by the
    caller. An assignment claim in between flips it to ``assigned`` and the
    write is refused.
    """
    try:
        written = (
            db.query(Vehicle)
            .filter(Vehicle.id == vehicle.id, Vehicle.status == vehicle.status)
            .update(values, synchronize_session="fetch")
        )
        if written == 0:
            raise Conflict("Vehicle status changed, reload and retry")
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Vehicle with this registration number already exists")
    except Conflict:
        db.rollback()
        raise
    db.refresh(vehicle)


@router.get("", response_model=Page)
def list_vehicles(
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """List vehicles with filters"""
    query = db.query(Vehicle)
    if status and status != "all":
        query = query.filter(Vehicle.status == status)
    if type and type != "all":
        query = query.filter(Vehicle.vehicle_type == type)

    rows = query.order_by(Vehicle.created_at.desc()).all()
    rows = text_search(
        rows,
        search,
        lambda v: v.registration_number,
        lambda v: v.make,
        lambda v: v.model,
    )
    return paginate(rows, params, VehicleResponse)


@router.get("/available", response_model=List[VehicleResponse])
def list_available_vehicles(
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return (
        db.query(Vehicle)
        .filter(Vehicle.status == VehicleStatus.available.value)
        .order_by(Vehicle.registration_number)
        .all()
    )


@router.get("/stats", response_model=VehicleStatsResponse)
def vehicle_stats(
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    vehicles = db.query(Vehicle.status, Vehicle.vehicle_type).all()
    by_status = Counter(status for status, _vtype in vehicles)
    return VehicleStatsResponse(
        total=len(vehicles),
        available=by_status[VehicleStatus.available.value],
        assigned=by_status[VehicleStatus.assigned.value],
        maintenance=by_status[VehicleStatus.maintenance.value],
        out_of_service=by_status[VehicleStatus.out_of_service.value],
        by_type=dict(Counter(vtype for _status, vtype in vehicles)),
    )


@router.get("/{vehicle_id}", response_model=VehicleResponse)
def get_vehicle(
    vehicle_id: str,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    return _get_vehicle(db, vehicle_id)


@router.get("/{vehicle_id}/assignments", response_model=List[AssignmentResponse])
def get_vehicle_assignments(
    vehicle_id: str,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """Assignment history for a vehicle, newest first"""
    _get_vehicle(db, vehicle_id)
    return (
        db.query(VehicleAssignment)
        .filter(VehicleAssignment.vehicle_id == vehicle_id)
        .order_by(VehicleAssignment.assigned_at.desc())
        .all()
    )


@router.post("", response_model=VehicleResponse, status_code=201)
def create_vehicle(
    payload: VehicleCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_vehicles")),
):
    """Create a new vehicle"""
    if payload.status not in {s.value for s in VehicleStatus}:
        raise InvalidStatus("Invalid status")
    if payload.status not in MANUAL_STATUSES:
        raise Conflict("Vehicles are assigned through the assignment workflow")
    _check_registration_free(db, payload.registration_number)

    vehicle = Vehicle(**payload.model_dump(), created_by=user.id, created_at=utcnow())
    db.add(vehicle)
    _commit_or_conflict(db)
    db.refresh(vehicle)
    logger.info("vehicle_created", vehicle_id=vehicle.id, registration_number=vehicle.registration_number)
    return vehicle


@router.put("/{vehicle_id}", response_model=VehicleResponse)
def update_vehicle(
    vehicle_id: str,
    payload: VehicleUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_vehicles")),
):
    """Partial update"""
    vehicle = _get_vehicle(db, vehicle_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("registration_number") and data["registration_number"] != vehicle.registration_number:
        _check_registration_free(db, data["registration_number"], exclude_id=vehicle_id)
    if "status" in data and data["status"] is not None:
        _check_status_change(db, vehicle, data["status"])

    values = {getattr(Vehicle, key): value for key, value in data.items() if value is not None}
    values[Vehicle.updated_at] = utcnow()
    values[Vehicle.updated_by] = user.id
    _write_if_status_unchanged(db, vehicle, values)
    return vehicle


@router.put("/{vehicle_id}/status", response_model=VehicleResponse)
def update_vehicle_status(
    vehicle_id: str,
    payload: VehicleStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_vehicles")),
):
    vehicle = _get_vehicle(db, vehicle_id)
    _check_status_change(db, vehicle, payload.status)
    _write_if_status_unchanged(db, vehicle, {
        Vehicle.status: payload.status,
        Vehicle.updated_at: utcnow(),
        Vehicle.updated_by: user.id,
    })
    logger.info("vehicle_status_updated", vehicle_id=vehicle_id, status=payload.status, actor_id=user.id)
    return vehicle


@router.delete("/{vehicle_id}")
def delete_vehicle(
    vehicle_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_vehicles")),
):
    _get_vehicle(db, vehicle_id)
    if active_assignment_count(db, vehicle_id=vehicle_id):
        raise Conflict("Cannot delete vehicle with active assignments")
    # A claim that lands after the count leaves the vehicle assigned
    deleted = (
        db.query(Vehicle)
        .filter(Vehicle.id == vehicle_id, Vehicle.status != VehicleStatus.assigned.value)
        .delete(synchronize_session="fetch")
    )
    if deleted == 0:
        db.rollback()
        raise Conflict("Cannot delete vehicle with active assignments")
    db.commit()
    logger.info("vehicle_deleted", vehicle_id=vehicle_id, actor_id=user.id)
    return {"message": "Vehicle deleted successfully"}
