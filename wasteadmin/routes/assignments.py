from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.assignments import (
    AssignmentDetailResponse,
    AssignmentResponse,
    AssignmentStatsResponse,
    AssignmentStatusUpdate,
    FeederPointAssignmentCreate,
    VehicleAssignmentCreate,
)
from ..schemas.common import AssignmentKind
from ..services import assignments as workflow


router = APIRouter(prefix="/api/assignments", tags=["assignments"])

manage_assignments = require_permissions("manage_assignments")


@router.get("/vehicles", response_model=List[AssignmentDetailResponse])
def list_vehicle_assignments(
    status: Optional[str] = Query(None),
    assignment_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(manage_assignments),
):
    """Vehicle assignments with vehicle and assignee details"""
    return workflow.list_assignments(db, AssignmentKind.vehicle, status, assignment_type)


@router.post("/vehicles", response_model=AssignmentResponse, status_code=201)
def create_vehicle_assignment(
    payload: VehicleAssignmentCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(manage_assignments),
):
    """Assign an available vehicle; the vehicle becomes ``assigned``"""
    return workflow.create_vehicle_assignment(db, actor, **payload.model_dump())


@router.put("/vehicles/{assignment_id}/status", response_model=AssignmentResponse)
def update_vehicle_assignment_status(
    assignment_id: str,
    payload: AssignmentStatusUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(manage_assignments),
):
    """Complete or cancel; the vehicle returns to ``available``"""
    return workflow.change_assignment_status(
        db, actor, assignment_id, payload.status, kind=AssignmentKind.vehicle
    )


@router.get("/feeder-points", response_model=List[AssignmentDetailResponse])
def list_feeder_point_assignments(
    status: Optional[str] = Query(None),
    assignment_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(manage_assignments),
):
    return workflow.list_assignments(db, AssignmentKind.feeder_point, status, assignment_type)


@router.post("/feeder-points", response_model=AssignmentResponse, status_code=201)
def create_feeder_point_assignment(
    payload: FeederPointAssignmentCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(manage_assignments),
):
    return workflow.create_feeder_point_assignment(db, actor, **payload.model_dump())


@router.put("/feeder-points/{assignment_id}/status", response_model=AssignmentResponse)
def update_feeder_point_assignment_status(
    assignment_id: str,
    payload: AssignmentStatusUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(manage_assignments),
):
    return workflow.change_assignment_status(
        db, actor, assignment_id, payload.status, kind=AssignmentKind.feeder_point
    )


@router.get("/stats", response_model=AssignmentStatsResponse)
def get_assignment_stats(
    db: Session = Depends(get_db),
    _=Depends(manage_assignments),
):
    stats = workflow.assignment_stats(db)
    return AssignmentStatsResponse(
        vehicle_assignments=stats[AssignmentKind.vehicle.value],
        feeder_point_assignments=stats[AssignmentKind.feeder_point.value],
    )
