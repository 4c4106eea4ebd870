from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class VehicleAssignmentCreate(BaseModel):
    vehicle_id: str = Field(min_length=1)
    assigned_to: str = Field(min_length=1)
    assignment_type: str = Field(min_length=1)  # driver|contractor|...
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    notes: Optional[str] = None


class FeederPointAssignmentCreate(BaseModel):
    feeder_point_id: str = Field(min_length=1)
    assigned_to: str = Field(min_length=1)
    assignment_type: str = "feeder_point"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    notes: Optional[str] = None


class AssignmentStatusUpdate(BaseModel):
    # Plain string: out-of-set values are reported as invalid_status, not 422
    status: str


class AssignmentResponse(BaseModel):
    id: str
    kind: str
    vehicle_id: Optional[str] = None
    feeder_point_id: Optional[str] = None
    assigned_to: str
    assignment_type: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_at: datetime
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class AssignmentDetailResponse(AssignmentResponse):
    vehicle: Optional[Dict[str, Any]] = None
    feeder_point: Optional[Dict[str, Any]] = None
    assignee: Optional[Dict[str, Any]] = None


class AssignmentCounts(BaseModel):
    total: int = 0
    active: int = 0
    completed: int = 0
    cancelled: int = 0


class AssignmentStatsResponse(BaseModel):
    vehicle_assignments: AssignmentCounts
    feeder_point_assignments: AssignmentCounts
