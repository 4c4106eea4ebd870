from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


def _normalize_registration(v: str) -> str:
    v = v.strip().upper()
    if not v:
        raise ValueError("registration_number must not be blank")
    return v


# Vehicle Schemas
class VehicleBase(BaseModel):
    registration_number: str = Field(min_length=1)
    make: str = Field(min_length=1)
    model: str = Field(min_length=1)
    vehicle_type: str = Field(min_length=1)
    year: Optional[int] = None
    capacity: Optional[float] = None
    fuel_type: Optional[str] = None

    @field_validator("registration_number")
    @classmethod
    def normalize_registration(cls, v: str) -> str:
        return _normalize_registration(v)


class VehicleCreate(VehicleBase):
    status: str = "available"


class VehicleUpdate(BaseModel):
    registration_number: Optional[str] = Field(None, min_length=1)
    make: Optional[str] = Field(None, min_length=1)
    model: Optional[str] = Field(None, min_length=1)
    vehicle_type: Optional[str] = Field(None, min_length=1)
    year: Optional[int] = None
    capacity: Optional[float] = None
    fuel_type: Optional[str] = None
    status: Optional[str] = None

    @field_validator("registration_number")
    @classmethod
    def normalize_registration(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_registration(v) if v is not None else v


class VehicleStatusUpdate(BaseModel):
    status: str


class VehicleResponse(VehicleBase):
    id: str
    status: str
    created_at: datetime
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class VehicleStatsResponse(BaseModel):
    total: int
    available: int
    assigned: int
    maintenance: int
    out_of_service: int
    by_type: Dict[str, int]


# Feeder Point Schemas
class FeederPointBase(BaseModel):
    name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    area: Optional[str] = None
    description: Optional[str] = None


class FeederPointCreate(FeederPointBase):
    pass


class FeederPointUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1)
    area: Optional[str] = None
    description: Optional[str] = None


class FeederPointResponse(FeederPointBase):
    id: str
    created_at: datetime
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True
