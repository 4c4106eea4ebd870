from enum import Enum
from typing import Any, List

from pydantic import BaseModel


# Enums
class UserRole(str, Enum):
    admin = "admin"
    transport_contractor = "transport_contractor"
    swachh_hr = "swachh_hr"
    driver = "driver"


class VehicleStatus(str, Enum):
    available = "available"
    assigned = "assigned"
    maintenance = "maintenance"
    out_of_service = "out_of_service"


class AssignmentKind(str, Enum):
    vehicle = "vehicle"
    feeder_point = "feeder_point"


class AssignmentStatus(str, Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class ApprovalStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ReportGroupBy(str, Enum):
    day = "day"
    week = "week"
    month = "month"


class ExportType(str, Enum):
    users = "users"
    vehicles = "vehicles"
    assignments = "assignments"


class ExportFormat(str, Enum):
    json = "json"
    csv = "csv"


class Page(BaseModel):
    items: List[Any]
    total: int
    page: int
    limit: int
    total_pages: int
