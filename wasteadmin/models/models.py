import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    Integer,
    Float,
    JSON,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base, utcnow


def uuid_pk() -> Mapped[str]:
    return mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))


class User(Base):
    """Portal user; ``id`` is the identity-provider account id."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # admin|transport_contractor|swachh_hr|driver
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    permissions: Mapped[dict] = mapped_column(JSON, default=dict)  # derived from role, never hand-edited
    notification_settings: Mapped[Optional[dict]] = mapped_column(JSON)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[str]] = mapped_column(String(64))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))


class ApprovalRequest(Base):
    """Self-service registration awaiting an administrator decision"""
    __tablename__ = "approval_requests"

    id: Mapped[str] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)  # pending|approved|rejected
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    decided_by: Mapped[Optional[str]] = mapped_column(String(64))
    user_id: Mapped[Optional[str]] = mapped_column(String(64))  # provisioned user on approval


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[str] = uuid_pk()
    registration_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)  # always upper-case
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[Optional[int]] = mapped_column(Integer)
    vehicle_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    capacity: Mapped[Optional[float]] = mapped_column(Float)
    fuel_type: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(50), default="available", nullable=False, index=True)  # available|assigned|maintenance|out_of_service
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))


class FeederPoint(Base):
    """Waste collection point; availability is implied by its assignments"""
    __tablename__ = "feeder_points"

    id: Mapped[str] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[str] = mapped_column(String(500), nullable=False)
    area: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))


class Assignment(Base):
    """
    Resource -> assignee link, stored single-table and tagged by ``kind``.
    Resource and assignee are referenced by id only; history survives deletion
    of the referenced documents.
    """
    __tablename__ = "assignments"

    id: Mapped[str] = uuid_pk()
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # vehicle|feeder_point
    assigned_to: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    assignment_type: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    assigned_by: Mapped[Optional[str]] = mapped_column(String(64))
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False, index=True)  # active|completed|cancelled
    notes: Mapped[Optional[str]] = mapped_column(Text)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))

    __mapper_args__ = {"polymorphic_on": "kind"}


class VehicleAssignment(Assignment):
    vehicle_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    __mapper_args__ = {"polymorphic_identity": "vehicle"}

    @property
    def resource_id(self) -> Optional[str]:
        return self.vehicle_id


class FeederPointAssignment(Assignment):
    feeder_point_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    __mapper_args__ = {"polymorphic_identity": "feeder_point"}

    @property
    def resource_id(self) -> Optional[str]:
        return self.feeder_point_id


class AuditLog(Base):
    """Append-only record of administrative actions"""
    __tablename__ = "audit_logs"

    id: Mapped[str] = uuid_pk()
    admin_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    admin_email: Mapped[Optional[str]] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)  # "PUT /api/vehicles/.." | CLEAR_CACHE
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    status_code: Mapped[Optional[int]] = mapped_column(Integer)
    ip: Mapped[Optional[str]] = mapped_column(String(100))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    body: Mapped[Optional[dict]] = mapped_column(JSON)
    details: Mapped[Optional[str]] = mapped_column(Text)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)  # e.g. "system"
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_by: Mapped[Optional[str]] = mapped_column(String(64))


class Backup(Base):
    __tablename__ = "backups"

    id: Mapped[str] = uuid_pk()
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64))
    collections: Mapped[list] = mapped_column(JSON, default=list)
    size: Mapped[int] = mapped_column(Integer, default=0)  # bytes of serialized payload
    payload: Mapped[Optional[dict]] = mapped_column(JSON)


class IdentityAccount(Base):
    """Accounts owned by the local identity provider, not by the portal."""
    __tablename__ = "identity_accounts"

    uid: Mapped[str] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
