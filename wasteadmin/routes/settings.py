import json
import platform
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..config import settings
from ..db import as_utc_naive, get_db, utcnow
from ..identity.factory import get_identity_provider
from ..identity.provider import IdentityProvider
from ..models.models import (
    AppSetting,
    ApprovalRequest,
    Assignment,
    AuditLog,
    Backup,
    FeederPoint,
    User,
    Vehicle,
)
from ..schemas.common import Page
from ..services.audit import record_admin_action
from ..services.pagination import PageParams, paginate
from ..services.reports import audit_log_to_dict


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])

STARTED_AT = time.time()

DEFAULT_SYSTEM_SETTINGS: Dict[str, Any] = {
    "app_name": "Swachh Netra Admin Portal",
    "version": settings.app_version,
    "maintenance_mode": False,
    "allow_registrations": True,
    "max_file_size": 5 * 1024 * 1024,
    "allowed_file_types": ["image/jpeg", "image/png", "image/gif", "application/pdf"],
    "session_timeout": 24,  # hours
    "password_policy": {
        "min_length": 8,
        "require_uppercase": True,
        "require_lowercase": True,
        "require_numbers": True,
        "require_special_chars": False,
    },
    "notifications": {
        "email_enabled": True,
        "sms_enabled": False,
        "push_enabled": True,
    },
}

DEFAULT_NOTIFICATION_SETTINGS: Dict[str, Any] = {
    "email": {"user_approvals": True, "system_alerts": True, "reports": True, "assignments": True},
    "push": {"user_approvals": True, "system_alerts": True, "reports": False, "assignments": True},
}

BACKUP_SOURCES = {
    "users": User,
    "vehicles": Vehicle,
    "feeder_points": FeederPoint,
    "assignments": Assignment,
    "approval_requests": ApprovalRequest,
}

# Never leaves the database in a backup
BACKUP_EXCLUDED_FIELDS = {"password_hash"}


class BackupRequest(BaseModel):
    collections: List[str] = ["users", "vehicles", "assignments"]


@router.get("/system")
def get_system_settings(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("manage_system")),
):
    stored = db.get(AppSetting, "system")
    return {**DEFAULT_SYSTEM_SETTINGS, **(stored.data if stored else {})}


@router.put("/system")
def update_system_settings(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_system")),
):
    """Shallow merge into the stored system document"""
    stored = db.get(AppSetting, "system")
    if stored is None:
        stored = AppSetting(key="system", data={})
        db.add(stored)
    # Reassign so the JSON column is flagged dirty
    stored.data = {**(stored.data or {}), **payload}
    stored.updated_at = utcnow()
    stored.updated_by = user.id
    db.commit()
    logger.info("system_settings_updated", keys=sorted(payload), actor_id=user.id)
    return {"message": "System settings updated successfully"}


@router.get("/notifications")
def get_notification_settings(user: User = Depends(get_current_user)):
    return user.notification_settings or DEFAULT_NOTIFICATION_SETTINGS


@router.put("/notifications")
def update_notification_settings(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    user.notification_settings = payload
    user.updated_at = utcnow()
    user.updated_by = user.id
    db.commit()
    return {"message": "Notification settings updated successfully"}


@router.get("/audit-logs", response_model=Page)
def list_audit_logs(
    admin_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None, description="action prefix, e.g. 'PUT' or 'CLEAR_CACHE'"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("manage_system")),
):
    query = db.query(AuditLog)
    if admin_id:
        query = query.filter(AuditLog.admin_id == admin_id)
    if action:
        query = query.filter(AuditLog.action.startswith(action))
    if start_date:
        query = query.filter(AuditLog.timestamp >= as_utc_naive(start_date))
    if end_date:
        query = query.filter(AuditLog.timestamp <= as_utc_naive(end_date))
    rows = query.order_by(AuditLog.timestamp.desc()).all()
    page = paginate(rows, params)
    page.items = [audit_log_to_dict(r) for r in page.items]
    return page


def _snapshot(db: Session, model) -> List[Dict[str, Any]]:
    return [
        jsonable_encoder({
            c.key: getattr(row, c.key)
            for c in row.__mapper__.column_attrs
            if c.key not in BACKUP_EXCLUDED_FIELDS
        })
        for row in db.query(model).all()
    ]


@router.post("/backup")
def create_backup(
    payload: Optional[BackupRequest] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_system")),
):
    """Snapshot the named collections; unknown names are ignored"""
    payload = payload or BackupRequest()
    snapshot = {
        name: _snapshot(db, BACKUP_SOURCES[name])
        for name in payload.collections
        if name in BACKUP_SOURCES
    }
    size = len(json.dumps(snapshot))
    backup = Backup(
        created_at=utcnow(),
        created_by=user.id,
        collections=list(snapshot),
        size=size,
        payload=snapshot,
    )
    db.add(backup)
    db.commit()
    db.refresh(backup)
    logger.info("backup_created", backup_id=backup.id, collections=list(snapshot), size=size)
    return {
        "message": "Backup created successfully",
        "backup_id": backup.id,
        "timestamp": backup.created_at,
        "collections": backup.collections,
        "size": size,
    }


@router.get("/backups")
def list_backups(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("manage_system")),
):
    rows = db.query(Backup).order_by(Backup.created_at.desc()).limit(20).all()
    return [
        {
            "id": b.id,
            "timestamp": b.created_at,
            "created_by": b.created_by,
            "collections": b.collections,
            "size": b.size,
        }
        for b in rows
    ]


@router.get("/system-status")
def system_status(
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    _=Depends(get_current_user),
):
    try:
        db.execute(text("SELECT 1"))
        database = "online"
    except SQLAlchemyError:
        database = "offline"
    return {
        "timestamp": utcnow(),
        "services": {
            "database": database,
            "authentication": "online" if identity.ping() else "offline",
            "api": "online",
        },
        "metrics": {
            "uptime": time.time() - STARTED_AT,
            "version": platform.python_version(),
            "environment": settings.environment,
        },
    }


@router.post("/clear-cache")
def clear_cache(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("manage_system")),
):
    """No caches are kept; the request is recorded for the audit trail"""
    record_admin_action(
        db,
        action="CLEAR_CACHE",
        admin_id=user.id,
        admin_email=user.email,
        ip=request.client.host if request.client else None,
        details="System cache cleared",
    )
    return {"message": "Cache cleared successfully"}
