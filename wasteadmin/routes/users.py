from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.security import require_permissions
from ..db import get_db, utcnow
from ..errors import Conflict, NotFound
from ..identity.factory import get_identity_provider
from ..identity.provider import IdentityProvider
from ..models.models import ApprovalRequest, User
from ..schemas.common import ApprovalStatus, Page
from ..schemas.users import (
    ApprovalDecision,
    ApprovalRequestResponse,
    UserCreate,
    UserResponse,
    UserRoleUpdate,
    UserStatusUpdate,
)
from ..services import approvals
from ..services.assignments import active_assignment_count
from ..services.pagination import PageParams, paginate, text_search
from ..services.permissions import permissions_for_role


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=Page)
def list_users(
    role: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="active|inactive|all"),
    search: Optional[str] = Query(None),
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("manage_users")),
):
    """List users with filters"""
    query = db.query(User)
    if role and role != "all":
        query = query.filter(User.role == role)
    if status == "active":
        query = query.filter(User.is_active.is_(True))
    elif status == "inactive":
        query = query.filter(User.is_active.is_(False))

    rows = query.order_by(User.created_at.desc()).all()
    rows = text_search(
        rows,
        search,
        lambda u: u.full_name,
        lambda u: u.email,
        lambda u: u.phone,
    )
    return paginate(rows, params, UserResponse)


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("manage_users")),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Create a user directly; provisions the identity account first"""
    email = payload.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("A user with this email already exists")

    uid = identity.create_account(email=email, display_name=payload.full_name, password=payload.password)
    now = utcnow()
    user = User(
        id=uid,
        email=email,
        full_name=payload.full_name,
        phone=payload.phone,
        role=payload.role.value,
        is_active=True,
        permissions=permissions_for_role(payload.role),
        created_at=now,
        updated_by=actor.id,
    )
    try:
        db.add(user)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("user_create_failed", uid=uid, error=str(e))
        identity.delete_account(uid)
        logger.warning("user_create_identity_account_revoked", uid=uid)
        raise Conflict("Could not create user")
    db.refresh(user)
    logger.info("user_created", user_id=uid, role=user.role, actor_id=actor.id)
    return user


@router.get("/approval-requests", response_model=List[ApprovalRequestResponse])
def list_approval_requests(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("approve_requests")),
):
    """Pending registration requests, newest first"""
    return (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.status == ApprovalStatus.pending.value)
        .order_by(ApprovalRequest.created_at.desc())
        .all()
    )


@router.post("/approve-request/{request_id}")
def decide_approval_request(
    request_id: str,
    decision: ApprovalDecision,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("approve_requests")),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    if decision.approved:
        user = approvals.approve_request(db, actor, request_id, identity)
        return {
            "message": "Request approved successfully",
            "status": ApprovalStatus.approved.value,
            "user": UserResponse.model_validate(user),
        }
    approvals.reject_request(db, actor, request_id)
    return {"message": "Request rejected successfully", "status": ApprovalStatus.rejected.value}


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("manage_users")),
):
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


@router.put("/{user_id}/status", response_model=UserResponse)
def update_user_status(
    user_id: str,
    payload: UserStatusUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("manage_users")),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    return approvals.update_active_status(db, actor, user_id, payload.is_active, identity)


@router.put("/{user_id}/role", response_model=UserResponse)
def update_user_role(
    user_id: str,
    payload: UserRoleUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("manage_users")),
):
    return approvals.update_role(db, actor, user_id, payload.role)


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("manage_users")),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Revoke the identity account, then remove the user record"""
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    if user.id == actor.id:
        raise Conflict("You cannot delete your own account")
    if active_assignment_count(db, assigned_to=user_id):
        raise Conflict("User has active assignments")

    identity.delete_account(user_id)
    db.delete(user)
    db.commit()
    logger.info("user_deleted", user_id=user_id, actor_id=actor.id)
    return {"message": "User deleted successfully"}
