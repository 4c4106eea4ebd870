"""
Approval workflow and role/status administration.

An ApprovalRequest leaves ``pending`` exactly once. Approval provisions one
identity account and one User whose permissions come from the role table;
the identity provider commits on its own, so any failure after provisioning
deletes the fresh account again.
"""
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import utcnow
from ..errors import Conflict, NotFound, ServiceError
from ..identity.provider import IdentityProvider
from ..models.models import ApprovalRequest, User
from ..schemas.common import ApprovalStatus
from .permissions import parse_role, permissions_for_role, role_from_request


logger = structlog.get_logger(__name__)


def _get_request(db: Session, request_id: str) -> ApprovalRequest:
    req = db.get(ApprovalRequest, request_id)
    if req is None:
        raise NotFound("Approval request not found")
    if req.status != ApprovalStatus.pending.value:
        raise Conflict("Approval request already processed")
    return req


def _decide(db: Session, actor: User, request_id: str, status: ApprovalStatus, extra: Optional[dict] = None) -> None:
    """Conditional pending -> ``status``; raises Conflict when another decision won."""
    moved = (
        db.query(ApprovalRequest)
        .filter(ApprovalRequest.id == request_id, ApprovalRequest.status == ApprovalStatus.pending.value)
        .update(
            {
                ApprovalRequest.status: status.value,
                ApprovalRequest.decided_at: utcnow(),
                ApprovalRequest.decided_by: actor.id,
                **(extra or {}),
            },
            synchronize_session="fetch",
        )
    )
    if moved == 0:
        raise Conflict("Approval request already processed")


def _revoke_account(identity: IdentityProvider, uid: str, request_id: str) -> None:
    try:
        identity.delete_account(uid)
        logger.warning("approval_identity_account_revoked", request_id=request_id, uid=uid)
    except ServiceError as e:
        logger.error("approval_compensation_failed", request_id=request_id, uid=uid, error=e.message)


def approve_request(db: Session, actor: User, request_id: str, identity: IdentityProvider) -> User:
    req = _get_request(db, request_id)
    role = role_from_request(req.role)

    uid = identity.create_account(
        email=req.email,
        display_name=req.full_name,
        password_hash=req.password_hash,
    )

    now = utcnow()
    try:
        _decide(db, actor, request_id, ApprovalStatus.approved, {ApprovalRequest.user_id: uid})
        user = User(
            id=uid,
            email=req.email.strip().lower(),
            full_name=req.full_name,
            phone=req.phone,
            role=role.value,
            is_active=True,
            permissions=permissions_for_role(role),
            approved_at=now,
            approved_by=actor.id,
            created_at=now,
        )
        db.add(user)
        db.commit()
    except (ServiceError, SQLAlchemyError) as e:
        db.rollback()
        logger.error(
            "approval_provisioning_failed",
            request_id=request_id,
            uid=uid,
            error=str(e),
        )
        _revoke_account(identity, uid, request_id)
        if isinstance(e, IntegrityError):
            raise Conflict("A user with this email already exists") from e
        raise

    db.refresh(user)
    logger.info(
        "approval_request_approved",
        request_id=request_id,
        user_id=uid,
        role=role.value,
        actor_id=actor.id,
    )
    return user


def reject_request(db: Session, actor: User, request_id: str) -> ApprovalRequest:
    req = _get_request(db, request_id)
    try:
        _decide(db, actor, request_id, ApprovalStatus.rejected)
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    db.refresh(req)
    logger.info("approval_request_rejected", request_id=request_id, actor_id=actor.id)
    return req


def _get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def update_role(db: Session, actor: User, user_id: str, role: str) -> User:
    """Permissions are replaced wholesale from the role table, never merged."""
    new_role = parse_role(role)
    user = _get_user(db, user_id)
    user.role = new_role.value
    user.permissions = permissions_for_role(new_role)
    user.updated_at = utcnow()
    user.updated_by = actor.id
    db.commit()
    db.refresh(user)
    logger.info("user_role_updated", user_id=user_id, role=new_role.value, actor_id=actor.id)
    return user


def update_active_status(
    db: Session,
    actor: User,
    user_id: str,
    is_active: bool,
    identity: IdentityProvider,
) -> User:
    user = _get_user(db, user_id)
    user.is_active = is_active
    user.updated_at = utcnow()
    user.updated_by = actor.id

    # Nothing is flushed before the provider call; a failure discards the change.
    try:
        identity.set_disabled(user_id, not is_active)
    except ServiceError:
        db.rollback()
        logger.error("user_status_provider_sync_failed", user_id=user_id, is_active=is_active)
        raise

    db.commit()
    db.refresh(user)
    logger.info(
        "user_status_updated",
        user_id=user_id,
        is_active=is_active,
        actor_id=actor.id,
    )
    return user
