import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db, utcnow
from ..errors import Forbidden, NotFound, ValidationFailed
from ..identity.factory import get_identity_provider
from ..identity.provider import IdentityProvider
from ..models.models import User
from ..schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    TokenResponse,
    VerifyRequest,
)
from ..schemas.common import UserRole
from ..schemas.users import UserResponse
from .security import require_admin


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _ensure_portal_access(user: User):
    if user.role != UserRole.admin.value:
        raise Forbidden("Access denied. Admin privileges required.")
    if not user.is_active:
        raise Forbidden("Account is deactivated")


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    token = identity.sign_in(payload.email, payload.password)
    uid = identity.verify_token(token)
    user = db.get(User, uid)
    if not user:
        raise NotFound("User not found in system")
    _ensure_portal_access(user)

    user.last_login_at = utcnow()
    db.commit()
    db.refresh(user)
    logger.info("user_logged_in", user_id=user.id)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post("/verify", response_model=UserResponse)
def verify(
    payload: VerifyRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Check a token and that it belongs to an active administrator"""
    if not payload.token:
        raise ValidationFailed("Token is required")
    uid = identity.verify_token(payload.token)
    user = db.get(User, uid)
    if not user:
        raise NotFound("User not found in system")
    _ensure_portal_access(user)
    return user


@router.get("/profile", response_model=UserResponse)
def get_profile(user: User = Depends(require_admin)):
    return user


@router.put("/profile", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, key, value)
    user.updated_at = utcnow()
    user.updated_by = user.id
    db.commit()
    db.refresh(user)
    return user


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(require_admin),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    identity.change_password(user.id, payload.password)
    return {"message": "Password changed successfully"}
