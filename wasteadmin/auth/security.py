from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import Forbidden, Unauthorized
from ..identity.factory import get_identity_provider
from ..identity.provider import IdentityProvider
from ..models.models import User
from ..schemas.common import UserRole


http_bearer = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> User:
    if creds is None:
        raise Unauthorized("No token provided or invalid format")
    uid = identity.verify_token(creds.credentials)
    user = db.get(User, uid)
    if user is None:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Forbidden("Account is deactivated")
    # Picked up by AuditMiddleware once the response is ready
    request.state.actor = {"id": user.id, "email": user.email}
    return user


def has_permission(user: User, perm: str) -> bool:
    return bool((user.permissions or {}).get(perm))


def require_permissions(*required_permissions: str):
    """
    Require at least one of the specified permissions (OR logic).
    Permissions are read from the caller's User record, which is derived from role.
    """
    def _dep(user: User = Depends(get_current_user)) -> User:
        if not any(has_permission(user, perm) for perm in required_permissions):
            raise Forbidden(f"Permission denied. Required permission: {' or '.join(required_permissions)}")
        return user

    return _dep


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.admin.value:
        raise Forbidden("Access denied. Admin privileges required.")
    return user
