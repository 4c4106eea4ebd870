"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings
from ..db import SessionLocal, utcnow
from ..models.models import AuditLog


logger = structlog.get_logger(__name__)

READ_METHODS = {"GET", "HEAD", "OPTIONS"}


def integrity_hash(data: Dict[str, Any], secret: Optional[str] = None) -> str:
    """SHA256 over the canonical JSON of ``data`` plus the secret."""
    canonical = {k: v for k, v in data.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    hash_input = f"{canonical_json}:{secret or settings.jwt_secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def record_admin_action(
    db: Session,
    action: str,
    admin_id: Optional[str] = None,
    admin_email: Optional[str] = None,
    status_code: Optional[int] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    body: Optional[Dict] = None,
    details: Optional[str] = None,
) -> AuditLog:
    """
    Create an append-only audit log entry.

    Args:
        db: Database session
        action: "<METHOD> <path>" for requests, or a symbolic label (CLEAR_CACHE)
        admin_id / admin_email: the acting user
        status_code: response status of the audited request
        body: optional JSON payload worth keeping
        details: free-text note

    Returns:
        Created AuditLog object
    """
    timestamp = utcnow()
    entry = AuditLog(
        admin_id=admin_id,
        admin_email=admin_email,
        action=action,
        timestamp=timestamp,
        status_code=status_code,
        ip=ip,
        user_agent=user_agent,
        body=body,
        details=details,
        integrity_hash=integrity_hash({
            "admin_id": admin_id,
            "action": action,
            "timestamp": timestamp.isoformat(),
            "status_code": status_code,
            "body": body,
            "details": details,
        }),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def should_audit(method: str, status_code: int, mutations_only: bool) -> bool:
    if status_code >= 400:
        return False
    if mutations_only and method.upper() in READ_METHODS:
        return False
    return True


class AuditMiddleware(BaseHTTPMiddleware):
    """
    One audit row per successful authenticated request under /api.
    ``get_current_user`` leaves the actor on ``request.state``; requests that
    never resolved a user are not audited. Failures here are logged only.
    """

    def __init__(self, app, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(app)
        self._session_factory = session_factory

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        actor = getattr(request.state, "actor", None)
        if (
            actor
            and request.url.path.startswith("/api")
            and should_audit(request.method, response.status_code, settings.audit_mutations_only)
        ):
            try:
                with self._session_factory() as db:
                    record_admin_action(
                        db,
                        action=f"{request.method} {request.url.path}",
                        admin_id=actor.get("id"),
                        admin_email=actor.get("email"),
                        status_code=response.status_code,
                        ip=request.client.host if request.client else None,
                        user_agent=request.headers.get("user-agent"),
                    )
            except SQLAlchemyError as e:
                logger.error("audit_log_write_failed", path=request.url.path, error=str(e))
        return response
