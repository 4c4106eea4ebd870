"""
Service error taxonomy.

Every workflow and registry operation reports failures by raising one of
these; the API layer renders them as ``{"detail": ..., "kind": ...}`` with
the class' HTTP status. ``kind`` values are stable and safe for clients to
switch on.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ServiceError):
    kind = "validation"
    status_code = 400


class InvalidStatus(ServiceError):
    kind = "invalid_status"
    status_code = 400


class Unauthorized(ServiceError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code = 403


class NotFound(ServiceError):
    kind = "not_found"
    status_code = 404


class Conflict(ServiceError):
    kind = "conflict"
    status_code = 409


class UpstreamUnavailable(ServiceError):
    kind = "upstream_unavailable"
    status_code = 503


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind},
    )
