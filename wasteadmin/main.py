import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from .auth.router import router as auth_router
from .config import settings
from .db import Base, engine
from .errors import ServiceError, UpstreamUnavailable, service_error_handler
from .identity.factory import get_identity_provider
from .logging import RequestIdMiddleware, setup_logging
from .routes.assignments import router as assignments_router
from .routes.feeder_points import router as feeder_points_router
from .routes.reports import router as reports_router
from .routes.settings import router as settings_router
from .routes.users import router as users_router
from .routes.vehicles import router as vehicles_router
from .services.audit import AuditMiddleware


logger = structlog.get_logger(__name__)


async def store_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("store_unavailable", path=request.url.path, error=str(exc.orig))
    return await service_error_handler(request, UpstreamUnavailable("Database not available"))


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name, version=settings.app_version)

    # Middlewares (last added runs first)
    app.add_middleware(AuditMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(OperationalError, store_unavailable_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(vehicles_router)
    app.include_router(feeder_points_router)
    app.include_router(assignments_router)
    app.include_router(reports_router)
    app.include_router(settings_router)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        # Fail fast on an unknown identity provider
        get_identity_provider()
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            existing = set(inspect(engine).get_table_names())
            missing = set(Base.metadata.tables) - existing
            if missing:
                logger.info("creating_tables", tables=sorted(missing))
                Base.metadata.create_all(bind=engine)

    return app


app = create_app()
