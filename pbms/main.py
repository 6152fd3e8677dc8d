import os

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.projects import router as projects_router
from .routes.project_teams import router as project_teams_router
from .routes.project_admin import router as project_admin_router
from .routes.expenses import router as expenses_router
from .routes.budget_categories import router as budget_categories_router
from .routes.budget_versions import router as budget_versions_router
from .routes.business_units import router as business_units_router
from .routes.milestones import router as milestones_router
from .routes.notifications import router as notifications_router
from .routes.analytics import router as analytics_router
from .routes.admin import router as admin_router


log = structlog.get_logger(__name__)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "Validation failed", "errors": jsonable_encoder(exc.errors(), exclude={"ctx", "url"})},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    log.error("database_error", path=request.url.path, method=request.method, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Database error"})


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Error envelopes
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(projects_router)
    app.include_router(project_teams_router)
    app.include_router(project_admin_router)
    app.include_router(expenses_router)
    app.include_router(budget_categories_router)
    app.include_router(budget_versions_router)
    app.include_router(business_units_router)
    app.include_router(milestones_router)
    app.include_router(notifications_router)
    app.include_router(analytics_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health():
        return {"status": "OK", "service": settings.app_name}

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.sqlalchemy_database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("tables_verified", tables=len(Base.metadata.tables))

    return app


app = create_app()
