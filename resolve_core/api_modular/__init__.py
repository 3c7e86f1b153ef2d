"""
ResolveSuite API Application Factory
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import get_resolve_system
from .workflows import router as workflows_router
from .complaints import router as complaints_router
from .notifications import router as notifications_router
from .admin import router as admin_router
from .authentication import router as authentication_router
from .organizations import router as organizations_router
from .departments import router as departments_router
from .complaint_types import router as complaint_types_router
from .users import router as users_router
from ..config import get_config
from ..errors import (
    ResolveError, ValidationError, InvalidReferenceError, InvalidTransitionError,
    ConflictError, NotFoundError, ExternalDispatchError, AuthenticationError,
)
from ..logging_config import setup_logging


# First matching class wins
ERROR_STATUS_CODES = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (InvalidReferenceError, 400),
    (InvalidTransitionError, 409),
    (ConflictError, 409),
    (ExternalDispatchError, 502),
    (AuthenticationError, 401),
)


def status_code_for(error: ResolveError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the timed-transition scheduler with the app and stop it on shutdown"""
    config = get_config()
    logger = setup_logging(config.log_level, config.log_format)
    system = get_resolve_system()
    if config.scheduler_enabled:
        system.scheduler.start()
    logger.info("ResolveSuite API started")

    yield

    system.scheduler.stop()
    system.storage.close()
    logger.info("ResolveSuite API stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    app = FastAPI(
        title="ResolveSuite API",
        description="Complaint management with configurable workflows",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in config.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ResolveError)
    async def handle_resolve_error(request: Request, exc: ResolveError):
        return JSONResponse(status_code=status_code_for(exc), content=exc.to_dict())

    # Include routers
    app.include_router(authentication_router, prefix="/auth", tags=["Auth"])
    app.include_router(organizations_router, prefix="/organizations", tags=["Organizations"])
    app.include_router(departments_router, prefix="/departments", tags=["Departments"])
    app.include_router(complaint_types_router, prefix="/complaint-types", tags=["Complaint Types"])
    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(workflows_router, prefix="/workflows", tags=["Workflows"])
    app.include_router(complaints_router, prefix="/complaints", tags=["Complaints"])
    app.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "resolvesuite_api",
            "version": "1.0.0"
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "ResolveSuite API",
            "version": "1.0.0",
            "description": "Complaint management with configurable workflows",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/auth",
                "organizations": "/organizations",
                "departments": "/departments",
                "complaint_types": "/complaint-types",
                "users": "/users",
                "workflows": "/workflows",
                "complaints": "/complaints",
                "notifications": "/notifications",
                "admin": "/admin",
            }
        }

    return app


# Create the app instance for uvicorn
app = create_app()
