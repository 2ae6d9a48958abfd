"""Main FastAPI application"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from sqlalchemy.orm import Session
from pathlib import Path
from typing import Callable, Optional
import logging
import traceback
import time
import uuid

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response

from b2b_starter.config import Settings, settings
from b2b_starter.core.database import SessionLocal, build_engine, init_db, make_session_factory
from b2b_starter.core.exceptions import BaseAPIException
from b2b_starter.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from b2b_starter.core.timeutil import utcnow
from b2b_starter.schemas.response import ErrorResponse
from b2b_starter.api.v1 import auth, users
from b2b_starter.services.auth_service import AuthService

# Configure logging - ensure log directory exists
_log_dir = Path(settings.get_log_file()).parent
_log_dir.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.get_log_file()),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


def _error_body(request: Request, error: str, details=None) -> dict:
    return ErrorResponse(error=error, details=details, path=request.url.path).model_dump(exclude_none=True)


def create_app(
    config: Settings = settings,
    auth_service: Optional[AuthService] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> FastAPI:
    """
    Build the FastAPI application

    Args:
        config: Settings to build from
        auth_service: Pre-built service; constructed from ``config`` when omitted
        session_factory: Sessions for startup, health and the default service;
            bound to ``config``'s database when omitted

    Returns:
        Configured application with ``app.state.auth_service`` and
        ``app.state.session_factory`` set
    """
    if session_factory is None:
        session_factory = SessionLocal if config is settings else make_session_factory(build_engine(config))

    app = FastAPI(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        debug=config.DEBUG,
        docs_url="/api/docs" if config.DEBUG else None,
        redoc_url="/api/redoc" if config.DEBUG else None
    )
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.auth_service = auth_service or AuthService.from_settings(config, session_factory=session_factory)

    # GZip compression for large responses
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers + request timing middleware
    @app.middleware("http")
    async def add_headers_and_timing(request: Request, call_next):
        """Add security headers and log slow requests"""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-Request-ID"] = request_id

        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        REQUEST_COUNT.labels(request.method, path, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(request.method, path).observe(duration)

        if duration > 1.0:
            logger.warning(
                "Slow request: %s %s took %.2fs request_id=%s",
                request.method,
                request.url.path,
                duration,
                request_id,
            )

        return response

    # Exception handlers
    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        """Handle custom API exceptions"""
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            f"API Exception: {exc.message}",
            extra={
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method
            }
        )

        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.message, exc.details),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors"""
        errors = []
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"]
            })

        # Field values are never logged; they may carry passwords.
        logger.warning(
            f"Validation error on fields: {[e['field'] for e in errors]}",
            extra={"path": request.url.path, "method": request.method}
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(request, "Validation failed", errors),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError):
        """Handle database errors"""
        logger.error(
            f"Database error: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "traceback": traceback.format_exc()
            }
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "A database error occurred. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions"""
        logger.critical(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "traceback": traceback.format_exc()
            }
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, "An unexpected error occurred. Our team has been notified."),
        )

    # Startup event
    @app.on_event("startup")
    async def startup_event():
        """Initialize application on startup"""
        config.validate_security_settings()
        logger.info(f"Starting {config.APP_NAME} v{config.APP_VERSION}")
        logger.info(f"Environment: {config.ENVIRONMENT}")
        if config.uses_ephemeral_keys:
            logger.warning("Using ephemeral JWT signing keys; tokens will not survive a restart")

        # Initialize database
        try:
            with session_factory() as db:
                init_db(bind=db.get_bind(), config=config)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

        # Create admin user if doesn't exist
        try:
            admin = app.state.auth_service.bootstrap_admin(config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
            if admin is not None:
                logger.info(f"Created admin user: id={admin.id}")
        except (BaseAPIException, SQLAlchemyError) as e:
            logger.error(f"Failed to create admin user: {e}")

    # Shutdown event
    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        logger.info(f"Shutting down {config.APP_NAME}")

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        db_ok = True
        db_error = None
        db = session_factory()
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            db_ok = False
            db_error = str(exc)
        finally:
            db.close()

        return {
            "status": "healthy" if db_ok else "degraded",
            "version": config.APP_VERSION,
            "timestamp": utcnow().isoformat(),
            "readiness": {
                "database": {"ok": db_ok, "error": db_error},
                "signing_keys": "ephemeral" if config.uses_ephemeral_keys else "configured",
            },
        }

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": config.APP_NAME,
            "version": config.APP_VERSION,
            "status": "running",
            "docs": "/api/docs" if config.DEBUG else "disabled"
        }

    # Include routers
    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "b2b_starter.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )
