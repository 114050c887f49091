"""
Organizational Directory

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from orgdir.api.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware
from orgdir.api.v1 import router as api_v1_router
from orgdir.config import get_settings
from orgdir.database import async_session_maker, close_db, init_db
from orgdir.kernel.errors import DirectoryError, ErrorCode
from orgdir.logging_config import configure_logging, get_logger
from orgdir.schemas.common import HealthResponse

settings = get_settings()
logger = get_logger(__name__)

ERROR_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_OPERATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NOT_IMPLEMENTED: status.HTTP_501_NOT_IMPLEMENTED,
    ErrorCode.AUTH_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.ROLE_INSUFFICIENT: status.HTTP_403_FORBIDDEN,
    ErrorCode.SCOPE_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorCode.ANCESTOR_EDIT_FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.ESCALATION_DENIED: status.HTTP_403_FORBIDDEN,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Runs startup and shutdown tasks.
    """
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down...")
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    Hierarchical organizational directory.

    ## Features

    - **Directory tree**: domains, units, groups and principals on a materialized-path tree
    - **Moves**: reparenting rewrites the paths of the whole subtree in one transaction
    - **Access control**: role + position in the tree + anti-escalation checks
    - **Audit**: every administrative action is recorded with its outcome
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# add_middleware stacks innermost-first: CORS is added last so it wraps everything
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_headers(request: Request) -> dict:
    req_id = getattr(request.state, "request_id", None)
    return {REQUEST_ID_HEADER: req_id} if req_id else {}


@app.exception_handler(DirectoryError)
async def directory_exception_handler(request: Request, exc: DirectoryError):
    """Render kernel errors as {"detail", "code"} with a matching status."""
    status_code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    headers = _error_headers(request)
    if exc.code == ErrorCode.AUTH_REQUIRED:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code.value},
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    headers = {**(exc.headers or {}), **_error_headers(request)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation error", "errors": errors},
        headers=_error_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", exc)
    req_id = getattr(request.state, "request_id", None)
    if settings.debug:
        content = {"detail": str(exc), "type": type(exc).__name__, "request_id": req_id}
    else:
        content = {"detail": "Internal server error", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
        headers=_error_headers(request),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application and database health."""
    database = "connected"
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "connected" else "degraded",
        version=settings.version,
        database=database,
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.project_name,
        "version": settings.version,
        "docs": "/docs" if settings.debug else "disabled",
        "api": {
            "v1": settings.api_v1_prefix,
        },
    }


app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


# Main entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orgdir.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
