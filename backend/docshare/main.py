from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .config import settings
from .database import create_db_and_tables, stores
from .errors import ShareLinkError, RateLimitError, AuthorizationError
from .routes import router as api_router
from .redis_client import RedisService
from .schemas import HealthResponse
from .logging_config import setup_logging, get_logger, set_request_id

# Initialize structured logging
setup_logging()
logger = get_logger(__name__)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to each request for tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID")
        rid = set_request_id(request_id)

        response = await call_next(request)

        response.headers["X-Request-ID"] = rid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting share link API...")

    try:
        await create_db_and_tables()
        logger.info("Database tables created/verified")
    except SQLAlchemyError as e:
        logger.error(f"Failed to verify database tables: {e}")

    yield

    await RedisService.close()
    logger.info("Shutting down share link API...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Time-bounded, anonymously accessible share links to documents",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)

# Request ID middleware for tracing
app.add_middleware(RequestIdMiddleware)

# CORS middleware - configured via environment
cors_origins = settings.CORS_ORIGINS
if cors_origins == ["*"]:
    logger.warning("CORS configured to allow all origins. Set CORS_ORIGINS for production.")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, tags=["Links"])


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    db_healthy = True
    redis_healthy = await RedisService.health_check()

    try:
        async with stores.public() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        db_healthy = False

    status = "healthy" if (db_healthy and redis_healthy) else "degraded"

    return {
        "status": status,
        "database": db_healthy,
        "redis": redis_healthy,
        "version": settings.APP_VERSION
    }


# Exception handlers
@app.exception_handler(ShareLinkError)
async def share_link_error_handler(request: Request, exc: ShareLinkError):
    headers = {}
    if isinstance(exc, RateLimitError):
        headers["X-RateLimit-Remaining"] = "0"
    elif isinstance(exc, AuthorizationError) and exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"

    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")

    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.debug(f"Rejected request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"error": "Not found"})
    return JSONResponse(status_code=exc.status_code or 500, content={"error": exc.detail or "HTTP error"})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception(f"Server error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
