from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import FulfillmentError
from app.database import init_db, async_session_factory


logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create any missing tables (migrations remain the source of truth)
    """
    configure_logging()
    await init_db()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")

    yield

    logger.info(f"{settings.APP_NAME} shutting down")


OPENAPI_TAGS = [
    {"name": "Runs", "description": "Consolidate pending demand into runs, activate, complete and cancel them"},
    {"name": "Picking", "description": "Courier pick progress and store visit confirmation"},
    {"name": "Ledger", "description": "Store debits/credits, balances and confirmation amendments"},
    {"name": "Orders", "description": "Derived order status and order line changes"},
    {"name": "Returns", "description": "Direct processing of store returns"},
]

API_DESCRIPTION = """
## Fulfillment Run Engine API

Consolidates marketplace order lines and store returns into courier runs,
tracks picking per store, and reconciles what is owed between the operator
and each store.

### Authentication

All endpoints under `/api/v1` require a bearer JWT with `sub` and `role`
(`admin`, `runner` or `service_role`) claims.

### Error Codes

| Code | Description |
|------|-------------|
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Insufficient permissions |
| 404 | Not Found - `unknown_reference` |
| 409 | Conflict - `conflicting_assignment`, `invalid_run_state` (retry with fresh data) |
| 422 | Invalid request body - `invalid_request`; business rule violation - `no_eligible_demand`, `receipt_required`, `invalid_quantity`, `unconfirmed_action` |
| 500 | `partial_failure` or unexpected error |

Every error, including auth and validation failures, is returned as
`{"error": ..., "kind": ..., "details": {...}}`.
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(FulfillmentError)
async def fulfillment_exception_handler(request: Request, exc: FulfillmentError):
    """Render engine errors with their machine-readable kind."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


HTTP_ERROR_KINDS = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Auth and routing errors in the same body shape as engine errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": str(exc.detail),
            "kind": HTTP_ERROR_KINDS.get(exc.status_code, "http_error"),
            "details": {"path": request.url.path},
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in e.get("loc", ())),
            "reason": str(e.get("msg") or e.get("type") or "invalid"),
        }
        for e in exc.errors()
    ]
    logger.warning(f"{request.method} {request.url.path} rejected: {len(errors)} invalid field(s)")
    return JSONResponse(
        status_code=422,
        content={
            "error": "Request validation failed",
            "kind": "invalid_request",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything unexpected is logged with its traceback and returned as a 500."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "type": type(exc).__name__,
            "path": str(request.url.path),
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
