"""
FastAPI application main module.
Wires the sync components, middleware, error handling and the daily scheduler.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
from contextlib import asynccontextmanager
from lexsync import __version__, config
from lexsync.api.v1 import api_router
from lexsync.jobs.daily_sync import start_scheduler, stop_scheduler
from lexsync.runtime import build_components, ensure_configured, open_session
from lexsync.utils import setup_logging, get_logger
from lexsync.utils.logger import monthly_log_file

# Setup logging before creating the app
setup_logging(
    log_level=config.LOG_LEVEL,
    log_file=monthly_log_file(config.LOG_DIR) if config.LOG_TO_FILE else None,
    enable_console=True
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Fails fast on missing credentials, then builds the clients and scheduler.
    """
    logger.info("Application startup initiated")
    ensure_configured()
    if not config.API_AUTH_TOKEN:
        logger.warning("API_AUTH_TOKEN not set, /api/v1 is unauthenticated")

    session = open_session()
    components = build_components(session)
    app.state.components = components  # type: ignore[attr-defined]
    app.state.batch_processor = components.processor  # type: ignore[attr-defined]
    app.state.reconciler = components.reconciler  # type: ignore[attr-defined]
    try:
        start_scheduler(components.reconciler)
        logger.info("Application startup completed successfully")
        yield
    finally:
        logger.info("Application shutdown initiated")
        stop_scheduler()
        await components.close()
        logger.info("Application shutdown completed")


app = FastAPI(
    title="LEX Zoho Sync",
    description="""
    Shipment synchronisation middleware between LEX and Zoho CRM.

    ## Features
    * **Bulk create** - LEX AWBs become Zoho shipments, new ids written back to LEX
    * **Bulk update** - existing Zoho shipments refreshed from LEX
    * **Daily reconciliation** - yesterday's LEX shipments classified into create/update

    ## Authentication
    When `API_AUTH_TOKEN` is configured every `/api/v1` call needs:
    ```
    Authorization: Bearer <API_AUTH_TOKEN>
    ```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing id lists are client errors (400)."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
            "request_id": request_id
        }
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    reconciler = getattr(app.state, "reconciler", None)
    return {
        "status": "healthy",
        "service": "lexsync",
        "version": __version__,
        "timestamp": time.time(),
        "sync_state": reconciler.state.value if reconciler is not None else None,
    }


app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "lexsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["lexsync"],
        log_level="info",
        access_log=True
    )
