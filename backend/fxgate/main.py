"""fxgate application entry point.

fxgate is an HTTP function gateway: many small, independent functions
(QR codes, stickers, weather, currency, GPT, dice ...) behind one generic
dispatcher.

Modules:
    - dispatch: function registry, dispatcher, /execute, /batch, discovery
    - storage: temporary file storage and /temp downloads
    - system: /health and /stats
    - functions: the handlers themselves, one package per category
    - core: envelopes, validation, rate limiting, outbound HTTP

Run with ``uvicorn fxgate.main:app``.
"""
import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fxgate import __version__
from fxgate.config import AppConfig, get_config
from fxgate.core.errors import FxError, RateLimitExceeded
from fxgate.core.http import ApiClient
from fxgate.core.ratelimit import FixedWindowRateLimiter
from fxgate.core.response import configure_response_metadata, error_response
from fxgate.dispatch.registry import FunctionRegistry
from fxgate.dispatch.router import router as dispatch_router
from fxgate.dispatch.service import Dispatcher
from fxgate.functions.base import FunctionContext
from fxgate.storage.router import router as storage_router
from fxgate.storage.service import TempStorageManager, run_periodic_cleanup
from fxgate.system.router import router as system_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# httpx/httpcore log every connection; PIL logs every plugin it probes.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "openai",
    "PIL",
    "PIL.PngImagePlugin",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = [
    {"path": "/health", "method": "GET", "description": "Health check"},
    {"path": "/execute", "method": "POST", "description": "Execute a function"},
    {"path": "/batch", "method": "POST", "description": "Execute multiple functions"},
    {"path": "/functions", "method": "GET", "description": "List all functions"},
    {"path": "/functions/{category}/{function}", "method": "GET", "description": "Describe a function"},
    {"path": "/cache", "method": "DELETE", "description": "Clear the function cache (admin)"},
    {"path": "/stats", "method": "GET", "description": "Get service statistics"},
    {"path": "/temp/{fileId}", "method": "GET", "description": "Download a temporary file"},
]


async def _warmup(app: FastAPI) -> None:
    """Load the configured functions so the first real call is a cache hit."""
    registry: FunctionRegistry = app.state.registry
    for entry in app.state.config.warmup:
        category, _, name = entry.partition("/")
        if not registry.exists(category, name):
            logger.warning("Warmup skipped, unknown function: %s", entry)
            continue
        try:
            handler, _ = registry.get(category, name)
            await handler.warmup()
        except Exception as exc:
            logger.warning("Warmup of %s failed: %s", entry, exc)
        else:
            logger.info("Warmed up %s", entry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppConfig = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in fxgate.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    shutdown_event = asyncio.Event()
    cleanup_task = asyncio.create_task(
        run_periodic_cleanup(
            app.state.storage,
            shutdown_event,
            interval_seconds=config.storage.sweep_interval_seconds,
        ),
        name="fxgate-temp-cleanup",
    )

    await _warmup(app)
    logger.info(
        f"fxgate {config.server.version} ready on "
        f"http://{config.server.host}:{config.server.port} ({config.server.environment})"
    )

    yield  # Application runs here

    # Shutdown
    shutdown_event.set()
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    logger.info("Application shutdown complete")


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(FxError)
    async def fx_error_handler(request: Request, exc: FxError) -> JSONResponse:
        envelope = exc.to_response()
        headers = None
        if isinstance(exc, RateLimitExceeded):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=envelope["error"]["httpStatus"], content=envelope, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ())),
                "error": error.get("msg", ""),
                "code": error.get("type", ""),
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=error_response("VALIDATION_ERROR", "Request validation failed", details, 400),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            envelope = error_response(
                "NOT_FOUND",
                f"Route {request.url.path} not found",
                {"availableEndpoints": AVAILABLE_ENDPOINTS},
            )
        else:
            envelope = error_response("CUSTOM_ERROR", str(exc.detail), None, exc.status_code)
        return JSONResponse(status_code=exc.status_code, content=envelope, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        details = None
        if app.state.config.server.is_development:
            details = {"error": str(exc), "type": type(exc).__name__}
        return JSONResponse(
            status_code=500,
            content=error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred", details, 500),
        )


def create_app(config: Optional[AppConfig] = None, http_client: Optional[ApiClient] = None) -> FastAPI:
    """Build the FastAPI application and its shared services.

    Args:
        config: Configuration to use; defaults to :func:`get_config`.
        http_client: Outbound client for handlers; tests inject one backed
            by ``httpx.MockTransport``.
    """
    config = config or get_config()
    configure_response_metadata(config.server.version, config.server.environment)

    app = FastAPI(
        title="fxgate API",
        description="Function gateway: one dispatcher in front of many small utility functions",
        version=__version__,
        lifespan=lifespan,
    )

    storage = TempStorageManager.from_config(config.storage)
    http_client = http_client or ApiClient(
        timeout=config.http.timeout_seconds,
        max_retries=config.http.max_retries,
        retry_delay=config.http.retry_delay_seconds,
    )
    registry = FunctionRegistry(FunctionContext(config=config, storage=storage, http=http_client))

    app.state.config = config
    app.state.started_at = time.monotonic()
    app.state.storage = storage
    app.state.http_client = http_client
    app.state.registry = registry
    app.state.dispatcher = Dispatcher(
        registry=registry,
        environment=config.server.environment,
        max_batch=config.batch.max_requests,
        batch_concurrency=config.batch.concurrency,
    )
    app.state.rate_limiter = None
    if config.rate_limit.enabled:
        app.state.rate_limiter = FixedWindowRateLimiter(
            points=config.rate_limit.points,
            duration=config.rate_limit.duration_seconds,
            block_duration=config.rate_limit.block_seconds,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials="*" not in config.server.allowed_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        max_age=86400,
    )
    app.add_middleware(GZipMiddleware, minimum_size=100 * 1024)

    _register_exception_handlers(app)

    # Register all routers
    app.include_router(system_router)
    app.include_router(dispatch_router)
    app.include_router(storage_router)

    return app


app = create_app()
