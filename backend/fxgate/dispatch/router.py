"""FastAPI router for function execution and discovery."""
import hmac
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Request
from fastapi.responses import JSONResponse

from fxgate.core.errors import FunctionNotFound
from fxgate.core.ratelimit import client_key, enforce_rate_limit
from fxgate.core.response import error_response, success_response, utc_now_iso
from fxgate.dispatch.registry import FunctionRegistry
from fxgate.dispatch.service import ClientInfo, Dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["functions"], dependencies=[Depends(enforce_rate_limit)])


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def get_registry(request: Request) -> FunctionRegistry:
    return request.app.state.registry


def _client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=client_key(request),
        user_agent=request.headers.get("user-agent"),
        content_type=request.headers.get("content-type"),
    )


@router.post("/execute")
async def execute(request: Request, body: Any = Body(None)) -> JSONResponse:
    """Execute one function.

    Body: ``{category, function, data?, metadata?}``.  The response is the
    handler's envelope with execution metadata; the HTTP status follows
    ``error.httpStatus`` (200 on success).
    """
    status, envelope = await get_dispatcher(request).execute(body, _client_info(request))
    return JSONResponse(status_code=status, content=envelope)


@router.post("/batch")
async def batch(request: Request, body: Any = Body(None)) -> JSONResponse:
    """Execute up to 10 functions; body ``{requests: [...]}``."""
    status, envelope = await get_dispatcher(request).execute_batch(body, _client_info(request))
    return JSONResponse(status_code=status, content=envelope)


@router.get("/functions")
async def list_functions(request: Request) -> dict:
    registry = get_registry(request)
    return success_response(
        registry.list_available(),
        "Functions retrieved successfully",
        {"cacheSize": registry.cache_size, "lastUpdated": utc_now_iso()},
    )


@router.get("/functions/{category}/{function}")
async def describe_function(request: Request, category: str, function: str) -> dict:
    """Load a function and describe its input schema.

    Raises:
        FunctionNotFound 404: If the pair is not registered.
    """
    registry = get_registry(request)
    if not registry.exists(category, function):
        raise FunctionNotFound(category, function, registry.categories())
    was_cached = registry.is_cached(category, function)
    handler, _ = registry.get(category, function)
    return success_response(handler.describe(cached=was_cached), f"Function {function} info retrieved")


@router.delete("/cache")
async def clear_cache(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> JSONResponse:
    """Clear the loaded-function cache.

    When an admin token is configured the caller must send
    ``Authorization: Bearer <token>``; otherwise the endpoint is open.
    """
    admin_token = request.app.state.config.secrets.admin_token
    if admin_token:
        expected = f"Bearer {admin_token}"
        if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
            logger.warning("Rejected cache clear from %s", client_key(request))
            return JSONResponse(
                status_code=403,
                content=error_response("UNAUTHORIZED", "Admin token required", None, 403),
            )

    registry = get_registry(request)
    cleared = registry.clear_cache()
    return JSONResponse(
        status_code=200,
        content=success_response(
            {"cleared": cleared, "remaining": registry.cache_size},
            "Function cache cleared successfully",
            {"timestamp": utc_now_iso()},
        ),
    )
