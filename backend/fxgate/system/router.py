"""Health and statistics endpoints."""
import platform
import resource
import sys
import time

from fastapi import APIRouter, Depends, Request

from fxgate.core.ratelimit import enforce_rate_limit
from fxgate.core.response import success_response, utc_now_iso

router = APIRouter(tags=["system"])


def _uptime(request: Request) -> float:
    return round(time.monotonic() - request.app.state.started_at, 3)


def _memory_mb() -> dict:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is bytes on macOS and kilobytes elsewhere
    scale = 1 if sys.platform == "darwin" else 1024
    return {
        "maxRss": round(usage.ru_maxrss * scale / 1024 / 1024, 1),
        "userTime": round(usage.ru_utime, 2),
        "systemTime": round(usage.ru_stime, 2),
    }


@router.get("/health")
async def health(request: Request) -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    server = request.app.state.config.server
    return {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "service": server.service_name,
        "version": server.version,
        "environment": server.environment,
        "uptime": _uptime(request),
    }


@router.get("/stats", dependencies=[Depends(enforce_rate_limit)])
async def stats(request: Request) -> dict:
    state = request.app.state
    config = state.config
    registry = state.registry
    usage = state.storage.get_storage_usage()

    return success_response(
        {
            "service": config.server.service_name,
            "version": config.server.version,
            "environment": config.server.environment,
            "uptime": _uptime(request),
            "memory": _memory_mb(),
            "functions": {
                "total": len(registry.specs()),
                "categories": len(registry.categories()),
                "cached": registry.cache_size,
                "calls": state.dispatcher.stats_snapshot(),
            },
            "storage": usage.to_dict(),
            "limits": {
                "rateLimit": config.rate_limit.points,
                "rateWindow": f"{config.rate_limit.duration_seconds} seconds",
                "blockDuration": f"{config.rate_limit.block_seconds} seconds",
                "maxFileSize": f"{config.storage.max_file_bytes // (1024 * 1024)}MB",
                "maxBatchSize": config.batch.max_requests,
            },
        },
        "Service statistics",
        {"timestamp": utc_now_iso(), "pythonVersion": platform.python_version()},
    )
