"""Dispatcher: turns request envelopes into handler calls.

The dispatcher owns everything between the HTTP layer and a handler:
request id generation, envelope checks, registry lookup, error
conversion, execution metadata and per-function counters.  It never
raises for a bad request; every outcome is an ``(http_status, envelope)``
pair.
"""
import asyncio
import logging
import random
import string
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from fxgate.core.errors import FunctionNotFound, FxError, ValidationFailed
from fxgate.core.response import error_response, is_valid_response, success_response, utc_now_iso
from fxgate.functions.base import FunctionRequest
from fxgate.dispatch.registry import FunctionRegistry

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _random_base36(length: int = 9) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def new_request_id(prefix: str = "req") -> str:
    """``<prefix>_<epoch-ms>_<9 base36 chars>``"""
    return f"{prefix}_{int(time.time() * 1000)}_{_random_base36()}"


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


@dataclass
class ClientInfo:
    """Caller details merged into handler metadata."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    content_type: Optional[str] = None

    def as_metadata(self) -> Dict[str, Any]:
        return {"ip": self.ip, "userAgent": self.user_agent, "contentType": self.content_type}


@dataclass
class FunctionStats:
    calls: int = 0
    failures: int = 0
    total_time_ms: int = 0
    last_called: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calls": self.calls,
            "failures": self.failures,
            "totalTime": self.total_time_ms,
            "averageTime": round(self.total_time_ms / self.calls, 1) if self.calls else 0,
            "lastCalled": self.last_called,
        }


@dataclass
class Dispatcher:
    """Executes single and batched function calls.

    Attributes:
        registry: Where handlers are resolved.
        environment: Stack traces are only exposed in ``development``.
        max_batch: Sub-requests accepted per batch; extras are dropped.
        batch_concurrency: Sub-requests run concurrently per chunk.
    """
    registry: FunctionRegistry
    environment: str = "development"
    max_batch: int = 10
    batch_concurrency: int = 5
    stats: Dict[str, FunctionStats] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Single execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        body: Any,
        client: Optional[ClientInfo] = None,
        extra_metadata: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        """Run one request envelope and return ``(http_status, envelope)``."""
        started = time.perf_counter()
        request_id = request_id or new_request_id()
        client = client or ClientInfo()

        if not isinstance(body, dict):
            envelope = error_response("INVALID_REQUEST", "Request body must be a JSON object")
            return self._finish(envelope, request_id, started)

        category = body.get("category")
        function = body.get("function")
        logger.info("[%s] Execute request received: %s/%s", request_id, category, function)

        missing = [name for name in ("category", "function") if not body.get(name)]
        if missing:
            envelope = error_response(
                "MISSING_FIELDS",
                "Both category and function fields are required",
                {"missing": missing},
            )
            return self._finish(envelope, request_id, started)

        if not isinstance(category, str) or not isinstance(function, str):
            envelope = error_response(
                "INVALID_REQUEST", "category and function must be strings",
                {"category": category, "function": function},
            )
            return self._finish(envelope, request_id, started)

        data = body.get("data")
        metadata = body.get("metadata")
        if data is None:
            data = {}
        if metadata is None:
            metadata = {}
        if not isinstance(data, dict) or not isinstance(metadata, dict):
            envelope = error_response(
                "INVALID_REQUEST", "data and metadata must be JSON objects",
                {"category": category, "function": function},
            )
            return self._finish(envelope, request_id, started, category, function)

        try:
            handler, cache_hit = self.registry.get(category, function)
        except FunctionNotFound as exc:
            logger.info("[%s] Function not found: %s/%s", request_id, category, function)
            return self._finish(exc.to_response(), request_id, started, category, function)

        request = FunctionRequest(
            category=category,
            function=function,
            data=data,
            metadata={**metadata, **(extra_metadata or {}), **client.as_metadata()},
            request_id=request_id,
        )

        try:
            result = await handler.invoke(request)
        except ValidationFailed as exc:
            result = error_response("VALIDATION_FAILED", exc.message, exc.details)
        except FxError as exc:
            logger.warning("[%s] %s/%s failed: %s (%s)", request_id, category, function, exc.message, exc.code)
            result = exc.to_response()
        except Exception as exc:
            logger.exception("[%s] Execution failed for %s/%s", request_id, category, function)
            details: Dict[str, Any] = {"requestId": request_id, "executionTime": f"{_elapsed_ms(started)}ms"}
            if self.environment == "development":
                details["stack"] = traceback.format_exc()
            result = error_response("EXECUTION_ERROR", str(exc) or type(exc).__name__, details, 500)

        if not is_valid_response(result):
            logger.error("[%s] %s/%s returned an invalid response: %r", request_id, category, function, result)
            result = error_response(
                "INVALID_FUNCTION_RESPONSE",
                "Function returned invalid response format",
                {"category": category, "function": function},
                500,
            )

        status, envelope = self._finish(result, request_id, started, category, function, cache_hit)
        self._record(category, function, envelope)
        logger.info(
            "[%s] %s/%s finished in %s (success=%s)",
            request_id, category, function, envelope["metadata"]["executionTime"], envelope["success"],
        )
        return status, envelope

    def _finish(
        self,
        envelope: Dict[str, Any],
        request_id: str,
        started: float,
        category: Optional[str] = None,
        function: Optional[str] = None,
        cache_hit: Optional[bool] = None,
    ) -> Tuple[int, Dict[str, Any]]:
        meta = dict(envelope.get("metadata") or {})
        meta.update({
            "requestId": request_id,
            "executionTime": f"{_elapsed_ms(started)}ms",
            "timestamp": utc_now_iso(),
        })
        if category is not None:
            meta["category"] = category
            meta["function"] = function
        if cache_hit is not None:
            meta["cacheHit"] = cache_hit
        envelope["metadata"] = meta

        error = envelope.get("error") or {}
        status = error.get("httpStatus") or (500 if not envelope.get("success") else 200)
        return status, envelope

    def _record(self, category: str, function: str, envelope: Dict[str, Any]) -> None:
        stats = self.stats.setdefault(f"{category}:{function}", FunctionStats())
        stats.calls += 1
        if not envelope.get("success"):
            stats.failures += 1
        stats.total_time_ms += int(envelope["metadata"]["executionTime"].rstrip("ms"))
        stats.last_called = envelope["metadata"]["timestamp"]

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    async def execute_batch(self, body: Any, client: Optional[ClientInfo] = None) -> Tuple[int, Dict[str, Any]]:
        """Run up to ``max_batch`` sub-requests in chunks of ``batch_concurrency``."""
        started = time.perf_counter()
        batch_id = new_request_id("batch")

        if not isinstance(body, dict) or not isinstance(body.get("requests"), list):
            envelope = error_response("INVALID_BATCH_REQUEST", 'Request must contain a "requests" array')
            envelope["metadata"]["batchId"] = batch_id
            return 400, envelope

        requests = body["requests"]
        accepted = requests[: self.max_batch]
        dropped = len(requests) - len(accepted)
        if dropped:
            logger.warning("[%s] Batch truncated: %d of %d sub-requests dropped", batch_id, dropped, len(requests))

        results: List[Dict[str, Any]] = []
        for offset in range(0, len(accepted), self.batch_concurrency):
            chunk = accepted[offset: offset + self.batch_concurrency]
            results.extend(await asyncio.gather(*(
                self._run_batch_item(batch_id, offset + index, item, client)
                for index, item in enumerate(chunk)
            )))

        total_ms = _elapsed_ms(started)
        successful = sum(1 for item in results if item.get("success"))
        envelope = success_response(
            {
                "batchId": batch_id,
                "total": len(accepted),
                "successful": successful,
                "failed": len(results) - successful,
                "results": results,
            },
            "Batch execution completed",
            {
                "totalTime": f"{total_ms}ms",
                "averageTime": f"{round(total_ms / len(accepted)) if accepted else 0}ms",
                "concurrency": self.batch_concurrency,
                "dropped": dropped,
            },
        )
        logger.info("[%s] Batch of %d finished in %dms (%d ok)", batch_id, len(accepted), total_ms, successful)
        return 200, envelope

    async def _run_batch_item(
        self,
        batch_id: str,
        index: int,
        item: Any,
        client: Optional[ClientInfo],
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        if not isinstance(item, dict) or not item.get("category") or not item.get("function"):
            result = error_response("INVALID_REQUEST", "Missing category or function", {"requestIndex": index})
        else:
            _, result = await self.execute(
                item,
                client,
                extra_metadata={"batchId": batch_id, "requestIndex": index},
            )
        result["requestIndex"] = index
        result["executionTime"] = _elapsed_ms(started)
        return result

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats_snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {key: stats.to_dict() for key, stats in sorted(self.stats.items())}
