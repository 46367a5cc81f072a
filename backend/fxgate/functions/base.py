"""FunctionHandler abstract interface.

Every callable function (``tools/qr``, ``fun/dice`` ...) is a subclass of
:class:`FunctionHandler`.  The dispatcher builds a :class:`FunctionRequest`,
the handler validates ``request.data`` against its ``schema`` and then
``run`` produces a response envelope.

Usage:
    from fxgate.functions.base import FunctionHandler

    class EchoHandler(FunctionHandler):
        category = "tools"
        name = "echo"
        schema = {"text": FieldSpec("string")}

        async def run(self, request):
            text = request.data["text"]
            return success_response({"text": text, "formatted": text})
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fxgate.config import AppConfig, ApiKeys
from fxgate.core.http import ApiClient
from fxgate.core.validation import Schema, describe_schema, validate_schema
from fxgate.storage.service import TempStorageManager


@dataclass
class FunctionRequest:
    """Input passed to a handler.

    Attributes:
        category: Function category (tools, fun, ...).
        function: Function name within the category.
        data: Handler-specific input, validated against the handler schema.
        metadata: Caller metadata merged with ip, userAgent and contentType.
        request_id: Dispatcher-assigned id used in log lines.
    """
    category: str
    function: str
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    request_id: str = ""

    @property
    def user_id(self) -> str:
        return str(self.data.get("userId") or self.metadata.get("userId") or "anonymous")


@dataclass
class FunctionContext:
    """Shared services handed to every handler instance."""
    config: AppConfig
    storage: TempStorageManager
    http: ApiClient

    @property
    def api_keys(self) -> ApiKeys:
        return self.config.secrets.api_keys

    @property
    def lookup_timeout(self) -> float:
        return self.config.http.lookup_timeout_seconds


class FunctionHandler(ABC):
    """Abstract base class for all function handlers.

    Subclasses set ``category``, ``name``, ``description`` and ``schema``
    and implement :meth:`run`.  Per-handler state (usage counters, link
    tables) lives on the instance, which the registry keeps for the
    lifetime of the cache entry.
    """

    category: str = ""
    name: str = ""
    description: str = ""
    schema: Schema = {}
    example: Dict[str, Any] = {}

    def __init__(self, context: FunctionContext):
        self.context = context

    async def invoke(self, request: FunctionRequest) -> Dict[str, Any]:
        """Validate ``request.data`` and run the handler.

        Raises:
            ValidationFailed: If the data does not match ``schema``.
        """
        validate_schema(request.data, self.schema)
        return await self.run(request)

    @abstractmethod
    async def run(self, request: FunctionRequest) -> Dict[str, Any]:
        """Produce a response envelope for an already validated request."""
        pass

    async def warmup(self) -> None:
        """Optional startup hook (pre-load fonts, prime caches ...)."""
        return None

    def describe(self, cached: Optional[bool] = None) -> Dict[str, Any]:
        info = {
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "schema": describe_schema(self.schema),
            "exampleUsage": {
                "endpoint": "/execute",
                "method": "POST",
                "requestBody": {
                    "category": self.category,
                    "function": self.name,
                    "data": dict(self.example),
                    "metadata": {},
                },
            },
        }
        if cached is not None:
            info["cacheStatus"] = "cached" if cached else "not cached"
        return info
