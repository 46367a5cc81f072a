"""Shared test fixtures and configuration for backend tests.

Every app built here writes temp files under ``tmp_path`` and sends its
outbound HTTP through :class:`FakeUpstream`, so no test touches the
network.  Unmatched upstream URLs answer 503, which sends each handler
down its local fallback path.
"""
from typing import Any, Dict, Generator, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from fxgate.config import AppConfig
from fxgate.core.http import ApiClient
from fxgate.functions.base import FunctionContext
from fxgate.main import create_app
from fxgate.storage.service import TempStorageManager


class FakeUpstream:
    """``httpx.MockTransport`` handler with per-test canned responses.

    Routes are matched on ``scheme://host/path`` by longest prefix; the
    query string is ignored for matching but kept on recorded calls.
    """

    def __init__(self):
        self.routes: Dict[str, Tuple[int, Any, Optional[bytes], Optional[Dict[str, str]]]] = {}
        self.calls: List[httpx.Request] = []

    def add(
        self,
        url_prefix: str,
        json: Any = None,
        status: int = 200,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Answer *url_prefix* with *json*, or with raw *content* when given."""
        self.routes[url_prefix] = (status, json, content, headers)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        for prefix in sorted(self.routes, key=len, reverse=True):
            if url.startswith(prefix):
                status, payload, content, headers = self.routes[prefix]
                if content is not None:
                    return httpx.Response(status, content=content, headers=headers)
                return httpx.Response(status, json=payload, headers=headers)
        return httpx.Response(503, json={"error": "unavailable"})

    def called(self, url_prefix: str) -> List[httpx.Request]:
        return [call for call in self.calls if str(call.url).startswith(url_prefix)]


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def config(tmp_path) -> AppConfig:
    """Test configuration: temp dir under tmp_path, no retries, no warmup."""
    config = AppConfig()
    config.server.environment = "test"
    config.storage.temp_dir = str(tmp_path / "temp")
    config.http.max_retries = 0
    config.http.retry_delay_seconds = 0
    config.warmup = []
    return config


@pytest.fixture()
def http_client(upstream: FakeUpstream) -> ApiClient:
    return ApiClient(timeout=5, max_retries=0, retry_delay=0, transport=httpx.MockTransport(upstream))


@pytest.fixture()
def context(config: AppConfig, http_client: ApiClient) -> FunctionContext:
    """FunctionContext for calling handlers directly."""
    storage = TempStorageManager.from_config(config.storage)
    return FunctionContext(config=config, storage=storage, http=http_client)


@pytest.fixture()
def app(config: AppConfig, http_client: ApiClient):
    return create_app(config, http_client=http_client)


@pytest.fixture()
def api_client(app) -> Generator[TestClient, None, None]:
    """Provide a TestClient with the app lifespan running."""
    with TestClient(app) as client:
        yield client
