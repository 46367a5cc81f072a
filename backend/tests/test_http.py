"""Tests for ApiClient retry behaviour and filename extraction."""
import httpx
import pytest

from fxgate.core.errors import UpstreamError
from fxgate.core.http import ApiClient, extract_filename


def _client(upstream, max_retries: int = 2) -> ApiClient:
    return ApiClient(timeout=5, max_retries=max_retries, retry_delay=0, transport=httpx.MockTransport(upstream))


class TestRequest:
    @pytest.mark.asyncio
    async def test_retries_retryable_status(self, upstream):
        with pytest.raises(UpstreamError) as excinfo:
            await _client(upstream).get_json("https://api.example.com/down")
        assert excinfo.value.upstream_status == 503
        assert len(upstream.calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, upstream):
        upstream.add("https://api.example.com/missing", {"error": "nope"}, status=404)
        with pytest.raises(UpstreamError) as excinfo:
            await _client(upstream).get_json("https://api.example.com/missing")
        assert excinfo.value.upstream_status == 404
        assert len(upstream.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("retries", [0, -1, -5])
    async def test_negative_retries_still_send_once(self, upstream, retries):
        with pytest.raises(UpstreamError) as excinfo:
            await _client(upstream).get_json("https://api.example.com/down", retries=retries)
        assert excinfo.value.upstream_status == 503
        assert len(upstream.calls) == 1

    @pytest.mark.asyncio
    async def test_negative_configured_retries(self, upstream):
        upstream.add("https://api.example.com/ok", {"value": 1})
        assert await _client(upstream, max_retries=-3).get_json("https://api.example.com/ok") == {"value": 1}
        assert len(upstream.calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_json(self, upstream):
        upstream.add("https://api.example.com/text", content=b"<html>", headers={"content-type": "text/html"})
        with pytest.raises(UpstreamError) as excinfo:
            await _client(upstream).get_json("https://api.example.com/text")
        assert "Malformed JSON" in excinfo.value.message


def test_extract_filename():
    assert extract_filename("https://x.example.com/a/b.png?x=1") == "b.png"
    assert extract_filename("https://x.example.com/f", 'attachment; filename="pic one.jpg"') == "pic one.jpg"
