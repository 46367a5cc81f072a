"""Shared outbound HTTP client.

Function handlers never talk to httpx directly; they go through
:class:`ApiClient`, which applies the configured timeout and a bounded
retry with a fixed delay, and turns every terminal failure (transport
error, timeout, non-2xx status, undecodable JSON) into an
:class:`~fxgate.core.errors.UpstreamError`.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

import httpx

from fxgate.core.errors import UpstreamError

logger = logging.getLogger(__name__)

USER_AGENT = "fxgate/1.0 (+https://github.com/fxgate)"

_RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}
_CONTENT_DISPOSITION_NAME = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)


@dataclass
class DownloadedFile:
    content: bytes
    filename: str
    mime_type: str
    url: str

    @property
    def size(self) -> int:
        return len(self.content)


class ApiClient:
    """Thin async wrapper over :class:`httpx.AsyncClient`.

    Args:
        timeout: Default per-request timeout in seconds.
        max_retries: Extra attempts after the first failure.
        retry_delay: Fixed pause between attempts in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport

    def _client(self, timeout: Optional[float]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=timeout if timeout is not None else self.timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> httpx.Response:
        """Send a request, retrying transport errors and retryable statuses."""
        attempts = 1 + max(0, self.max_retries if retries is None else retries)
        last_error = UpstreamError(f"Request to {url} was not sent", url=url)

        async with self._client(timeout) as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = await client.request(
                        method, url, params=params, json=json, data=data, headers=headers
                    )
                except httpx.TimeoutException as exc:
                    last_error = UpstreamError(f"Request to {url} timed out", url=url, code="TIMEOUT")
                    logger.warning("Timeout calling %s (attempt %d/%d): %s", url, attempt, attempts, exc)
                except httpx.HTTPError as exc:
                    last_error = UpstreamError(f"Request to {url} failed: {exc}", url=url)
                    logger.warning("Error calling %s (attempt %d/%d): %s", url, attempt, attempts, exc)
                else:
                    if response.is_success:
                        return response
                    last_error = UpstreamError(
                        f"{url} responded with HTTP {response.status_code}",
                        url=url,
                        status=response.status_code,
                    )
                    if response.status_code not in _RETRYABLE_STATUS:
                        break
                    logger.warning(
                        "HTTP %d from %s (attempt %d/%d)", response.status_code, url, attempt, attempts
                    )

                if attempt < attempts and self.retry_delay > 0:
                    await asyncio.sleep(self.retry_delay)

        raise last_error

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        response = await self.request("GET", url, params=params, **kwargs)
        return self._decode(response, url)

    async def post_json(self, url: str, json: Any = None, **kwargs) -> Any:
        response = await self.request("POST", url, json=json, **kwargs)
        return self._decode(response, url)

    async def download(
        self,
        url: str,
        max_bytes: Optional[int] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> DownloadedFile:
        """Fetch *url* and work out a filename for it."""
        response = await self.request("GET", url, timeout=timeout, retries=retries)
        content = response.content
        if max_bytes is not None and len(content) > max_bytes:
            raise UpstreamError(
                f"Download from {url} exceeds {max_bytes} bytes", url=url, code="FILE_TOO_LARGE"
            )
        mime_type = response.headers.get("content-type", "application/octet-stream").split(";")[0].strip()
        return DownloadedFile(
            content=content,
            filename=extract_filename(url, response.headers.get("content-disposition")),
            mime_type=mime_type,
            url=str(response.url),
        )

    @staticmethod
    def _decode(response: httpx.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"Malformed JSON from {url}: {exc}", url=url, status=response.status_code)


def extract_filename(url: str, content_disposition: Optional[str] = None) -> str:
    """Filename from a Content-Disposition header, else from the URL path."""
    if content_disposition:
        match = _CONTENT_DISPOSITION_NAME.search(content_disposition)
        if match:
            return unquote(match.group(1)).strip()
    name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
    return name or "download"
