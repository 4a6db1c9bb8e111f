"""
HTTP Client Utilities

Lazily created httpx client used to download the DevTools proxy page.
Transient failures (timeouts, dropped connections) are retried with
exponential backoff; error statuses are raised immediately.

@.architecture
Incoming: core/proxy.py, app.py (shutdown) --- {str url, Dict[str, str] headers}
Processing: get(), get_text(), close(), get_http_client(), close_http_client() --- {3 jobs: http_client_management, request_retry, cleanup}
Outgoing: External web servers, core/proxy.py --- {httpx.Response, str body}
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass
class HTTPClientConfig:
    """Timeouts (seconds) and retry policy."""

    connect_timeout: float = 5.0
    timeout: float = 30.0
    max_attempts: int = 3
    retry_wait: float = 1.0
    retry_wait_max: float = 10.0
    user_agent: str = "devtools-bridge"


class HTTPClient:
    """
    Retrying GET client.

    The underlying httpx.AsyncClient is created on first use and recreated
    after close().
    """

    def __init__(
        self,
        config: Optional[HTTPClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Timeouts and retry policy (defaults if None)
            transport: httpx transport override, e.g. httpx.MockTransport
        """
        self.config = config or HTTPClientConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout, connect=self.config.connect_timeout),
                    headers={"User-Agent": self.config.user_agent},
                    follow_redirects=True,
                    transport=self._transport,
                )
            return self._client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(min=self.config.retry_wait, max=self.config.retry_wait_max),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        """
        GET a URL.

        Raises:
            httpx.HTTPStatusError: On a 4xx/5xx response
            httpx.TransportError: If every attempt failed
        """
        client = await self._ensure_client()
        async for attempt in self._retrying():
            with attempt:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
        return response

    async def get_text(self, url: str) -> str:
        """GET a URL and return the decoded body."""
        response = await self.get(url)
        return response.text

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None and not self._client.is_closed:
                await self._client.aclose()
            self._client = None


_global_http_client: Optional[HTTPClient] = None


def get_http_client(config: Optional[HTTPClientConfig] = None) -> HTTPClient:
    """Shared client for the process."""
    global _global_http_client
    if _global_http_client is None:
        _global_http_client = HTTPClient(config=config)
    return _global_http_client


async def close_http_client() -> None:
    global _global_http_client
    if _global_http_client is not None:
        await _global_http_client.close()
        _global_http_client = None
