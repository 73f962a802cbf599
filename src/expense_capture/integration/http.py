import asyncio
from typing import Any

import httpx

from expense_capture.logger import get_logger

logger = get_logger(__name__)

RETRY_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryingHTTPAdapter:
    """
    Lazily-created shared ``httpx.AsyncClient`` plus a bounded retry loop with
    exponential backoff for transient failures.
    """

    log_tag = "HTTP"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry_limit: int = 3,
        backoff: float = 1.0,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._client_lock = asyncio.Lock()
        self.retry_limit = max(0, retry_limit)
        self.backoff = max(0.0, backoff)
        self.timeout = timeout

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            # Another task may have created it while we waited
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
            return client

    def _redact(self, url: str) -> str:
        return url

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        attempt = 0
        while True:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt >= self.retry_limit:
                    raise
                reason = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code not in RETRY_STATUS_CODES or attempt >= self.retry_limit:
                    return response
                reason = f"HTTP {response.status_code}"

            delay = self.backoff * (2 ** attempt)
            attempt += 1
            logger.warning(
                "[%s] %s %s failed (%s); retry %s/%s in %.1fs.",
                self.log_tag,
                method,
                self._redact(url),
                reason,
                attempt,
                self.retry_limit,
                delay,
            )
            await asyncio.sleep(delay)
