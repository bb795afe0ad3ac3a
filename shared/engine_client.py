"""
HTTP client for the automation engine's REST API.

``EngineClient`` is the narrow async contract the rest of flowtest depends on;
``HttpEngineClient`` implements it on top of ``httpx.AsyncClient``. Every
request takes a rate-limiter token first and then runs under the retry
executor, so transient failures (connection refused, timeouts, 5xx, 429) are
retried with backoff while permanent ones surface immediately.

Usage:
    client = HttpEngineClient(load_config())
    await client.connect()
    try:
        workflows = await client.get("/workflows")
    finally:
        await client.disconnect()
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx

from shared.config import FlowtestConfig
from shared.errors import ApiError, EngineConnectionError
from shared.logger import get_logger
from shared.rate_limiter import RateLimiter
from shared.retry import RetryExecutor, RetryPolicy

logger = get_logger(__name__)

Params = Optional[Dict[str, Any]]


@runtime_checkable
class EngineClient(Protocol):
    """Async REST contract consumed by the workflow manager and orchestrator."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def get(self, path: str, params: Params = None) -> Any: ...

    async def post(self, path: str, body: Any = None, params: Params = None) -> Any: ...

    async def put(self, path: str, body: Any = None, params: Params = None) -> Any: ...

    async def delete(self, path: str, params: Params = None) -> Any: ...

    def is_connected(self) -> bool: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return response.text or response.reason_phrase or f"HTTP {response.status_code}"


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpEngineClient:
    """``EngineClient`` backed by httpx with rate limiting and retries.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: FlowtestConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_executor: Optional[RetryExecutor] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self.rate_limiter = rate_limiter or RateLimiter(
            config.max_requests_per_minute,
            config.requests_interval,
            max_wait=config.rate_limit_max_wait,
        )
        self.retry_executor = retry_executor or RetryExecutor(policy or RetryPolicy.from_config(config))
        self._client: Optional[httpx.AsyncClient] = None

    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            headers={"Accept": "application/json", **self.config.auth_headers},
            timeout=self.config.timeout,
            transport=self._transport,
        )
        try:
            await self.get("/workflows")
        except Exception as e:
            await self.disconnect()
            if isinstance(e, EngineConnectionError):
                raise
            # Retries wrap the transport error; keep its classification
            cause = getattr(e, "last_error", e)
            raise EngineConnectionError(
                f"Unable to reach engine at {self.config.api_url}: {e}",
                {"api_url": self.config.api_url},
                code=getattr(cause, "code", None),
            ) from e
        logger.info(f"Connected to engine at {self.config.api_url}")

    async def disconnect(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()
        logger.debug("Disconnected from engine")

    async def get(self, path: str, params: Params = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, body: Any = None, params: Params = None) -> Any:
        return await self._request("POST", path, body=body, params=params)

    async def put(self, path: str, body: Any = None, params: Params = None) -> Any:
        return await self._request("PUT", path, body=body, params=params)

    async def delete(self, path: str, params: Params = None) -> Any:
        return await self._request("DELETE", path, params=params)

    async def _request(self, method: str, path: str, *, body: Any = None, params: Params = None) -> Any:
        if self._client is None:
            raise EngineConnectionError("client is not connected", {"path": path}, code="not_connected")

        await self.rate_limiter.acquire()
        return await self.retry_executor.run(lambda: self._send(method, path, body, params))

    async def _send(self, method: str, path: str, body: Any, params: Params) -> Any:
        assert self._client is not None
        logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(method, path, json=body, params=params)
        except httpx.ConnectError as e:
            raise EngineConnectionError(
                f"{method} {path}: {e}", {"path": path}, code="connection_refused"
            ) from e
        except httpx.TimeoutException as e:
            raise EngineConnectionError(f"{method} {path} timed out", {"path": path}, code="timeout") from e

        if not response.is_success:
            raise ApiError(
                response.status_code,
                response.reason_phrase,
                _error_message(response),
                {"method": method, "path": path},
            )
        return _decode(response)


__all__ = ["EngineClient", "HttpEngineClient"]
