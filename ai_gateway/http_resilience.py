"""
HTTP transport for the HTTP-based provider adapters.

Wraps a pooled httpx.AsyncClient with:
- Connection pooling and keep-alive
- Configurable timeouts and default headers
- Opt-in exponential backoff (off by default: max_retries = 0)

Retries only cover failures observed before a response body is consumed
(connection errors, timeouts, 429/5xx). A streamed body is never replayed
once a line has been handed to the caller.

This module knows nothing about LLM providers; adapters translate the
httpx exceptions it raises into gateway errors.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Any

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class HttpConfig(BaseModel):
    """Settings for the shared upstream transport."""

    timeout: float = 60.0
    max_keepalive_connections: int = 20
    max_connections: int = 100
    keepalive_expiry: float = 30.0

    # Retries stay off unless max_retries > 0
    max_retries: int = 0
    initial_retry_delay: float = 1.0
    max_retry_delay: float = 16.0
    retry_multiplier: float = 2.0
    retry_jitter: float = 0.1

    def backoff(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (1-based), jitter excluded."""
        raw = self.initial_retry_delay * self.retry_multiplier ** (attempt - 1)
        return min(raw, self.max_retry_delay)


def is_transient(error: Exception) -> bool:
    """Failures worth retrying: connection trouble, timeouts, 429 and 5xx."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS
    return isinstance(error, httpx.ConnectError | httpx.TimeoutException)


class ResilientHttpClient:
    """
    Pooled async HTTP client for one upstream base URL.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        config: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Upstream root; request paths are relative to it
            headers: Sent with every request (auth, API version)
            config: Transport settings, defaults to HttpConfig()
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.config = config or HttpConfig()

        cfg = self.config
        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(cfg.timeout),
            limits=httpx.Limits(
                max_connections=cfg.max_connections,
                max_keepalive_connections=cfg.max_keepalive_connections,
                keepalive_expiry=cfg.keepalive_expiry,
            ),
            transport=transport,
        )

    @property
    def attempts(self) -> int:
        return self.config.max_retries + 1

    async def _wait_before(self, attempt: int) -> None:
        """Back off before attempt `attempt` (0-based); the first attempt never waits."""
        if attempt == 0:
            return
        delay = self.config.backoff(attempt)
        # Spread concurrent retries by keying the jitter on the running task
        spread = (hash(asyncio.current_task()) % 100) / 50 - 1
        delay += delay * self.config.retry_jitter * spread
        logger.debug("Retrying in %.2fs (attempt %d/%d)", delay, attempt + 1, self.attempts)
        await asyncio.sleep(delay)

    async def request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, raising httpx errors for non-2xx statuses."""
        for attempt in range(self.attempts):
            await self._wait_before(attempt)
            try:
                response = await self.http.request(method, url, **kwargs)
                response.raise_for_status()
            except httpx.HTTPError as e:
                if attempt + 1 == self.attempts or not is_transient(e):
                    raise
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s",
                    method, url, attempt + 1, self.attempts, e,
                )
            else:
                return response
        raise AssertionError("unreachable")

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> Any:
        """POST a JSON payload and return the decoded JSON body."""
        response = await self.request_with_retry(
            "POST", url, json=payload, headers=headers
        )
        return response.json()

    async def stream_lines(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> AsyncGenerator[str]:
        """
        POST a JSON payload and yield the response body line by line.

        The next line is only read after the caller resumes the generator,
        so a slow consumer never causes unbounded buffering. Error bodies
        are read before raising so callers can report the upstream message.
        """
        for attempt in range(self.attempts):
            await self._wait_before(attempt)
            yielded = False
            try:
                async with self.http.stream(
                    "POST", url, json=payload, headers=headers
                ) as response:
                    if response.is_error:
                        await response.aread()
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        yielded = True
                        yield line
                return
            except httpx.HTTPError as e:
                # Once a line went out the request can no longer be replayed
                if yielded or attempt + 1 == self.attempts or not is_transient(e):
                    raise
                logger.warning(
                    "Streaming POST %s failed (attempt %d/%d): %s",
                    url, attempt + 1, self.attempts, e,
                )

    async def close(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> ResilientHttpClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def create_http_config_from_dict(config_dict: dict[str, Any]) -> HttpConfig:
    """Build HttpConfig from the optional `http` section of the app config."""
    return HttpConfig.model_validate(config_dict.get("http") or {})
