# ai_gateway/llm/base.py
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable
from typing import Any, TypeVar

import httpx

from ai_gateway.errors import GatewayError, UpstreamError
from ai_gateway.http_resilience import HttpConfig, ResilientHttpClient
from ai_gateway.llm.streaming import ChatStream, normalize_stream
from ai_gateway.models import ChatRequest, ChatResponse

JSON = dict[str, Any]
T = TypeVar("T")

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """
    Strategy interface for each upstream provider.

    Concrete adapters translate a ChatRequest into the provider's native
    call, and the native reply (or stream) back into the unified shape.
    Adapters hold configuration and a transport but no per-request state.
    """

    name: str = ""
    # Exceptions treated as upstream failures (transport errors, malformed replies)
    upstream_exceptions: tuple[type[Exception], ...] = (
        httpx.HTTPError,
        ValueError,
        LookupError,
    )

    # Adapters without an HTTP upstream leave this as None
    default_base_url: str | None = None

    def __init__(
        self,
        cfg: dict[str, Any],
        api_key: str,
        http: ResilientHttpClient | None = None,
        http_config: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cfg = cfg
        self.api_key = api_key     # each adapter decides which header to use
        if http is None and (base_url := self._base_url()):
            config = http_config or HttpConfig()
            if "timeout" in cfg:
                config = config.model_copy(update={"timeout": float(cfg["timeout"])})
            http = ResilientHttpClient(
                base_url, headers=self.headers(), config=config, transport=transport
            )
        self.http = http

    # ---------- helpers ----------
    def _base_url(self) -> str | None:
        return self.cfg.get("base_url") or self.default_base_url

    def headers(self) -> dict[str, str]:
        """Default headers for every upstream request."""
        return {}

    def _client(self) -> ResilientHttpClient:
        if self.http is None:
            raise RuntimeError(f"{self.name} adapter has no HTTP transport")
        return self.http

    def _max_tokens(self, request: ChatRequest) -> int | None:
        if request.max_tokens is not None:
            return request.max_tokens
        default = self.cfg.get("max_tokens")
        return int(default) if default is not None else None

    def _upstream_model(self, request: ChatRequest) -> str:
        """Model name sent upstream; adapters strip routing prefixes here."""
        return request.model

    @staticmethod
    def _drop_none(payload: JSON) -> JSON:
        return {k: v for k, v in payload.items() if v is not None}

    # ---------- interface ----------
    async def handle(
        self, request: ChatRequest, stream: bool
    ) -> ChatResponse | ChatStream:
        """Serve one request, returning a response or a chunk stream."""
        if stream:
            return normalize_stream(
                self._guarded(self.stream_text(request)),
                provider=self.name,
                model=request.model,
            )
        return await self._mapped(self.complete(request))

    @abstractmethod
    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Non-streaming call, normalized to a ChatResponse."""
        ...

    @abstractmethod
    def stream_text(self, request: ChatRequest) -> AsyncIterator[str]:
        """Streaming call, reduced to the provider's text fragments in order."""
        ...

    async def close(self) -> None:
        if self.http is not None:
            await self.http.close()

    # ---------- error mapping ----------
    async def _mapped(self, call: Awaitable[T]) -> T:
        try:
            return await call
        except GatewayError:
            raise
        except self.upstream_exceptions as e:
            raise self._to_upstream_error(e) from e

    async def _guarded(self, fragments: AsyncIterator[str]) -> AsyncGenerator[str]:
        try:
            async for text in fragments:
                yield text
        except GatewayError:
            raise
        except self.upstream_exceptions as e:
            raise self._to_upstream_error(e) from e

    def _to_upstream_error(self, error: Exception) -> UpstreamError:
        return to_upstream_error(self.name, error)


def to_upstream_error(provider: str, error: Exception) -> UpstreamError:
    """Map a transport exception (or malformed reply) onto UpstreamError."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        message = _error_message(error.response) or str(error)
        logger.warning("%s returned HTTP %d: %s", provider, status, message)
        return UpstreamError(provider, message, status=status)
    logger.warning("%s call failed: %s", provider, error)
    return UpstreamError(provider, str(error) or type(error).__name__)


def _error_message(response: httpx.Response) -> str | None:
    """Best-effort extraction of a provider's error message from a body."""
    try:
        data = response.json()
    except httpx.ResponseNotRead:
        return None
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text[:500] or None

    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str):
            return err
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", errors[0]))
    return None
