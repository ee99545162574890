"""
Workers AI inference client.

Calls the Cloudflare REST endpoint

    POST {base_url}/{model_id}      (base_url = .../accounts/{account}/ai/run)

with either {"prompt": str} or {"messages": [...]} plus sampling options.
Workers AI models answer in a few different shapes; parse_output maps each
known shape onto WorkersAIResult and rejects anything else. All failures
surface as UpstreamError.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ai_gateway.errors import GatewayError, UpstreamError
from ai_gateway.http_resilience import HttpConfig, ResilientHttpClient
from ai_gateway.llm.base import to_upstream_error
from ai_gateway.llm.streaming import DONE_SENTINEL, STREAM_TRUNCATED

logger = logging.getLogger(__name__)

PROVIDER = "workers_ai"
CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"

ModelInput = str | list[dict[str, Any]]


@dataclass(frozen=True, slots=True)
class WorkersAIResult:
    text: str
    # Native tool calls: [{"name": str, "arguments": dict | str}]
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


class InferenceClient(Protocol):
    """What the Workers AI adapter and the complexity triage need."""

    async def run(
        self,
        model_id: str,
        model_input: ModelInput,
        options: dict[str, Any] | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> WorkersAIResult: ...

    async def infer(
        self,
        model_id: str,
        model_input: ModelInput,
        options: dict[str, Any] | None = None,
    ) -> str: ...

    def infer_stream(
        self,
        model_id: str,
        model_input: ModelInput,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]: ...

    async def close(self) -> None: ...


def parse_output(data: Any) -> WorkersAIResult:
    """
    Map a Workers AI reply onto WorkersAIResult.

    Known shapes:
      {"result": {...}, "success": bool, "errors": [...]}   REST envelope
      {"response": str | null, "tool_calls": [...]?}        chat / text models
      {"text": str}                                         legacy text models
    """
    if isinstance(data, dict) and "result" in data:
        if data.get("success") is False:
            errors = data.get("errors") or []
            message = errors[0].get("message") if errors else "request failed"
            raise UpstreamError(PROVIDER, str(message))
        data = data["result"]

    if not isinstance(data, dict):
        raise UpstreamError(PROVIDER, f"unexpected output type {type(data).__name__}")

    tool_calls = data.get("tool_calls") or []
    response = data.get("response")
    if isinstance(response, str) or tool_calls:
        return WorkersAIResult(text=response or "", tool_calls=list(tool_calls))
    if isinstance(data.get("text"), str):
        return WorkersAIResult(text=data["text"])

    raise UpstreamError(PROVIDER, f"unexpected output shape: keys={sorted(data)}")


def parse_stream_frame(payload: str) -> str:
    """
    Extract the text of one streamed frame.

    Frames are normally JSON objects with a `response` (or `text`) field.
    A payload that is not valid JSON is passed through as raw text.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Treating non-JSON Workers AI frame as raw text: %r", payload[:100])
        return payload

    if isinstance(data, dict):
        for key in ("response", "text"):
            if isinstance(data.get(key), str):
                return data[key]
        # Usage/metadata-only frames carry no text
        return ""
    if isinstance(data, str):
        return data
    return payload


class WorkersAIClient:
    """HTTP implementation of InferenceClient."""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        http: ResilientHttpClient | None = None,
        http_config: HttpConfig | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        base = base_url or f"{CLOUDFLARE_API}/accounts/{account_id}/ai/run"
        self.http = http or ResilientHttpClient(
            base,
            headers={"Authorization": f"Bearer {api_token}"},
            config=http_config,
            transport=transport,
        )

    @staticmethod
    def build_payload(
        model_input: ModelInput,
        options: dict[str, Any] | None,
        stream: bool,
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        if isinstance(model_input, str):
            payload: dict[str, Any] = {"prompt": model_input}
        else:
            payload = {"messages": model_input}
        payload.update({k: v for k, v in (options or {}).items() if v is not None})
        if tools:
            payload["tools"] = tools
        payload["stream"] = stream
        return payload

    async def run(
        self,
        model_id: str,
        model_input: ModelInput,
        options: dict[str, Any] | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> WorkersAIResult:
        payload = self.build_payload(model_input, options, stream=False, tools=tools)
        try:
            data = await self.http.post_json(f"/{model_id}", payload)
        except (httpx.HTTPError, ValueError) as e:
            raise to_upstream_error(PROVIDER, e) from e
        return parse_output(data)

    async def infer(
        self,
        model_id: str,
        model_input: ModelInput,
        options: dict[str, Any] | None = None,
    ) -> str:
        return (await self.run(model_id, model_input, options)).text

    async def infer_stream(
        self,
        model_id: str,
        model_input: ModelInput,
        options: dict[str, Any] | None = None,
    ) -> AsyncGenerator[str]:
        """
        Yield the text of each streamed frame, in arrival order.

        The body must end with `[DONE]`; one cut short raises UpstreamError.
        """
        payload = self.build_payload(model_input, options, stream=True)
        lines = self.http.stream_lines(f"/{model_id}", payload)
        try:
            async with contextlib.aclosing(lines):
                async for line in lines:
                    if line.startswith((":", "event:")):
                        continue
                    frame = line.removeprefix("data:").strip()
                    if not frame:
                        continue
                    if frame == DONE_SENTINEL:
                        return
                    yield parse_stream_frame(frame)
            raise UpstreamError(PROVIDER, STREAM_TRUNCATED)
        except GatewayError:
            raise
        except httpx.HTTPError as e:
            raise to_upstream_error(PROVIDER, e) from e

    async def close(self) -> None:
        await self.http.close()
