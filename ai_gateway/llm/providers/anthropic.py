# ai_gateway/llm/providers/anthropic.py
from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from ai_gateway.errors import UpstreamError
from ai_gateway.llm.base import JSON, ProviderAdapter
from ai_gateway.llm.json_extract import decode_arguments
from ai_gateway.llm.streaming import STREAM_TRUNCATED, sse_payloads
from ai_gateway.models import (
    ChatRequest,
    ChatResponse,
    FinishReason,
    FunctionCall,
    Message,
    ToolCall,
    ToolDefinition,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 1024

_STOP_MAP: dict[str, FinishReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
}


def _finish_reason(stop_reason: str | None) -> FinishReason:
    # Anything unrecognised (max_tokens, refusal, ...) is reported as length
    return _STOP_MAP.get(stop_reason or "", "length")


def _tool_input(call: FunctionCall) -> dict[str, Any]:
    arguments = decode_arguments(call.arguments)
    if arguments is None:
        logger.warning("Tool call %s has non-JSON arguments; sending {}", call.name)
        return {}
    return arguments


def _to_anthropic_msgs(msgs: list[Message]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for m in msgs:
        if m.role == "system":
            continue
        if m.role == "tool":
            # Tool results travel as tool_result blocks inside a user turn
            tool_result = {
                "type": "tool_result",
                "tool_use_id": m.tool_call_id,
                "content": m.content or "",
            }
            if out and out[-1]["role"] == "user":
                if isinstance(out[-1]["content"], list):
                    out[-1]["content"].append(tool_result)
                else:
                    out[-1]["content"] = [
                        {"type": "text", "text": out[-1]["content"]},
                        tool_result,
                    ]
            else:
                out.append({"role": "user", "content": [tool_result]})
        elif m.role == "assistant":
            content_blocks: list[dict[str, Any]] = []
            if m.content:
                content_blocks.append({"type": "text", "text": m.content})
            for call in m.tool_calls or []:
                content_blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.function.name,
                    "input": _tool_input(call.function),
                })
            if content_blocks and all(b["type"] == "text" for b in content_blocks):
                out.append({"role": "assistant", "content": m.content})
            else:
                out.append({"role": "assistant", "content": content_blocks})
        else:
            # user (and legacy function) turns are plain text
            out.append({"role": "user", "content": m.content or ""})
    return out


def _to_anthropic_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "name": t.function.name,
            "description": t.function.description or "",
            "input_schema": t.function.parameters or {"type": "object", "properties": {}},
        }
        for t in tools
    ]


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.cfg.get("anthropic_version", "2023-06-01"),
            "content-type": "application/json",
        }

    def build_payload(self, request: ChatRequest, stream: bool) -> JSON:
        payload: JSON = {
            "model": self._upstream_model(request),
            "messages": _to_anthropic_msgs(request.messages),
            # max_tokens is mandatory on the Messages API
            "max_tokens": self._max_tokens(request) or DEFAULT_MAX_TOKENS,
            "temperature": request.temperature,
            "top_p": request.top_p,
        }
        if sys_prompt := request.system_prompt:
            payload["system"] = sys_prompt
        if request.tools:
            payload["tools"] = _to_anthropic_tools(request.tools)
        if stream:
            payload["stream"] = True
        return self._drop_none(payload)

    def parse_response(self, request: ChatRequest, data: JSON) -> ChatResponse:
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        for item in data["content"]:
            if item["type"] == "text":
                text_parts.append(item["text"])
            elif item["type"] == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=item["id"],
                        function=FunctionCall(
                            name=item["name"],
                            arguments=json.dumps(item.get("input", {})),
                        ),
                    )
                )

        usage = data.get("usage", {})
        content = "".join(text_parts)
        return ChatResponse.single(
            model=request.model,
            message=Message(
                role="assistant",
                content=content if content or not tool_calls else None,
                tool_calls=tool_calls or None,
            ),
            finish_reason=_finish_reason(data.get("stop_reason")),
            usage=Usage.of(usage.get("input_tokens", 0), usage.get("output_tokens", 0)),
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        data = await self._client().post_json(
            "/messages", self.build_payload(request, stream=False)
        )
        return self.parse_response(request, data)

    async def stream_text(self, request: ChatRequest) -> AsyncGenerator[str]:
        lines = self._client().stream_lines(
            "/messages", self.build_payload(request, stream=True)
        )
        async with contextlib.aclosing(sse_payloads(lines)) as events:
            async for data in events:
                event: dict[str, Any] = json.loads(data)
                event_type = event.get("type")

                if event_type == "content_block_delta":
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield delta["text"]
                elif event_type == "error":
                    err = event.get("error", {})
                    raise UpstreamError(self.name, err.get("message", "stream error"))
                elif event_type == "message_stop":
                    return
        raise UpstreamError(self.name, STREAM_TRUNCATED)
