# ai_gateway/llm/providers/ollama.py
from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from ai_gateway.errors import UpstreamError
from ai_gateway.llm.base import JSON, ProviderAdapter
from ai_gateway.llm.json_extract import decode_arguments
from ai_gateway.llm.streaming import STREAM_TRUNCATED
from ai_gateway.models import (
    ChatRequest,
    ChatResponse,
    FunctionCall,
    Message,
    ToolCall,
    Usage,
    new_tool_call_id,
)

logger = logging.getLogger(__name__)

MODEL_PREFIX = "ollama/"


def _tool_arguments(call: FunctionCall) -> dict[str, Any]:
    arguments = decode_arguments(call.arguments)
    if arguments is None:
        logger.warning("Tool call %s has non-JSON arguments; sending {}", call.name)
        return {}
    return arguments


def _to_ollama_msgs(msgs: list[Message]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for m in msgs:
        entry: dict[str, Any] = {"role": m.role, "content": m.content or ""}
        if m.tool_calls:
            entry["tool_calls"] = [
                {
                    "function": {
                        "name": c.function.name,
                        "arguments": _tool_arguments(c.function),
                    }
                }
                for c in m.tool_calls
            ]
        out.append(entry)
    return out


class OllamaAdapter(ProviderAdapter):
    """Local Ollama server over its native /api/chat endpoint."""

    name = "ollama"
    default_base_url = "http://localhost:11434"

    def _upstream_model(self, request: ChatRequest) -> str:
        return request.model.removeprefix(MODEL_PREFIX)

    def build_payload(self, request: ChatRequest, stream: bool) -> JSON:
        options = self._drop_none({
            "temperature": request.temperature,
            "top_p": request.top_p,
            "num_predict": self._max_tokens(request),
        })
        payload: JSON = {
            "model": self._upstream_model(request),
            "messages": _to_ollama_msgs(request.messages),
            "stream": stream,
            "options": options,
        }
        if request.tools:
            payload["tools"] = [t.model_dump(exclude_none=True) for t in request.tools]
        if request.wants_json:
            payload["format"] = "json"
        return payload

    def parse_response(self, request: ChatRequest, data: JSON) -> ChatResponse:
        native = data.get("message") or {}
        content = native.get("content") or ""

        tool_calls = [
            ToolCall(
                id=new_tool_call_id(),
                function=FunctionCall(
                    name=call["function"]["name"],
                    arguments=json.dumps(call["function"].get("arguments", {})),
                ),
            )
            for call in native.get("tool_calls") or []
        ]

        if "prompt_eval_count" in data or "eval_count" in data:
            usage = Usage.of(data.get("prompt_eval_count", 0), data.get("eval_count", 0))
        else:
            usage = Usage.approximate(request.conversation_text(), content)

        if tool_calls:
            finish = "tool_calls"
        else:
            finish = "stop" if data.get("done_reason", "stop") == "stop" else "length"

        return ChatResponse.single(
            model=request.model,
            message=Message(
                role="assistant",
                content=content or (None if tool_calls else ""),
                tool_calls=tool_calls or None,
            ),
            finish_reason=finish,
            usage=usage,
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        data = await self._client().post_json(
            "/api/chat", self.build_payload(request, stream=False)
        )
        return self.parse_response(request, data)

    async def stream_text(self, request: ChatRequest) -> AsyncGenerator[str]:
        lines = self._client().stream_lines(
            "/api/chat", self.build_payload(request, stream=True)
        )
        async with contextlib.aclosing(lines):
            async for line in lines:
                if not line.strip():
                    continue
                try:
                    frame = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON Ollama frame: %r", line[:100])
                    continue

                if err := frame.get("error"):
                    raise UpstreamError(self.name, str(err))
                text = (frame.get("message") or {}).get("content")
                if text:
                    yield text
                if frame.get("done"):
                    return
        raise UpstreamError(self.name, STREAM_TRUNCATED)
