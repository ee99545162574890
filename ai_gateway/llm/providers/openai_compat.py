# ai_gateway/llm/providers/openai_compat.py
from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from typing import Any, get_args

from ai_gateway.errors import UpstreamError
from ai_gateway.llm.base import JSON, ProviderAdapter
from ai_gateway.llm.streaming import sse_payloads
from ai_gateway.models import (
    ChatRequest,
    ChatResponse,
    FinishReason,
    Message,
    Usage,
)

_FINISH_REASONS = set(get_args(FinishReason))


class OpenAICompatibleAdapter(ProviderAdapter):
    """
    Passthrough for OpenAI-style /chat/completions endpoints:
      • api.openai.com
      • any server speaking the same schema (set base_url)

    The request already is in the native shape, so translation is limited
    to re-stamping the reply with a fresh id and timestamp.
    """

    name = "openai"
    default_base_url = "https://api.openai.com/v1"

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def build_payload(self, request: ChatRequest, stream: bool) -> JSON:
        payload: JSON = request.model_dump(
            exclude_none=True, exclude={"messages", "stream"}
        )
        payload["model"] = self._upstream_model(request)
        payload["messages"] = [m.to_dict() for m in request.messages]
        if (max_tokens := self._max_tokens(request)) is not None:
            payload["max_tokens"] = max_tokens
        payload["stream"] = stream
        return payload

    def parse_response(self, request: ChatRequest, data: JSON) -> ChatResponse:
        choice = data["choices"][0]
        message = Message.model_validate({**choice["message"], "role": "assistant"})

        reason = choice.get("finish_reason")
        if reason is not None and reason not in _FINISH_REASONS:
            reason = "length"

        usage = data.get("usage")
        return ChatResponse.single(
            model=data.get("model") or request.model,
            message=message,
            finish_reason=reason,
            usage=Usage.model_validate(usage) if usage else None,
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        data = await self._client().post_json(
            "/chat/completions", self.build_payload(request, stream=False)
        )
        return self.parse_response(request, data)

    async def stream_text(self, request: ChatRequest) -> AsyncGenerator[str]:
        lines = self._client().stream_lines(
            "/chat/completions", self.build_payload(request, stream=True)
        )
        async for data in sse_payloads(lines, provider=self.name):
            event: dict[str, Any] = json.loads(data)
            if err := event.get("error"):
                message = err.get("message") if isinstance(err, dict) else str(err)
                raise UpstreamError(self.name, message or "stream error")
            for choice in event.get("choices") or []:
                text = (choice.get("delta") or {}).get("content")
                if text:
                    yield text
