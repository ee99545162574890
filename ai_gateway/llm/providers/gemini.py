# ai_gateway/llm/providers/gemini.py
from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

import google.genai.types as genai_types
from google import genai
from google.genai import errors as genai_errors

from ai_gateway.errors import UpstreamError
from ai_gateway.llm.base import ProviderAdapter
from ai_gateway.models import ChatRequest, ChatResponse, Message, Usage

logger = logging.getLogger(__name__)


def _to_gemini_contents(msgs: list[Message]) -> list[genai_types.Content]:
    """System turns are dropped here; they go in system_instruction."""
    return [
        genai_types.Content(
            role="model" if m.role == "assistant" else "user",
            parts=[genai_types.Part(text=m.content or "")],
        )
        for m in msgs
        if m.role != "system"
    ]


class GeminiAdapter(ProviderAdapter):
    """
    Google Gemini via the google-genai SDK (async surface `client.aio`).

    The SDK client is created lazily so a gateway without a Google key can
    still start; it can also be injected for tests.
    """

    name = "gemini"
    upstream_exceptions = (*ProviderAdapter.upstream_exceptions, genai_errors.APIError)

    def __init__(
        self,
        cfg: dict[str, Any],
        api_key: str,
        client: genai.Client | None = None,
        **kwargs: Any,
    ):
        super().__init__(cfg, api_key, **kwargs)
        self._genai = client

    def _sdk(self) -> genai.Client:
        if self._genai is None:
            self._genai = genai.Client(api_key=self.api_key)
        return self._genai

    def build_config(self, request: ChatRequest) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            system_instruction=request.system_prompt,
            temperature=request.temperature,
            top_p=request.top_p,
            max_output_tokens=self._max_tokens(request),
            response_mime_type="application/json" if request.wants_json else None,
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        response = await self._sdk().aio.models.generate_content(
            model=self._upstream_model(request),
            contents=_to_gemini_contents(request.messages),
            config=self.build_config(request),
        )
        text = response.text or ""

        candidates = response.candidates or []
        reason = candidates[0].finish_reason if candidates else None

        meta = response.usage_metadata
        if meta is not None:
            usage = Usage.of(
                meta.prompt_token_count or 0, meta.candidates_token_count or 0
            )
        else:
            usage = Usage.approximate(request.conversation_text(), text)

        return ChatResponse.single(
            model=request.model,
            message=Message(role="assistant", content=text),
            finish_reason="stop" if reason == genai_types.FinishReason.STOP else "length",
            usage=usage,
        )

    async def stream_text(self, request: ChatRequest) -> AsyncGenerator[str]:
        stream = await self._sdk().aio.models.generate_content_stream(
            model=self._upstream_model(request),
            contents=_to_gemini_contents(request.messages),
            config=self.build_config(request),
        )
        async for chunk in stream:
            if chunk.text:
                yield chunk.text

    def _to_upstream_error(self, error: Exception) -> UpstreamError:
        if isinstance(error, genai_errors.APIError):
            logger.warning("gemini returned %s: %s", error.code, error.message)
            return UpstreamError(self.name, error.message or str(error), status=error.code)
        return super()._to_upstream_error(error)
