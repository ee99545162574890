# ai_gateway/llm/providers/workers_ai.py
"""
Workers AI adapter.

Unlike the other adapters this one chooses the concrete upstream model.
`@cf/...` ids are looked up in the capability registry; the generic
`workers-ai` entry point picks a model from the request's needs:

    tools requested      -> strongest tool-capable model
    JSON mode requested  -> strongest JSON-capable model
    otherwise            -> complexity triage: high -> powerful, low -> fast

Models without native function calling get the tools described in the
system prompt and must answer with {"tool": name, "arguments": {...}};
the reply is parsed back into a tool call. Tool calls and JSON extraction
only apply to non-streaming requests.
"""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, Iterable, Sequence
from typing import Any

from ai_gateway.llm.base import JSON, ProviderAdapter
from ai_gateway.llm.json_extract import decode_arguments, extract_json, parse_tool_call
from ai_gateway.llm.streaming import ChatStream, normalize_stream, single_chunk_stream
from ai_gateway.models import (
    ChatRequest,
    ChatResponse,
    FunctionCall,
    Message,
    ToolCall,
    ToolDefinition,
    Usage,
    new_tool_call_id,
)
from ai_gateway.workers_ai.inference import InferenceClient, ModelInput, WorkersAIResult
from ai_gateway.workers_ai.registry import (
    DEFAULT_REGISTRY,
    ModelCapability,
    ModelRegistry,
    generation_defaults,
)
from ai_gateway.workers_ai.triage import ComplexityTriage

logger = logging.getLogger(__name__)

GENERIC_MODEL = "workers-ai"
EXPLICIT_PREFIX = "@cf/"

JSON_INSTRUCTION = "Respond with valid JSON only. No explanations or markdown formatting."

_PROMPT_LABELS = {"system": "System", "user": "User", "assistant": "Assistant"}


def _call_as_text(m: Message) -> str:
    """Render an assistant tool call the way emulated models are asked to write it."""
    calls = [c.function for c in m.tool_calls or []]
    if m.function_call is not None:
        calls.append(m.function_call)
    rendered = []
    for c in calls:
        arguments = decode_arguments(c.arguments)
        # Non-JSON argument text is echoed verbatim
        rendered.append(json.dumps({
            "tool": c.name,
            "arguments": c.arguments if arguments is None else arguments,
        }))
    return "\n".join(rendered)


def to_workers_messages(
    messages: Sequence[Message], extra_system: Iterable[str] = ()
) -> list[dict[str, str]]:
    """
    Reduce unified messages to Workers AI's {role, content} list.

    The system prompt and any extra instructions are merged into a single
    leading system message. Tool results are fed back as user turns.
    """
    system_parts = [m.content for m in messages if m.role == "system" and m.content]
    system_parts.extend(extra_system)

    out: list[dict[str, str]] = []
    if system_parts:
        out.append({"role": "system", "content": "\n\n".join(system_parts)})

    for m in messages:
        if m.role == "system":
            continue
        if m.role in ("tool", "function"):
            out.append({"role": "user", "content": f"Tool result: {m.content or ''}"})
        elif m.content is None:
            out.append({"role": m.role, "content": _call_as_text(m)})
        else:
            out.append({"role": m.role, "content": m.content})
    return out


def flatten_prompt(messages: Sequence[dict[str, str]]) -> str:
    """Join messages as "Role: content" blocks for prompt-only models."""
    return "\n\n".join(
        f"{_PROMPT_LABELS.get(m['role'], m['role'].title())}: {m['content']}"
        for m in messages
    )


def tool_instructions(tools: Sequence[ToolDefinition]) -> str:
    lines = ["You can call the following tools:"]
    for tool in tools:
        fn = tool.function
        lines.append(f"- {fn.name}: {fn.description or 'no description'}")
        if fn.parameters:
            lines.append(f"  parameters (JSON Schema): {json.dumps(fn.parameters)}")
    lines.append("")
    lines.append(
        "To call a tool, reply with only a JSON object of the form "
        '{"tool": "<tool name>", "arguments": {...}} and nothing else. '
        "If no tool is needed, answer normally."
    )
    return "\n".join(lines)


def _native_tools(tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "name": t.function.name,
            "description": t.function.description or "",
            "parameters": t.function.parameters or {"type": "object", "properties": {}},
        }
        for t in tools
    ]


def _native_tool_calls(raw: list[dict[str, Any]]) -> list[ToolCall]:
    calls = []
    for call in raw:
        arguments = call.get("arguments", {})
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        calls.append(
            ToolCall(
                id=new_tool_call_id(),
                function=FunctionCall(name=call["name"], arguments=arguments),
            )
        )
    return calls


class WorkersAIAdapter(ProviderAdapter):
    """Cloudflare Workers AI with registry-driven model selection."""

    name = "workers_ai"

    def __init__(
        self,
        cfg: dict[str, Any],
        api_key: str,
        inference: InferenceClient,
        triage: ComplexityTriage,
        registry: ModelRegistry = DEFAULT_REGISTRY,
        **kwargs: Any,
    ):
        super().__init__(cfg, api_key, **kwargs)
        self.inference = inference
        self.triage = triage
        self.registry = registry

    def _base_url(self) -> str | None:
        # Transport lives in the inference client
        return None

    # ---------- model selection ----------
    async def select_model(self, request: ChatRequest, stream: bool) -> ModelCapability:
        if request.model.startswith(EXPLICIT_PREFIX):
            return self.registry.lookup(request.model)

        if request.tools:
            model = self.registry.best_fit(tools=True, streaming=stream)
            reason = "tools"
        elif request.wants_json:
            model = self.registry.best_fit(json=True, streaming=stream)
            reason = "json"
        else:
            verdict = await self.triage.classify(request.messages)
            tier = "powerful" if verdict == "high" else "fast"
            model = self.registry.best_fit(complexity=tier, streaming=stream)
            reason = f"triage={verdict}"

        logger.info("Workers AI selected %s (%s)", model.id, reason)
        return model

    # ---------- request building ----------
    def _emulates_tools(self, request: ChatRequest, model: ModelCapability) -> bool:
        return bool(request.tools) and not model.supports_tools

    def build_input(
        self, request: ChatRequest, model: ModelCapability, stream: bool = False
    ) -> ModelInput:
        extra: list[str] = []
        if not stream and self._emulates_tools(request, model):
            extra.append(tool_instructions(request.tools or []))
        if request.wants_json:
            extra.append(JSON_INSTRUCTION)

        messages = to_workers_messages(request.messages, extra)
        if model.input_format == "prompt":
            return flatten_prompt(messages)
        return messages

    def build_options(self, request: ChatRequest, model: ModelCapability) -> JSON:
        defaults = generation_defaults(model.id)
        return self._drop_none({
            "max_tokens": self._max_tokens(request) or defaults.max_tokens,
            "temperature": (
                request.temperature if request.temperature is not None
                else defaults.temperature
            ),
            "top_p": request.top_p,
        })

    # ---------- response mapping ----------
    def parse_result(
        self, request: ChatRequest, model: ModelCapability, result: WorkersAIResult
    ) -> ChatResponse:
        prompt_text = request.conversation_text()

        tool_calls: list[ToolCall] = []
        if result.tool_calls:
            tool_calls = _native_tool_calls(result.tool_calls)
        elif self._emulates_tools(request, model):
            if (call := parse_tool_call(result.text)) is not None:
                tool_calls = [call]
            else:
                logger.debug("No tool call found in %s reply", model.id)

        if tool_calls:
            # Emulated calls replace the JSON text; native calls may come with prose
            content = (result.text or None) if result.tool_calls else None
            return ChatResponse.single(
                model=model.id,
                message=Message(role="assistant", content=content, tool_calls=tool_calls),
                finish_reason="tool_calls",
                usage=Usage.approximate(prompt_text, result.text),
            )

        text = extract_json(result.text) if request.wants_json else result.text
        return ChatResponse.single(
            model=model.id,
            message=Message(role="assistant", content=text),
            finish_reason="stop",
            usage=Usage.approximate(prompt_text, text),
        )

    # ---------- calls ----------
    async def _complete_with(
        self, request: ChatRequest, model: ModelCapability
    ) -> ChatResponse:
        native = bool(request.tools) and model.supports_tools
        result = await self.inference.run(
            model.id,
            self.build_input(request, model),
            self.build_options(request, model),
            tools=_native_tools(request.tools or []) if native else None,
        )
        return self.parse_result(request, model, result)

    def _stream_with(
        self, request: ChatRequest, model: ModelCapability
    ) -> AsyncGenerator[str]:
        return self.inference.infer_stream(  # type: ignore[return-value]
            model.id,
            self.build_input(request, model, stream=True),
            self.build_options(request, model),
        )

    async def handle(
        self, request: ChatRequest, stream: bool
    ) -> ChatResponse | ChatStream:
        model = await self.select_model(request, stream)
        if not stream:
            return await self._mapped(self._complete_with(request, model))

        if not model.supports_streaming:
            logger.info("%s cannot stream; sending the full reply as one chunk", model.id)
            response = await self._mapped(self._complete_with(request, model))
            return single_chunk_stream(response.message.content or "", model=model.id)

        return normalize_stream(
            self._guarded(self._stream_with(request, model)),
            provider=self.name,
            model=model.id,
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        model = await self.select_model(request, stream=False)
        return await self._complete_with(request, model)

    async def stream_text(self, request: ChatRequest) -> AsyncGenerator[str]:
        model = await self.select_model(request, stream=True)
        async for text in self._stream_with(request, model):
            yield text

    async def close(self) -> None:
        await self.inference.close()
        if self.triage.cache is not None:
            await self.triage.cache.close()
