"""
Unified chat-completion models.

This module defines the OpenAI-style wire shapes every adapter consumes and
produces:

- Message / ChatRequest: the inbound request
- ChatResponse: the non-streaming reply (always exactly one choice)
- StreamChunk: one element of a streaming reply

All models are frozen pydantic v2 value objects built per request and
discarded once the response has been sent.
"""
from __future__ import annotations

import math
import time
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["system", "user", "assistant", "function", "tool"]
FinishReason = Literal[
    "stop", "length", "tool_calls", "content_filter", "function_call"
]


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def new_tool_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def unix_now() -> int:
    return int(time.time())


def approximate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token) for providers without counts."""
    return math.ceil(len(text) / 4)


# ---------- Messages ----------

class FunctionCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    arguments: str


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | None = None
    name: str | None = None
    function_call: FunctionCall | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    @model_validator(mode="after")
    def _content_or_call(self) -> Message:
        if self.content is None and not (self.tool_calls or self.function_call):
            raise ValueError(
                "content may only be null when the message carries a tool call"
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data.setdefault("content", None)
        return data


# ---------- Request ----------

class ToolFunction(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None


class ToolDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["function"] = "function"
    function: ToolFunction


class ResponseFormat(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    type: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    messages: list[Message] = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0, le=2)
    top_p: float | None = Field(default=None, ge=0, le=1)
    stream: bool = False
    max_tokens: int | None = Field(default=None, gt=0)
    stop: str | list[str] | None = None
    user: str | None = None
    tools: list[ToolDefinition] | None = None
    tool_choice: str | dict[str, Any] | None = None
    response_format: ResponseFormat | None = None

    @model_validator(mode="after")
    def _single_system_message(self) -> ChatRequest:
        if sum(1 for m in self.messages if m.role == "system") > 1:
            raise ValueError("at most one system message is allowed")
        return self

    @property
    def wants_json(self) -> bool:
        return (
            self.response_format is not None
            and self.response_format.type == "json_object"
        )

    @property
    def system_prompt(self) -> str | None:
        for m in self.messages:
            if m.role == "system":
                return m.content or None
        return None

    def conversation_text(self) -> str:
        """All message contents, newline-joined, in original order."""
        return "\n".join(m.content or "" for m in self.messages)


# ---------- Response ----------

class Usage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int, completion_tokens: int) -> Usage:
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    @classmethod
    def approximate(cls, prompt_text: str, completion_text: str) -> Usage:
        return cls.of(approximate_tokens(prompt_text), approximate_tokens(completion_text))


class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = 0
    message: Message
    finish_reason: FinishReason | None = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_completion_id)
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=unix_now)
    model: str
    choices: list[Choice]
    usage: Usage | None = None

    @classmethod
    def single(
        cls,
        model: str,
        message: Message,
        finish_reason: FinishReason | None,
        usage: Usage | None = None,
    ) -> ChatResponse:
        """Build a fresh response around one assistant message."""
        return cls(
            model=model,
            choices=[Choice(message=message, finish_reason=finish_reason)],
            usage=usage,
        )

    @property
    def message(self) -> Message:
        return self.choices[0].message

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude={"choices"}, exclude_none=True)
        data["choices"] = [
            {
                "index": c.index,
                "message": c.message.to_dict(),
                "finish_reason": c.finish_reason,
            }
            for c in self.choices
        ]
        return data


# ---------- Streaming ----------

class Delta(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["assistant"] | None = None
    content: str | None = None


class ChunkChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    finish_reason: FinishReason | None = None


class StreamChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int = Field(default_factory=unix_now)
    model: str
    choices: list[ChunkChoice]

    @property
    def content(self) -> str | None:
        return self.choices[0].delta.content

    @property
    def finish_reason(self) -> FinishReason | None:
        return self.choices[0].finish_reason

    @property
    def is_terminal(self) -> bool:
        return self.finish_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "object": self.object,
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": c.index,
                    "delta": c.delta.model_dump(exclude_none=True),
                    "finish_reason": c.finish_reason,
                }
                for c in self.choices
            ],
        }
