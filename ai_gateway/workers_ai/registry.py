"""
Workers AI model capability registry.

A static, read-only table describing what each Workers AI model supports.
It is built once at import time and shared by reference; extending it
means adding a row to DEFAULT_MODELS, the search logic does not change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Literal

from ai_gateway.errors import UnknownModelError

logger = logging.getLogger(__name__)

Complexity = Literal["fast", "balanced", "powerful"]
InputFormat = Literal["messages", "prompt"]

COMPLEXITY_RANK: dict[str, int] = {"fast": 0, "balanced": 1, "powerful": 2}


@dataclass(frozen=True, slots=True)
class ModelCapability:
    id: str
    name: str
    supports_tools: bool
    supports_json: bool
    supports_streaming: bool
    complexity: Complexity
    context_window: int
    input_format: InputFormat = "messages"

    @property
    def rank(self) -> int:
        return COMPLEXITY_RANK[self.complexity]


@dataclass(frozen=True, slots=True)
class GenerationDefaults:
    temperature: float
    max_tokens: int


def generation_defaults(model_id: str) -> GenerationDefaults:
    """Sampling defaults per model family, used when the caller omits them."""
    if "mistral" in model_id:
        return GenerationDefaults(temperature=0.7, max_tokens=2048)
    return GenerationDefaults(temperature=0.7, max_tokens=1024)


class ModelRegistry:
    """Lookup and best-fit search over an immutable set of models."""

    def __init__(self, models: Iterable[ModelCapability]):
        self._models = tuple(models)
        if not self._models:
            raise ValueError("ModelRegistry needs at least one model")
        self._by_id = {m.id: m for m in self._models}

    def __iter__(self) -> Iterator[ModelCapability]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._by_id

    def get(self, model_id: str) -> ModelCapability | None:
        return self._by_id.get(model_id)

    def lookup(self, model_id: str) -> ModelCapability:
        """Exact lookup; raises UnknownModelError for unregistered ids."""
        model = self.get(model_id)
        if model is None:
            raise UnknownModelError(model_id)
        return model

    def most_capable(self) -> ModelCapability:
        """First `powerful` model, or the first entry if none is powerful."""
        for m in self._models:
            if m.complexity == "powerful":
                return m
        return self._models[0]

    def best_fit(
        self,
        *,
        tools: bool = False,
        json: bool = False,
        streaming: bool = False,
        complexity: Complexity | None = None,
    ) -> ModelCapability:
        """
        Pick the best model for a set of requirements. Never raises.

        Capability filters (tools, json, streaming) are applied in that
        order; a filter that would leave no candidates is ignored. If none
        of the requested filters can be met, the most capable model is
        returned. Among the remaining candidates the model whose complexity
        is closest to the requested one wins (ties go to the stronger model);
        without a requested complexity the strongest candidate wins. Table
        order breaks any remaining tie.
        """
        filters: list[tuple[str, Callable[[ModelCapability], bool]]] = []
        if tools:
            filters.append(("tools", lambda m: m.supports_tools))
        if json:
            filters.append(("json", lambda m: m.supports_json))
        if streaming:
            filters.append(("streaming", lambda m: m.supports_streaming))

        candidates = list(self._models)
        met = 0
        for label, predicate in filters:
            narrowed = [m for m in candidates if predicate(m)]
            if narrowed:
                candidates = narrowed
                met += 1
            else:
                logger.info("No Workers AI model supports %s; relaxing", label)

        if filters and not met:
            return self.most_capable()

        if complexity is None:
            return max(candidates, key=lambda m: m.rank)

        target = COMPLEXITY_RANK[complexity]
        return min(candidates, key=lambda m: (abs(m.rank - target), -m.rank))


DEFAULT_MODELS: tuple[ModelCapability, ...] = (
    ModelCapability(
        id="@cf/meta/llama-3.3-70b-instruct-fp8-fast",
        name="Llama 3.3 70B Instruct (FP8, fast)",
        supports_tools=True,
        supports_json=True,
        supports_streaming=True,
        complexity="powerful",
        context_window=24000,
    ),
    ModelCapability(
        id="@cf/meta/llama-4-scout-17b-16e-instruct",
        name="Llama 4 Scout 17B 16E Instruct",
        supports_tools=True,
        supports_json=True,
        supports_streaming=True,
        complexity="powerful",
        context_window=131000,
    ),
    ModelCapability(
        id="@cf/mistralai/mistral-small-3.1-24b-instruct",
        name="Mistral Small 3.1 24B Instruct",
        supports_tools=True,
        supports_json=True,
        supports_streaming=True,
        complexity="balanced",
        context_window=128000,
    ),
    ModelCapability(
        id="@cf/qwen/qwen2.5-coder-32b-instruct",
        name="Qwen 2.5 Coder 32B Instruct",
        supports_tools=False,
        supports_json=True,
        supports_streaming=True,
        complexity="balanced",
        context_window=32768,
    ),
    ModelCapability(
        id="@cf/meta/llama-3.1-8b-instruct",
        name="Llama 3.1 8B Instruct",
        supports_tools=False,
        supports_json=True,
        supports_streaming=True,
        complexity="fast",
        context_window=7968,
    ),
    ModelCapability(
        id="@cf/meta/llama-3-8b-instruct",
        name="Llama 3 8B Instruct",
        supports_tools=False,
        supports_json=False,
        supports_streaming=True,
        complexity="fast",
        context_window=8192,
    ),
    ModelCapability(
        id="@cf/mistral/mistral-7b-instruct-v0.1",
        name="Mistral 7B Instruct v0.1",
        supports_tools=False,
        supports_json=False,
        supports_streaming=True,
        complexity="fast",
        context_window=2824,
        input_format="prompt",
    ),
)

DEFAULT_REGISTRY = ModelRegistry(DEFAULT_MODELS)
