# ai_gateway/llm/router.py
"""
Dispatch router: picks the provider adapter from the model string.

Routing is a literal prefix match, checked in a fixed order, first match
wins. There is no default provider; an unmatched model is rejected before
any upstream I/O.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ai_gateway.cache.kv_store import create_cache
from ai_gateway.config import Configuration
from ai_gateway.errors import UnsupportedModelError
from ai_gateway.llm.base import ProviderAdapter
from ai_gateway.llm.providers import (
    AnthropicAdapter,
    GeminiAdapter,
    OllamaAdapter,
    OpenAICompatibleAdapter,
    WorkersAIAdapter,
)
from ai_gateway.llm.streaming import ChatStream
from ai_gateway.models import ChatRequest, ChatResponse
from ai_gateway.workers_ai.inference import WorkersAIClient
from ai_gateway.workers_ai.triage import (
    DEFAULT_TRIAGE_MODEL,
    DEFAULT_TTL_SECONDS,
    ComplexityTriage,
)

logger = logging.getLogger(__name__)

# (prefix, provider) in priority order; an entry ending in "/" or "-" is a
# prefix, anything else must match exactly
PREFIX_ROUTES: tuple[tuple[str, str], ...] = (
    ("gpt-", "openai"),
    ("claude-", "anthropic"),
    ("gemini-", "gemini"),
    ("@cf/", "workers_ai"),
    ("workers-ai", "workers_ai"),
    ("ollama/", "ollama"),
)


def detect_provider(model: str) -> str | None:
    """Return the provider name for a model string, or None if unsupported."""
    for prefix, provider in PREFIX_ROUTES:
        if prefix.endswith(("/", "-")):
            if model.startswith(prefix):
                return provider
        elif model == prefix:
            return provider
    return None


class DispatchRouter:
    """
    Thin façade: choose adapter, forward the request.
    """

    def __init__(self, adapters: Mapping[str, ProviderAdapter]) -> None:
        self.adapters = dict(adapters)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def resolve(self, model: str) -> ProviderAdapter:
        provider = detect_provider(model)
        if provider is None or provider not in self.adapters:
            raise UnsupportedModelError(model)
        logger.debug("Routing %s to %s", model, provider)
        return self.adapters[provider]

    async def route(
        self, request: ChatRequest, stream: bool | None = None
    ) -> ChatResponse | ChatStream:
        """Dispatch a request; `stream` defaults to the request's own flag."""
        adapter = self.resolve(request.model)
        return await adapter.handle(request, request.stream if stream is None else stream)

    async def close(self) -> None:
        for adapter in self.adapters.values():
            await adapter.close()


def build_router(config: Configuration) -> DispatchRouter:
    """Create every adapter from configuration."""
    http_config = config.get_http_config()

    for name in ("openai", "anthropic", "gemini", "workers_ai"):
        if config.requires_api_key(name) and not config.get_api_key(name):
            logger.warning("No API key configured for %s; its requests will fail", name)

    def simple(cls: type[ProviderAdapter], name: str) -> ProviderAdapter:
        return cls(
            config.get_provider_config(name),
            config.get_api_key(name),
            http_config=http_config,
        )

    adapters: dict[str, ProviderAdapter] = {
        "openai": simple(OpenAICompatibleAdapter, "openai"),
        "anthropic": simple(AnthropicAdapter, "anthropic"),
        "gemini": simple(GeminiAdapter, "gemini"),
        "ollama": simple(OllamaAdapter, "ollama"),
        "workers_ai": _build_workers_ai(config, http_config),
    }
    return DispatchRouter(adapters)


def _build_workers_ai(config: Configuration, http_config: Any) -> WorkersAIAdapter:
    cfg = config.get_workers_ai_config()
    api_token = config.get_api_key("workers_ai")
    if not cfg.get("account_id"):
        logger.warning("No Cloudflare account id configured; Workers AI requests will fail")

    inference = WorkersAIClient(
        account_id=cfg.get("account_id", ""),
        api_token=api_token,
        http_config=http_config,
        base_url=cfg.get("base_url"),
    )
    triage = ComplexityTriage(
        inference,
        cache=create_cache(config.get_cache_config()),
        model_id=cfg.get("triage_model") or DEFAULT_TRIAGE_MODEL,
        ttl_seconds=int(cfg.get("triage_cache_ttl", DEFAULT_TTL_SECONDS)),
    )
    return WorkersAIAdapter(cfg, api_token, inference=inference, triage=triage)
