"""
Complexity triage for generic Workers AI requests.

A small model classifies the conversation as "low" or "high" complexity so
the adapter can pick a fast or a powerful model. Verdicts are cached by
content hash for a week. Any failure (cache or inference) falls back to
"high": over-provisioning is preferred to under-serving.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Sequence
from typing import Literal

from ai_gateway.cache.kv_store import KeyValueCache
from ai_gateway.models import Message
from ai_gateway.workers_ai.inference import InferenceClient

logger = logging.getLogger(__name__)

Verdict = Literal["low", "high"]

CACHE_PREFIX = "complexity:"
DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_TRIAGE_MODEL = "@cf/meta/llama-3.1-8b-instruct"
# The tail of long conversations is enough to judge the request
MAX_PROMPT_CHARS = 4000

TRIAGE_PROMPT = """You are a request classifier. Decide how much reasoning the \
request below needs.

Answer "low" for greetings, short factual questions, simple rewrites or lookups.
Answer "high" for multi-step reasoning, code, maths, analysis or long-form writing.

Reply with exactly one word: low or high.

Request:
{content}

Answer:"""


class ComplexityTriage:
    def __init__(
        self,
        inference: InferenceClient,
        cache: KeyValueCache | None = None,
        model_id: str = DEFAULT_TRIAGE_MODEL,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ):
        self.inference = inference
        self.cache = cache
        self.model_id = model_id
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def content_of(messages: Sequence[Message]) -> str:
        return "\n".join(m.content or "" for m in messages)

    @staticmethod
    def cache_key(content: str) -> str:
        return CACHE_PREFIX + hashlib.sha256(content.encode()).hexdigest()

    async def classify(self, messages: Sequence[Message]) -> Verdict:
        """Return "low" or "high"; never raises."""
        content = self.content_of(messages)
        key = self.cache_key(content)

        cached = await self._cache_get(key)
        if cached in ("low", "high"):
            logger.debug("Triage cache hit: %s", cached)
            return cached  # type: ignore[return-value]

        try:
            answer = await self.inference.infer(
                self.model_id,
                TRIAGE_PROMPT.format(content=content[-MAX_PROMPT_CHARS:]),
                {"max_tokens": 5, "temperature": 0},
            )
        except Exception as e:
            logger.warning("Triage inference failed, assuming high complexity: %s", e)
            return "high"

        verdict: Verdict = "high" if "high" in answer.lower() else "low"
        await self._cache_put(key, verdict)
        logger.debug("Triage verdict: %s", verdict)
        return verdict

    async def _cache_get(self, key: str) -> str | None:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning("Triage cache read failed, treating as miss: %s", e)
            return None

    async def _cache_put(self, key: str, verdict: Verdict) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.put(key, verdict, self.ttl_seconds)
        except Exception as e:
            logger.warning("Triage cache write failed: %s", e)
