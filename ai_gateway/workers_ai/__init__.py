"""
Workers AI Package

Everything specific to Cloudflare Workers AI:
- Model capability registry with best-fit search
- REST inference client
- Complexity triage used for generic `workers-ai` requests
"""

from __future__ import annotations

from .inference import InferenceClient, WorkersAIClient, WorkersAIResult
from .registry import DEFAULT_REGISTRY, ModelCapability, ModelRegistry
from .triage import ComplexityTriage

__all__ = [
    "DEFAULT_REGISTRY",
    "ComplexityTriage",
    "InferenceClient",
    "ModelCapability",
    "ModelRegistry",
    "WorkersAIClient",
    "WorkersAIResult",
]
