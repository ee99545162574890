"""
Error taxonomy for the gateway.

Input-shape errors (unsupported or unknown model) are raised before any
upstream I/O. Upstream errors carry the provider name so callers can tell
a gateway bug from a provider outage. Nothing here is retried.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for gateway errors."""


class UnsupportedModelError(GatewayError):
    """Raised when no adapter matches the requested model string."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Unsupported model: {model}")


class UnknownModelError(GatewayError):
    """Raised when an explicit Workers AI model id is not in the registry."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Unknown Workers AI model: {model}")


class UpstreamError(GatewayError):
    """Raised for any failure reported by (or while talking to) a provider."""

    def __init__(self, provider: str, message: str, status: int | None = None):
        self.provider = provider
        self.status = status
        self.message = message
        detail = f" (status {status})" if status is not None else ""
        super().__init__(f"{provider} upstream error{detail}: {message}")


class StreamAbortedError(GatewayError):
    """
    Raised when an upstream stream fails after chunks were already emitted.

    Emitted chunks are not retracted; the output stream simply ends without
    its terminal chunk.
    """

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider} stream aborted: {message}")
