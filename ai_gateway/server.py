"""
HTTP server for the AI gateway.

This module is a thin layer between HTTP clients and the dispatch router:
it validates the body, routes it, and writes back either a JSON
chat.completion or an SSE stream of chat.completion.chunk events.

Errors use OpenAI's envelope: {"error": {"message", "type", "provider"?}}.
"""

import dataclasses
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ai_gateway import __version__
from ai_gateway.errors import (
    StreamAbortedError,
    UnknownModelError,
    UnsupportedModelError,
    UpstreamError,
)
from ai_gateway.llm.router import DispatchRouter
from ai_gateway.llm.streaming import ChatStream, encode_sse
from ai_gateway.models import ChatRequest, ChatResponse, StreamChunk
from ai_gateway.workers_ai.registry import DEFAULT_REGISTRY, ModelRegistry

logger = logging.getLogger(__name__)

CHAT_PATHS = ("/v1/chat/completions", "/api/v1/chat/completions")


def error_response(
    status: int, message: str, error_type: str, provider: str | None = None
) -> JSONResponse:
    error: dict[str, Any] = {"message": message, "type": error_type}
    if provider is not None:
        error["provider"] = provider
    return JSONResponse({"error": error}, status_code=status)


def _validation_message(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


async def _prepend(first: StreamChunk, rest: ChatStream) -> AsyncGenerator[StreamChunk]:
    yield first
    async for chunk in rest:
        yield chunk


async def _sse_body(chunks: ChatStream) -> AsyncGenerator[str]:
    """SSE body; an aborted stream just ends, without terminal chunk or [DONE]."""
    try:
        async for event in encode_sse(chunks):
            yield event
    except StreamAbortedError as e:
        logger.error("Closing stream without terminal chunk: %s", e)


def create_app(router: DispatchRouter, registry: ModelRegistry = DEFAULT_REGISTRY) -> FastAPI:
    """Create and configure the FastAPI app."""
    app = FastAPI(title="AI Gateway", version=__version__)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnsupportedModelError)
    @app.exception_handler(UnknownModelError)
    async def bad_model(_request: Request, exc: Exception) -> JSONResponse:
        return error_response(400, str(exc), "invalid_request_error")

    @app.exception_handler(UpstreamError)
    async def upstream_failed(_request: Request, exc: UpstreamError) -> JSONResponse:
        return error_response(502, exc.message, "upstream_error", exc.provider)

    @app.exception_handler(StreamAbortedError)
    async def stream_failed(_request: Request, exc: StreamAbortedError) -> JSONResponse:
        return error_response(502, exc.message, "upstream_error", exc.provider)

    async def chat_completions(request: Request):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return error_response(400, "Request body must be JSON", "invalid_request_error")

        try:
            chat_request = ChatRequest.model_validate(body)
        except ValidationError as e:
            return error_response(400, _validation_message(e), "invalid_request_error")

        result = await router.route(chat_request)
        if isinstance(result, ChatResponse):
            return JSONResponse(result.to_dict())

        # Pull the first chunk before committing to a 200, so failures that
        # happen before any output still map to an error status
        try:
            first = await anext(result)
        except StopAsyncIteration:
            return error_response(502, "empty stream", "upstream_error")

        return StreamingResponse(
            _sse_body(_prepend(first, result)),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    for path in CHAT_PATHS:
        app.add_api_route(path, chat_completions, methods=["POST"])

    @app.get("/")
    async def root():
        return {
            "name": "AI Gateway",
            "version": __version__,
            "endpoints": {
                "chat": list(CHAT_PATHS),
                "health": "/health",
                "workers_ai_models": "/v1/models/workers-ai",
            },
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/v1/models/workers-ai")
    async def workers_ai_models():
        return {"data": [dataclasses.asdict(m) for m in registry]}

    return app


async def run_server(router: DispatchRouter, server_config: dict[str, Any]) -> None:
    """Serve the gateway until shutdown, then release upstream connections."""
    app = create_app(router)

    host = server_config.get("host", "0.0.0.0")
    port = int(server_config.get("port", 8000))
    logger.info("Starting AI gateway on %s:%s", host, port)

    config = uvicorn.Config(app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    async with router:
        await server.serve()
