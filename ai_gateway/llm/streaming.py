"""
Streaming normalization.

Every adapter reduces its provider's native stream (SSE events, NDJSON
lines, SDK iterators) to an async iterator of text fragments. This module
turns that iterator into the unified StreamChunk sequence:

    chunk(text_1) ... chunk(text_n)  terminal(finish_reason="stop")

and encodes it as Server-Sent Events followed by `data: [DONE]`.

One fragment in, one chunk out: there is no batching and no reordering,
and the upstream is only read again after the consumer accepted the
previous chunk. A read failure after output has started ends the stream
with StreamAbortedError and no terminal chunk.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator

from ai_gateway.errors import GatewayError, StreamAbortedError, UpstreamError
from ai_gateway.models import ChunkChoice, Delta, StreamChunk, new_completion_id

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
STREAM_TRUNCATED = "stream ended before completion signal"

ChatStream = AsyncIterator[StreamChunk]


def make_chunk(completion_id: str, model: str, text: str) -> StreamChunk:
    return StreamChunk(
        id=completion_id,
        model=model,
        choices=[ChunkChoice(delta=Delta(content=text))],
    )


def terminal_chunk(completion_id: str, model: str) -> StreamChunk:
    return StreamChunk(
        id=completion_id,
        model=model,
        choices=[ChunkChoice(delta=Delta(), finish_reason="stop")],
    )


async def normalize_stream(
    fragments: AsyncIterator[str], *, provider: str, model: str
) -> AsyncGenerator[StreamChunk]:
    """
    Convert provider text fragments into StreamChunks.

    Empty fragments are skipped. An UpstreamError raised before the first
    chunk propagates unchanged (nothing has been sent yet); any failure
    after that becomes StreamAbortedError.
    """
    completion_id = new_completion_id()
    emitted = 0
    try:
        async for text in fragments:
            if not text:
                continue
            emitted += 1
            yield make_chunk(completion_id, model, text)
    except GatewayError as e:
        if emitted == 0 and isinstance(e, UpstreamError):
            raise
        message = e.message if isinstance(e, UpstreamError) else str(e)
        logger.error("%s stream aborted after %d chunks: %s", provider, emitted, message)
        raise StreamAbortedError(provider, message) from e
    except Exception as e:
        logger.error("%s stream aborted after %d chunks: %s", provider, emitted, e)
        raise StreamAbortedError(provider, str(e)) from e

    yield terminal_chunk(completion_id, model)


async def single_chunk_stream(
    text: str, *, model: str
) -> AsyncGenerator[StreamChunk]:
    """Stream an already-complete reply as one chunk plus the terminal chunk."""
    completion_id = new_completion_id()
    if text:
        yield make_chunk(completion_id, model, text)
    yield terminal_chunk(completion_id, model)


async def sse_payloads(
    lines: AsyncIterator[str], *, provider: str | None = None
) -> AsyncGenerator[str]:
    """
    Yield the payload of each `data:` line of an upstream SSE body.

    Stops at `[DONE]`; `event:`/comment lines and blank separators are
    skipped. The line source is closed on exit so its connection is released.
    When `provider` is given, a body that ends without `[DONE]` was cut
    short and raises UpstreamError.
    """
    async with contextlib.aclosing(lines):  # type: ignore[type-var]
        async for line in lines:
            if not line.startswith("data:"):
                continue
            data = line[5:].strip()
            if data == DONE_SENTINEL:
                return
            if data:
                yield data
    if provider is not None:
        raise UpstreamError(provider, STREAM_TRUNCATED)


def sse_event(data: str) -> str:
    return f"data: {data}\n\n"


async def encode_sse(chunks: ChatStream) -> AsyncGenerator[str]:
    """
    Encode a chunk stream as SSE events.

    `[DONE]` is only written once the chunk stream finished cleanly, so it
    always directly follows the terminal chunk.
    """
    async for chunk in chunks:
        yield sse_event(json.dumps(chunk.to_dict()))
    yield sse_event(DONE_SENTINEL)


async def collect_text(chunks: ChatStream) -> str:
    """Concatenate the content of every non-terminal chunk."""
    parts: list[str] = []
    async for chunk in chunks:
        if not chunk.is_terminal and chunk.content:
            parts.append(chunk.content)
    return "".join(parts)
