import json

import httpx
import pytest
import uvicorn
from fakes import Recorder, ndjson_body
from fastapi.testclient import TestClient

from ai_gateway.errors import UpstreamError
from ai_gateway.llm.providers import OllamaAdapter
from ai_gateway.llm.router import DispatchRouter
from ai_gateway.llm.streaming import normalize_stream
from ai_gateway.models import ChatResponse, Message
from ai_gateway.server import create_app, run_server
from ai_gateway.workers_ai.registry import DEFAULT_REGISTRY


async def fragments(*parts, error=None):
    for part in parts:
        yield part
    if error is not None:
        raise error


class ScriptedAdapter:
    """Adapter double: replies with fixed text, or fails as instructed."""

    def __init__(self, name, parts=("Hello", " world"), error=None, error_after_output=False):
        self.name = name
        self.parts = parts
        self.error = error
        self.error_after_output = error_after_output
        self.requests = []
        self.closed = False

    async def handle(self, request, stream):
        self.requests.append(request)
        if stream:
            if self.error is not None and self.error_after_output:
                source = fragments(*self.parts, error=self.error)
            elif self.error is not None:
                source = fragments(error=self.error)
            else:
                source = fragments(*self.parts)
            return normalize_stream(source, provider=self.name, model=request.model)

        if self.error is not None:
            raise self.error
        return ChatResponse.single(
            model=request.model,
            message=Message(role="assistant", content="".join(self.parts)),
            finish_reason="stop",
        )

    async def close(self):
        self.closed = True


def make_client(**adapter_kwargs):
    adapter = ScriptedAdapter("openai", **adapter_kwargs)
    router = DispatchRouter({"openai": adapter})  # type: ignore[dict-item]
    return TestClient(create_app(router)), adapter


BODY = {"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}]}


def sse_data(text):
    return [
        line[len("data: "):]
        for line in text.split("\n")
        if line.startswith("data: ")
    ]


@pytest.mark.parametrize("path", ["/v1/chat/completions", "/api/v1/chat/completions"])
def test_chat_completion(path):
    client, adapter = make_client()

    response = client.post(path, json=BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["object"] == "chat.completion"
    assert data["choices"][0]["message"] == {"role": "assistant", "content": "Hello world"}
    assert data["choices"][0]["finish_reason"] == "stop"
    assert adapter.requests[0].model == "gpt-4"


def test_invalid_json_body():
    client, _ = make_client()
    response = client.post(
        "/v1/chat/completions", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"


@pytest.mark.parametrize(
    "body",
    [
        {"model": "gpt-4", "messages": []},
        {"messages": [{"role": "user", "content": "hi"}]},
        {"model": "gpt-4", "messages": [{"role": "robot", "content": "hi"}]},
        {"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}], "temperature": 3},
    ],
)
def test_invalid_request_is_rejected_before_routing(body):
    client, adapter = make_client()

    response = client.post("/v1/chat/completions", json=body)

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"
    assert adapter.requests == []


def test_unsupported_model():
    client, _ = make_client()
    response = client.post("/v1/chat/completions", json={**BODY, "model": "llama3"})

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "invalid_request_error"
    assert "llama3" in error["message"]


def test_upstream_error_is_bad_gateway():
    client, _ = make_client(error=UpstreamError("openai", "rate limited", status=429))

    response = client.post("/v1/chat/completions", json=BODY)

    assert response.status_code == 502
    assert response.json() == {
        "error": {"message": "rate limited", "type": "upstream_error", "provider": "openai"}
    }


def test_streaming_response():
    client, _ = make_client()

    response = client.post("/v1/chat/completions", json={**BODY, "stream": True})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    events = sse_data(response.text)
    assert events[-1] == "[DONE]"
    chunks = [json.loads(e) for e in events[:-1]]
    assert [c["choices"][0]["delta"].get("content") for c in chunks] == ["Hello", " world", None]
    assert chunks[-1]["choices"][0] == {"index": 0, "delta": {}, "finish_reason": "stop"}
    assert all(c["object"] == "chat.completion.chunk" for c in chunks)


def test_stream_failure_before_output_is_bad_gateway():
    client, _ = make_client(error=UpstreamError("openai", "unavailable", status=503))

    response = client.post("/v1/chat/completions", json={**BODY, "stream": True})

    assert response.status_code == 502
    assert response.json()["error"]["provider"] == "openai"


def test_stream_failure_after_output_ends_without_terminal():
    client, _ = make_client(
        parts=("partial",),
        error=UpstreamError("openai", "connection reset"),
        error_after_output=True,
    )

    response = client.post("/v1/chat/completions", json={**BODY, "stream": True})

    assert response.status_code == 200
    events = sse_data(response.text)
    assert "[DONE]" not in events
    chunks = [json.loads(e) for e in events]
    assert [c["choices"][0]["delta"].get("content") for c in chunks] == ["partial"]
    assert all(c["choices"][0]["finish_reason"] is None for c in chunks)


def test_service_endpoints():
    client, _ = make_client()

    assert client.get("/health").json() == {"status": "healthy"}

    root = client.get("/").json()
    assert root["name"] == "AI Gateway"
    assert "/v1/chat/completions" in root["endpoints"]["chat"]

    models = client.get("/v1/models/workers-ai").json()["data"]
    assert [m["id"] for m in models] == [m.id for m in DEFAULT_REGISTRY]
    assert {"supports_tools", "supports_json", "complexity", "context_window"} <= set(models[0])


def test_truncated_upstream_stream_never_reports_done():
    body = ndjson_body({"message": {"role": "assistant", "content": "Hel"}, "done": False})
    adapter = OllamaAdapter({}, "", transport=Recorder(httpx.Response(200, content=body)).transport())
    client = TestClient(create_app(DispatchRouter({"ollama": adapter})))

    response = client.post(
        "/v1/chat/completions", json={**BODY, "model": "ollama/llama3", "stream": True}
    )

    assert response.status_code == 200
    events = sse_data(response.text)
    assert "[DONE]" not in events
    chunks = [json.loads(e) for e in events]
    assert [c["choices"][0]["delta"].get("content") for c in chunks] == ["Hel"]
    assert all(c["choices"][0]["finish_reason"] is None for c in chunks)


@pytest.mark.asyncio
async def test_run_server_closes_router_on_shutdown(monkeypatch):
    served = []

    async def serve(self, sockets=None):
        served.append((self.config.host, self.config.port))

    monkeypatch.setattr(uvicorn.Server, "serve", serve)
    adapter = ScriptedAdapter("openai")

    await run_server(DispatchRouter({"openai": adapter}), {"host": "127.0.0.1", "port": 8123})

    assert served == [("127.0.0.1", 8123)]
    assert adapter.closed
