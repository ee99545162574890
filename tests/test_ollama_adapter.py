import json

import httpx
import pytest
from fakes import Recorder, chat_request, ndjson_body

from ai_gateway.errors import StreamAbortedError, UpstreamError
from ai_gateway.llm.providers import OllamaAdapter
from ai_gateway.llm.streaming import collect_text
from ai_gateway.models import ChatRequest


def make_adapter(recorder: Recorder, **cfg) -> OllamaAdapter:
    return OllamaAdapter(cfg, "", transport=recorder.transport())


@pytest.mark.asyncio
async def test_prefix_is_stripped_and_counts_passed_through():
    reply = {
        "model": "llama3",
        "message": {"role": "assistant", "content": "Hi there"},
        "done": True,
        "done_reason": "stop",
        "prompt_eval_count": 7,
        "eval_count": 3,
    }
    recorder = Recorder(httpx.Response(200, json=reply))

    response = await make_adapter(recorder).handle(
        chat_request("hello", model="ollama/llama3", temperature=0.1, max_tokens=64),
        stream=False,
    )

    sent = recorder.requests[0]
    assert sent.url == "http://localhost:11434/api/chat"
    payload = recorder.last_json
    assert payload["model"] == "llama3"
    assert payload["stream"] is False
    assert payload["options"] == {"temperature": 0.1, "num_predict": 64}
    assert "format" not in payload

    assert response.message.content == "Hi there"
    assert response.choices[0].finish_reason == "stop"
    assert response.usage.total_tokens == 10
    assert response.model == "ollama/llama3"


@pytest.mark.asyncio
async def test_usage_is_approximated_without_counts():
    reply = {"message": {"role": "assistant", "content": "abcdefgh"}, "done": True}
    recorder = Recorder(httpx.Response(200, json=reply))

    response = await make_adapter(recorder).handle(
        chat_request("abcd", model="ollama/llama3"), stream=False
    )

    assert response.usage.prompt_tokens == 1
    assert response.usage.completion_tokens == 2


@pytest.mark.asyncio
async def test_length_done_reason():
    reply = {"message": {"role": "assistant", "content": "cut"}, "done": True, "done_reason": "length"}
    response = await make_adapter(Recorder(httpx.Response(200, json=reply))).handle(
        chat_request(model="ollama/llama3"), stream=False
    )
    assert response.choices[0].finish_reason == "length"


@pytest.mark.asyncio
async def test_json_mode_and_tools():
    reply = {
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "lookup", "arguments": {"q": "x"}}}],
        },
        "done": True,
    }
    recorder = Recorder(httpx.Response(200, json=reply))
    request = chat_request(
        model="ollama/llama3",
        response_format={"type": "json_object"},
        tools=[{"type": "function", "function": {"name": "lookup"}}],
    )

    response = await make_adapter(recorder).handle(request, stream=False)

    payload = recorder.last_json
    assert payload["format"] == "json"
    assert payload["tools"] == [{"type": "function", "function": {"name": "lookup"}}]
    assert response.choices[0].finish_reason == "tool_calls"
    assert response.message.content is None
    assert json.loads(response.message.tool_calls[0].function.arguments) == {"q": "x"}


@pytest.mark.asyncio
async def test_ndjson_stream():
    body = ndjson_body(
        {"message": {"role": "assistant", "content": "Hel"}, "done": False},
        {"message": {"role": "assistant", "content": "lo"}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True, "eval_count": 2},
    )
    recorder = Recorder(httpx.Response(200, content=body))

    stream = await make_adapter(recorder).handle(chat_request(model="ollama/llama3"), stream=True)
    chunks = [c async for c in stream]

    assert [c.content for c in chunks] == ["Hel", "lo", None]
    assert chunks[-1].finish_reason == "stop"
    assert recorder.last_json["stream"] is True


@pytest.mark.asyncio
async def test_stream_error_frame_after_output_aborts():
    body = ndjson_body(
        {"message": {"content": "par"}, "done": False},
        {"error": "model crashed"},
    )
    stream = await make_adapter(Recorder(httpx.Response(200, content=body))).handle(
        chat_request(model="ollama/llama3"), stream=True
    )
    with pytest.raises(StreamAbortedError):
        await collect_text(stream)


@pytest.mark.asyncio
async def test_missing_model_is_upstream_error():
    recorder = Recorder(httpx.Response(404, json={"error": "model 'nope' not found"}))
    with pytest.raises(UpstreamError) as exc_info:
        await make_adapter(recorder).handle(chat_request(model="ollama/nope"), stream=False)
    assert exc_info.value.status == 404
    assert exc_info.value.message == "model 'nope' not found"


@pytest.mark.asyncio
async def test_base_url_from_config():
    recorder = Recorder(httpx.Response(200, json={"message": {"content": "x"}, "done": True}))
    await make_adapter(recorder, base_url="http://gpu-box:11434").handle(
        chat_request(model="ollama/llama3"), stream=False
    )
    assert recorder.requests[0].url == "http://gpu-box:11434/api/chat"


@pytest.mark.asyncio
async def test_stream_without_done_frame_aborts():
    body = ndjson_body({"message": {"role": "assistant", "content": "Hel"}, "done": False})
    stream = await make_adapter(Recorder(httpx.Response(200, content=body))).handle(
        chat_request(model="ollama/llama3"), stream=True
    )

    received = []
    with pytest.raises(StreamAbortedError) as exc_info:
        async for chunk in stream:
            received.append(chunk)
    assert [c.content for c in received] == ["Hel"]
    assert all(c.finish_reason is None for c in received)
    assert exc_info.value.provider == "ollama"


@pytest.mark.asyncio
async def test_non_json_tool_arguments_are_sent_as_empty_object(caplog):
    recorder = Recorder(
        httpx.Response(200, json={"message": {"content": "Sunny."}, "done": True})
    )
    request = ChatRequest.model_validate({
        "model": "ollama/llama3",
        "messages": [
            {"role": "user", "content": "weather?"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [{
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "lookup", "arguments": "q=weather"},
                }],
            },
        ],
    })

    with caplog.at_level("WARNING"):
        response = await make_adapter(recorder).handle(request, stream=False)

    assert response.message.content == "Sunny."
    assert recorder.last_json["messages"][1]["tool_calls"] == [
        {"function": {"name": "lookup", "arguments": {}}}
    ]
    assert "non-JSON arguments" in caplog.text
