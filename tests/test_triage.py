import pytest
from fakes import FakeCache, FakeInference

from ai_gateway.errors import UpstreamError
from ai_gateway.models import Message
from ai_gateway.workers_ai.triage import DEFAULT_TTL_SECONDS, ComplexityTriage


def msgs(*contents):
    return [Message(role="user", content=c) for c in contents]


@pytest.mark.asyncio
async def test_second_classification_is_served_from_cache():
    inference = FakeInference(replies=["high"])
    triage = ComplexityTriage(inference, FakeCache())

    first = await triage.classify(msgs("Prove the Riemann hypothesis"))
    second = await triage.classify(msgs("Prove the Riemann hypothesis"))

    assert first == second == "high"
    assert len(inference.calls) == 1


@pytest.mark.asyncio
async def test_verdict_is_cached_for_a_week_under_content_hash():
    cache = FakeCache()
    triage = ComplexityTriage(FakeInference(replies=["low"]), cache)

    await triage.classify(msgs("hello", "there"))

    key = ComplexityTriage.cache_key("hello\nthere")
    assert key.startswith("complexity:")
    assert cache.data == {key: "low"}
    assert cache.ttls[key] == DEFAULT_TTL_SECONDS == 604800


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply,verdict",
    [
        ("high", "high"),
        ("HIGH.", "high"),
        ("This is a high complexity request", "high"),
        ("low", "low"),
        ("medium", "low"),
        ("", "low"),
    ],
)
async def test_reply_interpretation(reply, verdict):
    triage = ComplexityTriage(FakeInference(replies=[reply]), FakeCache())
    assert await triage.classify(msgs("anything")) == verdict


@pytest.mark.asyncio
async def test_inference_failure_returns_high_and_is_not_cached():
    cache = FakeCache()
    triage = ComplexityTriage(FakeInference(error=UpstreamError("workers_ai", "down")), cache)

    assert await triage.classify(msgs("hello")) == "high"
    assert cache.data == {}


@pytest.mark.asyncio
async def test_unexpected_inference_exception_returns_high():
    triage = ComplexityTriage(FakeInference(error=RuntimeError("socket closed")), FakeCache())
    assert await triage.classify(msgs("hello")) == "high"


@pytest.mark.asyncio
async def test_cache_read_failure_is_a_miss():
    inference = FakeInference(replies=["low"])
    triage = ComplexityTriage(inference, FakeCache(fail_get=True))

    assert await triage.classify(msgs("hi")) == "low"
    assert len(inference.calls) == 1


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_block_verdict():
    triage = ComplexityTriage(FakeInference(replies=["high"]), FakeCache(fail_put=True))
    assert await triage.classify(msgs("hi")) == "high"


@pytest.mark.asyncio
async def test_works_without_a_cache():
    inference = FakeInference(replies=["low"])
    triage = ComplexityTriage(inference, cache=None)

    assert await triage.classify(msgs("hi")) == "low"
    assert await triage.classify(msgs("hi")) == "low"
    assert len(inference.calls) == 2


@pytest.mark.asyncio
async def test_triage_prompt_uses_configured_model_and_few_tokens():
    inference = FakeInference(replies=["low"])
    triage = ComplexityTriage(inference, FakeCache(), model_id="@cf/meta/llama-3-8b-instruct")

    await triage.classify(msgs("what is 2+2?"))

    call = inference.calls[0]
    assert call["model"] == "@cf/meta/llama-3-8b-instruct"
    assert "what is 2+2?" in call["input"]
    assert call["options"]["temperature"] == 0
    assert call["options"]["max_tokens"] <= 10


@pytest.mark.asyncio
async def test_unrecognised_cached_value_is_reclassified():
    cache = FakeCache()
    key = ComplexityTriage.cache_key("hi")
    cache.data[key] = "garbage"
    inference = FakeInference(replies=["high"])

    assert await ComplexityTriage(inference, cache).classify(msgs("hi")) == "high"
    assert len(inference.calls) == 1
    assert cache.data[key] == "high"
