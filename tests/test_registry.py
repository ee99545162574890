import pytest

from ai_gateway.errors import UnknownModelError
from ai_gateway.workers_ai.registry import (
    DEFAULT_REGISTRY,
    ModelCapability,
    ModelRegistry,
    generation_defaults,
)


def cap(model_id, complexity, tools=False, json=False, streaming=True):
    return ModelCapability(
        id=model_id,
        name=model_id,
        supports_tools=tools,
        supports_json=json,
        supports_streaming=streaming,
        complexity=complexity,
        context_window=8192,
    )


def test_lookup_known_and_unknown():
    model = DEFAULT_REGISTRY.lookup("@cf/meta/llama-3-8b-instruct")
    assert model.supports_tools is False
    assert "@cf/meta/llama-3-8b-instruct" in DEFAULT_REGISTRY

    with pytest.raises(UnknownModelError):
        DEFAULT_REGISTRY.lookup("@cf/nobody/unknown-model")
    assert DEFAULT_REGISTRY.get("@cf/nobody/unknown-model") is None


def test_registry_must_not_be_empty():
    with pytest.raises(ValueError):
        ModelRegistry([])


def test_default_registry_shape():
    ids = [m.id for m in DEFAULT_REGISTRY]
    assert len(ids) == len(set(ids))
    assert all(i.startswith("@cf/") for i in ids)
    assert any(m.supports_tools for m in DEFAULT_REGISTRY)
    assert {m.complexity for m in DEFAULT_REGISTRY} == {"fast", "balanced", "powerful"}


def test_best_fit_tools_prefers_most_powerful():
    model = DEFAULT_REGISTRY.best_fit(tools=True)
    assert model.supports_tools
    assert model.complexity == "powerful"


def test_best_fit_complexity_targets():
    assert DEFAULT_REGISTRY.best_fit(complexity="fast").complexity == "fast"
    assert DEFAULT_REGISTRY.best_fit(complexity="powerful").complexity == "powerful"
    assert DEFAULT_REGISTRY.best_fit(complexity="balanced").complexity == "balanced"


def test_best_fit_relaxes_complexity_for_tools():
    registry = ModelRegistry([
        cap("big", "powerful"),
        cap("mid-tools", "balanced", tools=True),
        cap("small-tools", "fast", tools=True),
    ])
    model = registry.best_fit(tools=True, complexity="powerful")
    assert model.id == "mid-tools"


def test_best_fit_ignores_unmet_filter_but_keeps_met_ones():
    registry = ModelRegistry([
        cap("plain", "powerful"),
        cap("json-only", "fast", json=True),
    ])
    # No model has tools; the json filter still applies
    assert registry.best_fit(tools=True, json=True).id == "json-only"


def test_best_fit_falls_back_to_most_capable():
    registry = ModelRegistry([
        cap("small", "fast"),
        cap("big", "powerful"),
        cap("bigger", "powerful"),
    ])
    assert registry.best_fit(tools=True).id == "big"


def test_most_capable_without_powerful_models_is_first_entry():
    registry = ModelRegistry([cap("a", "fast"), cap("b", "balanced")])
    assert registry.most_capable().id == "a"
    assert registry.best_fit(tools=True, json=True).id == "a"


def test_best_fit_streaming_filter():
    registry = ModelRegistry([
        cap("no-stream", "powerful", streaming=False),
        cap("stream", "balanced"),
    ])
    assert registry.best_fit(streaming=True).id == "stream"
    assert registry.best_fit().id == "no-stream"


def test_best_fit_tie_prefers_stronger_then_table_order():
    registry = ModelRegistry([
        cap("fast-1", "fast"),
        cap("powerful-1", "powerful"),
        cap("powerful-2", "powerful"),
    ])
    # balanced is equidistant from fast and powerful; the stronger one wins
    assert registry.best_fit(complexity="balanced").id == "powerful-1"


@pytest.mark.parametrize(
    "model_id,temperature,max_tokens",
    [
        ("@cf/meta/llama-3.1-8b-instruct", 0.7, 1024),
        ("@cf/mistral/mistral-7b-instruct-v0.1", 0.7, 2048),
        ("@cf/qwen/qwen2.5-coder-32b-instruct", 0.7, 1024),
    ],
)
def test_generation_defaults(model_id, temperature, max_tokens):
    defaults = generation_defaults(model_id)
    assert (defaults.temperature, defaults.max_tokens) == (temperature, max_tokens)
