import asyncio
import json

import httpx
import pytest

from conftest import TEST_MODEL
from xat_api.errors import UpstreamFormatError, UpstreamUnavailable
from xat_api.utils.inference import InferenceClient


async def collect(client: InferenceClient, prompt: str, model: str | None = None) -> list[str]:
    return [fragment async for fragment in client.generate_stream(prompt, model)]


@pytest.fixture
def inference(test_config, transport) -> InferenceClient:
    return InferenceClient(test_config, transport=transport)


def test_generate_returns_trimmed_response(inference, fake_ollama):
    assert asyncio.run(inference.generate("Hi")) == "Hello there!"

    sent = fake_ollama.sent_bodies()
    assert sent == [{"model": TEST_MODEL, "prompt": "Hi", "stream": False}]
    assert str(fake_ollama.requests[0].url) == "http://ollama.test/api/generate"


def test_generate_uses_requested_model(inference, fake_ollama):
    asyncio.run(inference.generate("Hi", "llama3:8b"))
    assert fake_ollama.sent_bodies()[0]["model"] == "llama3:8b"


def test_generate_non_success_status_is_unavailable(inference, fake_ollama):
    fake_ollama.generate_status = 503
    fake_ollama.generate_body = {"error": "model is loading"}
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(inference.generate("Hi"))


def test_generate_connection_failure_is_unavailable(inference, fake_ollama):
    fake_ollama.raise_error = httpx.ConnectError("connection refused")
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(inference.generate("Hi"))


@pytest.mark.parametrize("body", ["not json at all", json.dumps({"done": True}), "[]"])
def test_generate_malformed_body_is_format_error(inference, fake_ollama, body):
    fake_ollama.generate_body = body
    with pytest.raises(UpstreamFormatError):
        asyncio.run(inference.generate("Hi"))


def test_stream_yields_fragments_in_order(inference, fake_ollama):
    assert asyncio.run(collect(inference, "Hi")) == ["Hel", "lo", "!"]
    assert fake_ollama.sent_bodies()[0]["stream"] is True


def test_stream_stops_at_done_marker(inference, fake_ollama):
    fake_ollama.stream_lines = [
        json.dumps({"response": "a", "done": False}),
        "",
        json.dumps({"response": "b", "done": True}),
        json.dumps({"response": "ignored", "done": False}),
    ]
    assert asyncio.run(collect(inference, "Hi")) == ["a", "b"]


def test_stream_without_done_marker_is_format_error(inference, fake_ollama):
    fake_ollama.stream_lines = [json.dumps({"response": "a", "done": False})]
    with pytest.raises(UpstreamFormatError):
        asyncio.run(collect(inference, "Hi"))


def test_stream_unparseable_chunk_is_format_error(inference, fake_ollama):
    fake_ollama.stream_lines = [json.dumps({"response": "a", "done": False}), "{broken"]
    with pytest.raises(UpstreamFormatError):
        asyncio.run(collect(inference, "Hi"))


def test_stream_error_object_is_unavailable(inference, fake_ollama):
    fake_ollama.stream_lines = [json.dumps({"error": "out of memory"})]
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(collect(inference, "Hi"))


def test_stream_connection_failure_is_unavailable(inference, fake_ollama):
    fake_ollama.raise_error = httpx.ConnectError("connection refused")
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(collect(inference, "Hi"))


def test_list_models_keeps_known_fields(inference):
    models = asyncio.run(inference.list_models())
    assert models[0] == {
        "name": TEST_MODEL,
        "modified_at": "2024-05-01T10:00:00Z",
        "size": 123456,
        "digest": "sha256:abc",
    }
    assert len(models) == 2


def test_list_models_failure_keeps_status(inference, fake_ollama):
    fake_ollama.tags_status = 500
    with pytest.raises(UpstreamUnavailable) as exc_info:
        asyncio.run(inference.list_models())
    assert exc_info.value.status_code == 500


def test_generate_timeout_is_unavailable(inference, fake_ollama):
    fake_ollama.raise_error = httpx.ReadTimeout("read timed out")
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(inference.generate("Hi"))


def test_stream_non_success_status_is_unavailable(inference, fake_ollama):
    fake_ollama.stream_status = 503
    fake_ollama.stream_lines = [json.dumps({"error": "model is loading"})]
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(collect(inference, "Hi"))


def test_stream_done_line_without_response_ends_cleanly(inference, fake_ollama):
    fake_ollama.stream_lines = [
        json.dumps({"response": "a", "done": False}),
        json.dumps({"done": True}),
    ]
    assert asyncio.run(collect(inference, "Hi")) == ["a"]


@pytest.mark.parametrize(
    "chunk",
    [
        {"response": 5, "done": False},
        {"response": ["a"], "done": False},
        {"done": False},
    ],
)
def test_stream_chunk_without_text_is_format_error(inference, fake_ollama, chunk):
    fake_ollama.stream_lines = [json.dumps(chunk), json.dumps({"done": True})]
    with pytest.raises(UpstreamFormatError):
        asyncio.run(collect(inference, "Hi"))


@pytest.mark.parametrize("models", ["nope", [1, 2], {"name": TEST_MODEL}])
def test_list_models_malformed_entries_is_format_error(inference, fake_ollama, models):
    fake_ollama.tags = {"models": models}
    with pytest.raises(UpstreamFormatError):
        asyncio.run(inference.list_models())
