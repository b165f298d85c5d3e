from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from conftest import HTTPStatusError
from storyloom.common.errors import (
    ProviderInvalidResponse,
    ProviderRateLimited,
    ProviderServerError,
    ProviderTimeout,
    ProviderUnauthorized,
)
from storyloom.providers.base import (
    Capability,
    ImageRequest,
    ProviderAdapter,
    SpeechRequest,
    TextRequest,
    translate_provider_exception,
)
from storyloom.providers.image import LiteLLMImageAdapter, build_replicate_input, normalize_image_outputs
from storyloom.providers.speech import LiteLLMSpeechAdapter, resolve_voice
from storyloom.providers.text import LiteLLMTextAdapter


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (HTTPStatusError(401), ProviderUnauthorized),
        (HTTPStatusError(403), ProviderUnauthorized),
        (HTTPStatusError(429), ProviderRateLimited),
        (HTTPStatusError(408), ProviderTimeout),
        (HTTPStatusError(500), ProviderServerError),
        (HTTPStatusError(503), ProviderServerError),
        (ConnectionError("reset by peer"), ProviderServerError),
        (asyncio.TimeoutError(), ProviderTimeout),
        (HTTPStatusError(400), ProviderInvalidResponse),
        (KeyError("choices"), ProviderInvalidResponse),
    ],
)
def test_translate_provider_exception(exc, expected):
    error = translate_provider_exception(exc, provider="p", capability=Capability.TEXT)
    assert isinstance(error, expected)
    assert error.provider == "p"
    assert error.capability == "text"


class SlowAdapter(ProviderAdapter):
    capability = Capability.TEXT

    async def _call(self, request):
        await asyncio.sleep(1)


async def test_invoke_enforces_timeout():
    adapter = SlowAdapter(name="slow", timeout=0.01, credential_id="x")
    with pytest.raises(ProviderTimeout):
        await adapter.invoke(Capability.TEXT, TextRequest(system="s", user="u"))


async def test_invoke_rejects_other_capabilities():
    adapter = SlowAdapter(name="slow", timeout=1, credential_id="x")
    with pytest.raises(ValueError):
        await adapter.invoke("image", ImageRequest(prompt="p"))


async def test_text_adapter_builds_messages_and_returns_text():
    captured = {}

    async def fake_completion(**kwargs):
        captured.update(kwargs)
        return {"choices": [{"message": {"content": "TITLE: Luna\nPAGE 1: Hello"}}]}

    adapter = LiteLLMTextAdapter(model="gpt-4.1-mini", api_key="sk", completion_fn=fake_completion)
    request = TextRequest(
        system="Be gentle.",
        user="Write page two.",
        prior_turns=({"role": "assistant", "content": "Page one."},),
    )
    asset = await adapter.invoke(Capability.TEXT, request)

    assert asset.text.startswith("TITLE: Luna")
    assert [message["role"] for message in captured["messages"]] == ["system", "assistant", "user"]
    assert captured["api_key"] == "sk"


async def test_text_adapter_empty_response_is_invalid():
    async def empty_completion(**kwargs):
        return {"choices": [{"message": {"content": "  "}}]}

    adapter = LiteLLMTextAdapter(model="gpt-4.1-mini", completion_fn=empty_completion)
    with pytest.raises(ProviderInvalidResponse):
        await adapter.invoke(Capability.TEXT, TextRequest(system="s", user="u"))


async def test_text_adapter_reads_object_messages_and_rejects_malformed_responses():
    async def object_completion(**kwargs):
        return {"choices": [{"message": SimpleNamespace(content=" Once upon a time. ")}]}

    async def malformed_completion(**kwargs):
        return {"choices": []}

    adapter = LiteLLMTextAdapter(model="gpt-4.1-mini", completion_fn=object_completion)
    asset = await adapter.invoke(Capability.TEXT, TextRequest(system="s", user="u"))
    assert asset.text == "Once upon a time."
    assert asset.metadata == {"model": "gpt-4.1-mini"}

    broken = LiteLLMTextAdapter(model="gpt-4.1-mini", completion_fn=malformed_completion)
    with pytest.raises(ProviderInvalidResponse):
        await broken.invoke(Capability.TEXT, TextRequest(system="s", user="u"))


async def test_litellm_image_adapter_turns_base64_into_data_uri():
    async def fake_generate(**kwargs):
        return SimpleNamespace(data=[{"b64_json": "aGVsbG8="}])

    adapter = LiteLLMImageAdapter(model="dall-e-3", api_key="sk", generate_fn=fake_generate)
    asset = await adapter.invoke(Capability.IMAGE, ImageRequest(prompt="a whale"))

    assert asset.url == "data:image/png;base64,aGVsbG8="


async def test_litellm_image_adapter_without_data_is_invalid():
    async def fake_generate(**kwargs):
        return SimpleNamespace(data=[])

    adapter = LiteLLMImageAdapter(model="dall-e-3", api_key="sk", generate_fn=fake_generate)
    with pytest.raises(ProviderInvalidResponse):
        await adapter.invoke(Capability.IMAGE, ImageRequest(prompt="a whale"))


async def test_speech_adapter_maps_voice_and_returns_audio():
    captured = {}

    async def fake_speech(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(content=b"ID3audio")

    adapter = LiteLLMSpeechAdapter(model="openai/tts-1", api_key="sk", speech_fn=fake_speech)
    asset = await adapter.invoke(Capability.SPEECH, SpeechRequest(text="Hello Luna", voice="male"))

    assert asset.data == b"ID3audio"
    assert asset.content_type == "audio/mpeg"
    assert captured["voice"] == "echo"


def test_resolve_voice_defaults_and_passthrough():
    assert resolve_voice("female") == "nova"
    assert resolve_voice(None) == "nova"
    assert resolve_voice("alloy") == "alloy"


def test_replicate_input_carries_seed_and_rejects_unknown_models():
    payload = build_replicate_input("black-forest-labs/flux-schnell", ImageRequest(prompt="p", seed=7))
    assert payload["seed"] == 7
    assert payload["prompt"] == "p"
    with pytest.raises(ValueError):
        build_replicate_input("someone/unknown-model", ImageRequest(prompt="p"))


def test_normalize_image_outputs_handles_file_outputs_and_nesting():
    file_output = SimpleNamespace(url="https://replicate.delivery/a.png")
    assert normalize_image_outputs(file_output) == ["https://replicate.delivery/a.png"]
    assert normalize_image_outputs([["https://x/1.png"], "https://x/2.png"]) == [
        "https://x/1.png",
        "https://x/2.png",
    ]
    assert normalize_image_outputs(None) == []
