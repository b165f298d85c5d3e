"""
Speech (text-to-speech) provider adapter backed by LiteLLM.
"""

from __future__ import annotations

from typing import Any, Callable

from litellm import aspeech

from storyloom.common.errors import ProviderInvalidResponse

from .base import Capability, ProviderAdapter, RawAsset, SpeechRequest, credential_digest

# Voice selections stored on a story map onto OpenAI-compatible voice names.
VOICE_NAMES = {
    "male": "echo",
    "female": "nova",
}


def resolve_voice(voice_type: str | None) -> str:
    if not voice_type:
        return VOICE_NAMES["female"]
    return VOICE_NAMES.get(voice_type.strip().lower(), voice_type)


class LiteLLMSpeechAdapter(ProviderAdapter):
    capability = Capability.SPEECH

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        response_format: str = "mp3",
        speech_fn: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(
            name=f"litellm:{model}",
            timeout=timeout,
            credential_id=credential_digest(api_key, fallback=model.split("/", 1)[0]),
        )
        self._model = model
        self._api_key = api_key
        self._response_format = response_format
        self._speech_fn = speech_fn or aspeech

    async def _call(self, request: SpeechRequest) -> RawAsset:
        if not request.text.strip():
            raise ValueError("Speech text must be a non-empty string.")

        response = await self._speech_fn(
            model=self._model,
            input=request.text,
            voice=resolve_voice(request.voice),
            response_format=self._response_format,
            api_key=self._api_key,
        )
        audio = getattr(response, "content", None)
        if isinstance(response, (bytes, bytearray)):
            audio = bytes(response)
        if not audio:
            raise ProviderInvalidResponse(
                "Speech response did not contain audio bytes.",
                provider=self.name,
                capability=self.capability.value,
            )
        return RawAsset(
            capability=self.capability,
            provider=self.name,
            data=bytes(audio),
            content_type=f"audio/{'mpeg' if self._response_format == 'mp3' else self._response_format}",
        )
