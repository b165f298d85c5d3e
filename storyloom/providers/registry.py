"""
Builds the per-capability fallback chains described by :class:`Settings`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from storyloom.common.config import Settings

from .base import Capability, ProviderAdapter
from .fallback import FallbackChain
from .health import ProviderHealth
from .image import LiteLLMImageAdapter, ReplicateImageAdapter
from .speech import LiteLLMSpeechAdapter
from .text import LiteLLMTextAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderChains:
    text: FallbackChain
    image: FallbackChain
    speech: FallbackChain | None = None


def build_image_adapter(entry: str, settings: Settings) -> ProviderAdapter | None:
    """
    Turn a ``backend:model`` entry into an adapter, or ``None`` when its credential is missing.
    """
    backend, separator, model = entry.partition(":")
    if not separator or not model:
        raise ValueError(f"Image provider entry '{entry}' must look like 'backend:model'.")

    backend = backend.strip().lower()
    if backend == "replicate":
        if not settings.replicate_api_token:
            logger.info("Skipping %s: no Replicate API token configured.", entry)
            return None
        return ReplicateImageAdapter(
            model_identifier=model.strip(),
            api_token=settings.replicate_api_token,
            timeout=settings.image_timeout,
        )
    if backend == "litellm":
        if not settings.image_api_key:
            logger.info("Skipping %s: no image API key configured.", entry)
            return None
        return LiteLLMImageAdapter(
            model=model.strip(),
            api_key=settings.image_api_key,
            timeout=settings.image_timeout,
        )
    raise ValueError(f"Unknown image backend '{backend}'. Use 'replicate' or 'litellm'.")


def build_provider_chains(
    settings: Settings,
    *,
    health: ProviderHealth | None = None,
) -> ProviderChains:
    text_adapters = [
        LiteLLMTextAdapter(model=model, api_key=settings.text_api_key, timeout=settings.text_timeout)
        for model in settings.text_models
    ]

    image_adapters = [
        adapter
        for adapter in (build_image_adapter(entry, settings) for entry in settings.image_providers)
        if adapter is not None
    ]
    if not image_adapters:
        logger.warning("No image providers are configured; every illustration will be a placeholder.")

    speech_chain = None
    if settings.speech_enabled:
        speech_chain = FallbackChain(
            Capability.SPEECH,
            [
                LiteLLMSpeechAdapter(
                    model=settings.speech_model,
                    api_key=settings.speech_api_key,
                    timeout=settings.speech_timeout,
                )
            ],
            health=health,
        )

    return ProviderChains(
        text=FallbackChain(Capability.TEXT, text_adapters, health=health),
        image=FallbackChain(Capability.IMAGE, image_adapters, health=health),
        speech=speech_chain,
    )
