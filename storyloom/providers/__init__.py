"""
Generative provider adapters and the fallback chains that sequence them.
"""

from .base import (
    Capability,
    ImageRequest,
    ProviderAdapter,
    RawAsset,
    SpeechRequest,
    TextRequest,
    translate_provider_exception,
)
from .fallback import ChainResult, FallbackChain
from .health import ProviderHealth, ProviderStatus
from .image import LiteLLMImageAdapter, ReplicateImageAdapter, normalize_image_outputs
from .prompting import IllustrationPrompt, build_illustration_prompt, derive_story_seed
from .registry import ProviderChains, build_provider_chains
from .speech import LiteLLMSpeechAdapter, resolve_voice
from .text import LiteLLMTextAdapter

__all__ = [
    "Capability",
    "ChainResult",
    "FallbackChain",
    "IllustrationPrompt",
    "ImageRequest",
    "LiteLLMImageAdapter",
    "LiteLLMSpeechAdapter",
    "LiteLLMTextAdapter",
    "ProviderAdapter",
    "ProviderChains",
    "ProviderHealth",
    "ProviderStatus",
    "RawAsset",
    "ReplicateImageAdapter",
    "SpeechRequest",
    "TextRequest",
    "build_illustration_prompt",
    "build_provider_chains",
    "derive_story_seed",
    "normalize_image_outputs",
    "resolve_voice",
    "translate_provider_exception",
]
