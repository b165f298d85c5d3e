"""
Image provider adapters for Replicate-hosted models and LiteLLM image endpoints.
"""

from __future__ import annotations

from collections.abc import Iterable as IterableABC
from typing import Any, Callable

import replicate
from litellm import aimage_generation

from storyloom.common.errors import ProviderInvalidResponse

from .base import Capability, ImageRequest, ProviderAdapter, RawAsset, credential_digest

_SIZE_TO_ASPECT = {
    "1024x1024": "1:1",
    "1792x1024": "16:9",
    "1024x1792": "9:16",
    "1536x1024": "3:2",
    "1024x1536": "2:3",
}


def _aspect_ratio(size: str | None) -> str:
    if not size:
        return "1:1"
    return _SIZE_TO_ASPECT.get(size.strip().lower(), "1:1")


def _build_flux_schnell_input(request: ImageRequest) -> dict[str, Any]:
    return {
        "prompt": request.prompt,
        "aspect_ratio": _aspect_ratio(request.size),
        "output_format": "png",
        "num_outputs": 1,
    }


def _build_flux_pro_input(request: ImageRequest) -> dict[str, Any]:
    return {
        "prompt": request.prompt,
        "aspect_ratio": _aspect_ratio(request.size),
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": True,
    }


def _build_sdxl_input(request: ImageRequest) -> dict[str, Any]:
    width, _, height = (request.size or "1024x1024").partition("x")
    payload: dict[str, Any] = {
        "prompt": request.prompt,
        "width": int(width or 1024),
        "height": int(height or 1024),
        "guidance_scale": 7.5,
    }
    if request.negative_prompt:
        payload["negative_prompt"] = request.negative_prompt
    return payload


_MODEL_INPUT_BUILDERS: dict[str, Callable[[ImageRequest], dict[str, Any]]] = {
    "black-forest-labs/flux-schnell": _build_flux_schnell_input,
    "black-forest-labs/flux-dev": _build_flux_schnell_input,
    "black-forest-labs/flux-1.1-pro": _build_flux_pro_input,
    "black-forest-labs/flux-kontext-pro": _build_flux_pro_input,
    "stability-ai/sdxl": _build_sdxl_input,
}


def build_replicate_input(model_identifier: str, request: ImageRequest) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(_MODEL_INPUT_BUILDERS))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    payload = builder(request)
    if request.seed is not None:
        payload["seed"] = request.seed
    return payload


def normalize_image_outputs(raw: Any) -> list[str]:
    """
    Normalize the image outputs returned by Replicate into a list of URL strings.
    """

    if raw is None:
        return []

    if isinstance(raw, str):
        return [raw]

    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="ignore")]

    # replicate.helpers.FileOutput iterates over its bytes, so prefer its URL.
    url = getattr(raw, "url", None)
    if isinstance(url, str):
        return [url]

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if not collected:
            return []

        if all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[str] = []
        for item in collected:
            if isinstance(item, str):
                normalized.append(item)
            elif isinstance(item, bytes):
                normalized.append(item.decode("utf-8", errors="ignore"))
            elif isinstance(getattr(item, "url", None), str):
                normalized.append(item.url)
            elif isinstance(item, IterableABC):
                normalized.extend(normalize_image_outputs(item))
            elif item is not None:
                normalized.append(str(item))
        return normalized

    return [str(raw)]


class ReplicateImageAdapter(ProviderAdapter):
    """
    Convenience wrapper around the Replicate client for storybook image generation.

    Parameters
    ----------
    model_identifier:
        Model string in the ``owner/model`` or ``owner/model:version`` format. Must be
        one of the models with a registered input builder.
    api_token:
        Replicate API token.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    capability = Capability.IMAGE

    def __init__(
        self,
        *,
        model_identifier: str,
        api_token: str | None = None,
        timeout: float = 120.0,
        client: replicate.Client | None = None,
    ) -> None:
        if not api_token and client is None:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )
        # Fail at construction time for models without an input builder.
        build_replicate_input(model_identifier, ImageRequest(prompt="probe"))

        super().__init__(
            name=f"replicate:{model_identifier}",
            timeout=timeout,
            credential_id=credential_digest(api_token, fallback="replicate"),
        )
        self._model_identifier = model_identifier
        self._client = client or replicate.Client(api_token=api_token)

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    async def _call(self, request: ImageRequest) -> RawAsset:
        replicate_input = build_replicate_input(self._model_identifier, request)
        output = await self._client.async_run(self._model_identifier, input=replicate_input)
        urls = [url for url in normalize_image_outputs(output) if url.strip()]
        if not urls:
            raise ProviderInvalidResponse(
                "Replicate returned no image outputs.",
                provider=self.name,
                capability=self.capability.value,
            )
        return RawAsset(
            capability=self.capability,
            provider=self.name,
            url=urls[0],
            metadata={"outputs": urls},
        )


class LiteLLMImageAdapter(ProviderAdapter):
    """
    OpenAI-compatible image generation routed through LiteLLM.
    """

    capability = Capability.IMAGE

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        timeout: float = 120.0,
        default_size: str = "1024x1024",
        generate_fn: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(
            name=f"litellm:{model}",
            timeout=timeout,
            credential_id=credential_digest(api_key, fallback=model.split("/", 1)[0]),
        )
        self._model = model
        self._api_key = api_key
        self._default_size = default_size
        self._generate_fn = generate_fn or aimage_generation

    async def _call(self, request: ImageRequest) -> RawAsset:
        response = await self._generate_fn(
            model=self._model,
            prompt=request.prompt,
            size=request.size or self._default_size,
            n=1,
            api_key=self._api_key,
        )

        try:
            item = response.data[0]
        except (AttributeError, IndexError, TypeError) as exc:
            raise ProviderInvalidResponse(
                "Image response did not contain any data.",
                provider=self.name,
                capability=self.capability.value,
            ) from exc

        url = _field(item, "url")
        if url:
            return RawAsset(capability=self.capability, provider=self.name, url=url)

        b64_json = _field(item, "b64_json")
        if b64_json:
            return RawAsset(
                capability=self.capability,
                provider=self.name,
                url=f"data:image/png;base64,{b64_json}",
                content_type="image/png",
            )

        raise ProviderInvalidResponse(
            "Image response contained neither a URL nor base64 data.",
            provider=self.name,
            capability=self.capability.value,
        )


def _field(item: Any, name: str) -> str | None:
    if isinstance(item, dict):
        value = item.get(name)
    else:
        value = getattr(item, name, None)
    return value if isinstance(value, str) and value else None
