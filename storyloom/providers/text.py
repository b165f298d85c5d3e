"""
Text/chat provider adapter backed by LiteLLM.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from litellm import acompletion

from storyloom.common.errors import ProviderInvalidResponse

from .base import Capability, ProviderAdapter, RawAsset, TextRequest, credential_digest

CompletionCallable = Callable[..., Awaitable[Any]]


def completion_text(response: Any) -> str:
    """
    Pull the first choice's message content out of a chat completion response.

    LiteLLM returns ``ModelResponse`` objects that support both attribute and item access;
    plain dicts are accepted too.
    """
    try:
        choice = response["choices"][0]
        message = choice["message"]
        content = message["content"] if isinstance(message, dict) else message.content
    except (KeyError, IndexError, TypeError, AttributeError) as exc:
        raise ValueError("Chat completion response has no message content.") from exc
    return str(content or "").strip()


class LiteLLMTextAdapter(ProviderAdapter):
    """
    Sends a :class:`TextRequest` to any LiteLLM-compatible chat model.

    ``completion_fn`` defaults to :func:`litellm.acompletion` and receives the keyword
    arguments LiteLLM expects; tests substitute a coroutine returning a canned response.
    """

    capability = Capability.TEXT

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        timeout: float = 90.0,
        completion_fn: CompletionCallable | None = None,
        **completion_kwargs: Any,
    ) -> None:
        super().__init__(
            name=f"litellm:{model}",
            timeout=timeout,
            credential_id=credential_digest(api_key, fallback=model.split("/", 1)[0]),
        )
        self._model = model
        self._api_key = api_key
        self._completion_fn: CompletionCallable = completion_fn or acompletion
        self._completion_kwargs = completion_kwargs

    @property
    def model(self) -> str:
        return self._model

    def _payload(self, request: TextRequest) -> dict[str, Any]:
        messages = [{"role": "system", "content": request.system}]
        messages.extend(dict(turn) for turn in request.prior_turns)
        messages.append({"role": "user", "content": request.user})

        payload: dict[str, Any] = {"model": self._model, "messages": messages}
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if self._api_key is not None:
            payload["api_key"] = self._api_key
        payload.update(self._completion_kwargs)
        return payload

    async def _call(self, request: TextRequest) -> RawAsset:
        response = await self._completion_fn(**self._payload(request))

        try:
            text = completion_text(response)
        except ValueError as exc:
            raise ProviderInvalidResponse(
                str(exc), provider=self.name, capability=self.capability.value
            ) from exc

        if not text:
            raise ProviderInvalidResponse(
                "LLM response did not contain any text content.",
                provider=self.name,
                capability=self.capability.value,
            )

        return RawAsset(
            capability=self.capability,
            provider=self.name,
            text=text,
            metadata={"model": self._model},
        )
