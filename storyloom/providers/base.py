"""
Uniform provider adapter contract and provider-error normalization.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from storyloom.common.errors import (
    ProviderError,
    ProviderInvalidResponse,
    ProviderRateLimited,
    ProviderServerError,
    ProviderTimeout,
    ProviderUnauthorized,
)

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    SPEECH = "speech"


@dataclass(frozen=True)
class TextRequest:
    """Chat-style request: style instructions, earlier turns, and the new user turn."""

    system: str
    user: str
    prior_turns: Sequence[dict[str, str]] = ()
    temperature: float = 0.7
    max_tokens: int | None = 2000


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    size: str | None = None
    seed: int | None = None
    negative_prompt: str | None = None


@dataclass(frozen=True)
class SpeechRequest:
    text: str
    voice: str


@dataclass(frozen=True)
class RawAsset:
    """
    Unprocessed provider output. Exactly one of ``text``, ``url``, or ``data`` is set.
    """

    capability: Capability
    provider: str
    text: str | None = None
    url: str | None = None
    data: bytes | None = None
    content_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def credential_digest(secret: str | None, *, fallback: str) -> str:
    """
    Stable, non-reversible identifier for a credential so chains can compare them.
    """
    if not secret:
        return f"unset:{fallback}"
    return hashlib.blake2b(secret.encode("utf-8"), digest_size=8).hexdigest()


def _status_from_exception(exc: BaseException) -> int | None:
    for attribute in ("status_code", "status", "http_status"):
        value = getattr(exc, attribute, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None) or getattr(response, "status", None)
    if isinstance(value, int):
        return value
    return None


def translate_provider_exception(
    exc: BaseException,
    *,
    provider: str,
    capability: Capability,
) -> ProviderError:
    """
    Map an arbitrary SDK/HTTP exception onto the normalized provider-error taxonomy.
    """
    if isinstance(exc, ProviderError):
        return exc

    message = str(exc) or exc.__class__.__name__
    status = _status_from_exception(exc)
    kwargs = {"provider": provider, "capability": capability.value, "status": status}

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) or status == 408:
        return ProviderTimeout(message, **kwargs)
    if status in (401, 403):
        return ProviderUnauthorized(message, **kwargs)
    if status == 429:
        return ProviderRateLimited(message, **kwargs)
    if status is not None and status >= 500:
        return ProviderServerError(message, **kwargs)
    if status is None and isinstance(exc, (ConnectionError, OSError)):
        return ProviderServerError(message, **kwargs)
    if status is None and "connection" in exc.__class__.__name__.lower():
        return ProviderServerError(message, **kwargs)
    return ProviderInvalidResponse(message, **kwargs)


class ProviderAdapter:
    """
    Base class for a single external generative provider.

    Subclasses implement :meth:`_call` for their one capability. :meth:`invoke` adds the
    hard timeout and error translation; adapters never retry and keep no per-call state.
    """

    capability: Capability = Capability.TEXT

    def __init__(self, *, name: str, timeout: float, credential_id: str) -> None:
        if timeout <= 0:
            raise ValueError("Provider timeout must be positive.")
        self._name = name
        self._timeout = timeout
        self._credential_id = credential_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def credential_id(self) -> str:
        return self._credential_id

    async def invoke(self, capability: Capability | str, request: Any) -> RawAsset:
        capability = Capability(capability)
        if capability is not self.capability:
            raise ValueError(
                f"Adapter '{self._name}' serves {self.capability.value}, not {capability.value}."
            )

        try:
            return await asyncio.wait_for(self._call(request), timeout=self._timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = translate_provider_exception(
                exc, provider=self._name, capability=self.capability
            )
            logger.debug("Provider %s failed: %s", self._name, error)
            raise error from exc

    async def _call(self, request: Any) -> RawAsset:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r})"
