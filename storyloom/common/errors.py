"""
Exception hierarchy shared by the storyloom providers, pipeline, and asset services.
"""

from __future__ import annotations

from typing import Sequence


class StoryloomError(Exception):
    """Base class for every error raised by storyloom."""


class ProviderError(StoryloomError):
    """
    Normalized failure of a single provider call.

    Attributes
    ----------
    kind:
        One of ``timeout``, ``unauthorized``, ``rate_limited``, ``server_error``,
        ``invalid_response``.
    provider:
        Name of the adapter that produced the error.
    status:
        HTTP status code reported by the provider, when known.
    """

    kind = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        capability: str = "",
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.capability = capability
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        if self.provider:
            return f"[{self.provider}:{self.kind}] {base}"
        return base


class ProviderTimeout(ProviderError):
    kind = "timeout"


class ProviderUnauthorized(ProviderError):
    kind = "unauthorized"


class ProviderRateLimited(ProviderError):
    kind = "rate_limited"


class ProviderServerError(ProviderError):
    kind = "server_error"


class ProviderInvalidResponse(ProviderError):
    kind = "invalid_response"


class AggregateError(StoryloomError):
    """
    Raised by a fallback chain when every adapter failed.

    ``errors`` keeps the sub-errors in the order the adapters were attempted and
    ``skipped`` lists adapters that were never called because they shared a
    rejected credential.
    """

    def __init__(
        self,
        capability: str,
        errors: Sequence[ProviderError],
        *,
        skipped: Sequence[str] = (),
    ) -> None:
        self.capability = capability
        self.errors = tuple(errors)
        self.skipped = tuple(skipped)
        summary = "; ".join(str(error) for error in self.errors) or "no adapters configured"
        super().__init__(f"All {capability} providers failed: {summary}")

    @property
    def unauthorized(self) -> bool:
        return any(isinstance(error, ProviderUnauthorized) for error in self.errors)


class PersistenceError(StoryloomError):
    """Storage upload or database write failed."""


class AssetFetchError(StoryloomError):
    """An asset could not be downloaded or decoded."""


class ParseError(StoryloomError):
    """Narrative text did not match the expected title/page layout."""


class GenerationFailed(StoryloomError):
    """
    User-visible pipeline failure. ``retryable`` signals that the caller may offer a
    "try again" action that restarts the pipeline from the beginning.
    """

    def __init__(self, message: str, *, stage: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.stage = stage
        self.retryable = retryable


class GenerationCancelled(StoryloomError):
    """The draft was cancelled; no record was persisted."""
