"""
Ordered fallback chains of interchangeable provider adapters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from storyloom.common.errors import AggregateError, ProviderError, ProviderUnauthorized

from .base import Capability, ProviderAdapter, RawAsset
from .health import ProviderHealth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainResult:
    """Successful chain execution plus the errors of the adapters tried before it."""

    asset: RawAsset
    provider: str
    errors: tuple[ProviderError, ...] = ()


class FallbackChain:
    """
    Tries each adapter strictly in order until one succeeds.

    Success short-circuits; adapters are never raced. An ``Unauthorized`` failure ends
    the chain early when every remaining adapter uses the same credential, since they
    would be rejected the same way.
    """

    def __init__(
        self,
        capability: Capability | str,
        adapters: Sequence[ProviderAdapter],
        *,
        health: ProviderHealth | None = None,
    ) -> None:
        self._capability = Capability(capability)
        for adapter in adapters:
            if adapter.capability is not self._capability:
                raise ValueError(
                    f"Adapter '{adapter.name}' serves {adapter.capability.value}; "
                    f"chain expects {self._capability.value}."
                )
        self._adapters = tuple(adapters)
        self._health = health

    @property
    def capability(self) -> Capability:
        return self._capability

    @property
    def adapters(self) -> tuple[ProviderAdapter, ...]:
        return self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    def __bool__(self) -> bool:
        return bool(self._adapters)

    async def execute(self, request: Any) -> ChainResult:
        errors: list[ProviderError] = []
        skipped: list[str] = []

        for position, adapter in enumerate(self._adapters):
            try:
                asset = await adapter.invoke(self._capability, request)
            except ProviderError as error:
                errors.append(error)
                if self._health is not None:
                    self._health.record_failure(error)
                logger.info(
                    "%s provider %s failed (%s); %d fallback(s) left",
                    self._capability.value,
                    adapter.name,
                    error.kind,
                    len(self._adapters) - position - 1,
                )
                remaining = self._adapters[position + 1 :]
                if isinstance(error, ProviderUnauthorized) and remaining and all(
                    other.credential_id == adapter.credential_id for other in remaining
                ):
                    skipped.extend(other.name for other in remaining)
                    logger.warning(
                        "Credential rejected by %s is shared by the remaining %s providers; "
                        "not falling back.",
                        adapter.name,
                        self._capability.value,
                    )
                    break
                continue

            if self._health is not None:
                self._health.record_success(adapter.name, self._capability.value)
            return ChainResult(asset=asset, provider=adapter.name, errors=tuple(errors))

        raise AggregateError(self._capability.value, errors, skipped=skipped)
