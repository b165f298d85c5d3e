"""
Explicit provider-health context shared between the pipeline and any UI layer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from storyloom.common.errors import ProviderError

logger = logging.getLogger(__name__)

STATUS_OK = "ok"


@dataclass(frozen=True)
class ProviderStatus:
    provider: str
    capability: str
    status: str
    message: str | None
    updated_at: float

    @property
    def healthy(self) -> bool:
        return self.status == STATUS_OK


HealthListener = Callable[[ProviderStatus], None]


class ProviderHealth:
    """
    Records the latest outcome per provider and notifies subscribers on every change.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._statuses: dict[str, ProviderStatus] = {}
        self._listeners: list[HealthListener] = []
        self._clock = clock

    def subscribe(self, listener: HealthListener) -> Callable[[], None]:
        """Register a listener; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def record_success(self, provider: str, capability: str) -> None:
        self._update(provider, capability, STATUS_OK, None)

    def record_failure(self, error: ProviderError) -> None:
        self._update(error.provider, error.capability, error.kind, str(error))

    def status(self, provider: str) -> ProviderStatus | None:
        return self._statuses.get(provider)

    def snapshot(self) -> dict[str, ProviderStatus]:
        return dict(self._statuses)

    def issues(self) -> list[ProviderStatus]:
        return [status for status in self._statuses.values() if not status.healthy]

    def _update(self, provider: str, capability: str, status: str, message: str | None) -> None:
        previous = self._statuses.get(provider)
        current = ProviderStatus(
            provider=provider,
            capability=capability,
            status=status,
            message=message,
            updated_at=self._clock(),
        )
        self._statuses[provider] = current
        if previous is not None and previous.status == status:
            return
        if status != STATUS_OK:
            logger.warning("Provider %s reported %s: %s", provider, status, message)
        for listener in list(self._listeners):
            listener(current)
