"""
Typed progress notifications emitted by the orchestrator and the repair engine.
"""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

StageCallback = Callable[[str, int, str], None]
AssetFixedCallback = Callable[[str, str], None]
PageProgressCallback = Callable[[str, int, int], None]


class PipelineObserver:
    """
    Base observer; every hook is a no-op so subclasses override only what they need.
    """

    def on_stage_change(self, stage: str, progress: int, label: str) -> None:
        pass

    def on_asset_fixed(self, original: str, fixed: str) -> None:
        pass

    def on_page_progress(self, kind: str, current: int, total: int) -> None:
        pass


class CallbackObserver(PipelineObserver):
    """Adapts plain callables to the observer interface."""

    def __init__(
        self,
        *,
        on_stage_change: StageCallback | None = None,
        on_asset_fixed: AssetFixedCallback | None = None,
        on_page_progress: PageProgressCallback | None = None,
    ) -> None:
        self._stage = on_stage_change
        self._fixed = on_asset_fixed
        self._page = on_page_progress

    def on_stage_change(self, stage: str, progress: int, label: str) -> None:
        if self._stage is not None:
            self._stage(stage, progress, label)

    def on_asset_fixed(self, original: str, fixed: str) -> None:
        if self._fixed is not None:
            self._fixed(original, fixed)

    def on_page_progress(self, kind: str, current: int, total: int) -> None:
        if self._page is not None:
            self._page(kind, current, total)


class LoggingObserver(PipelineObserver):
    def on_stage_change(self, stage: str, progress: int, label: str) -> None:
        logger.info("[%3d%%] %s: %s", progress, stage, label)

    def on_asset_fixed(self, original: str, fixed: str) -> None:
        logger.info("Asset replaced: %s -> %s", original[:80], fixed[:80])

    def on_page_progress(self, kind: str, current: int, total: int) -> None:
        logger.debug("%s %d/%d", kind, current, total)
