"""Generation stages, their progress bands, and the mutable draft the orchestrator drives."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from storyloom.common.errors import ProviderError
from storyloom.records.models import new_story_id, now_iso
from storyloom.story_generation.request import StoryRequest


class Stage(str, Enum):
    PREPARING = "preparing"
    NARRATIVE = "narrative"
    COVER = "cover"
    ILLUSTRATIONS = "illustrations"
    NARRATION = "narration"
    COMPLETE = "complete"
    ERROR = "error"


STAGE_ORDER = (
    Stage.PREPARING,
    Stage.NARRATIVE,
    Stage.COVER,
    Stage.ILLUSTRATIONS,
    Stage.NARRATION,
    Stage.COMPLETE,
)

PROGRESS_BANDS: dict[Stage, tuple[int, int]] = {
    Stage.PREPARING: (0, 15),
    Stage.NARRATIVE: (15, 50),
    Stage.COVER: (50, 55),
    Stage.ILLUSTRATIONS: (55, 85),
    Stage.NARRATION: (85, 99),
    Stage.COMPLETE: (100, 100),
}

STAGE_LABELS = {
    Stage.PREPARING: "Preparing your story",
    Stage.NARRATIVE: "Writing the story",
    Stage.COVER: "Painting the cover",
    Stage.ILLUSTRATIONS: "Illustrating the pages",
    Stage.NARRATION: "Recording the narration",
    Stage.COMPLETE: "Your story is ready",
    Stage.ERROR: "Something went wrong",
}

TERMINAL_STAGES = {Stage.COMPLETE, Stage.ERROR}


def can_transition(current: Stage, target: Stage) -> bool:
    if current in TERMINAL_STAGES:
        return False
    if target is Stage.ERROR:
        return True
    return STAGE_ORDER.index(target) > STAGE_ORDER.index(current)


def band_progress(stage: Stage, done: int, total: int) -> int:
    """Map ``done`` of ``total`` units of work onto the stage's progress band."""
    low, high = PROGRESS_BANDS.get(stage, (0, 0))
    if total <= 0:
        return low
    fraction = min(max(done / total, 0.0), 1.0)
    return low + int(round((high - low) * fraction))


@dataclass
class GenerationAttempt:
    provider: str
    capability: str
    attempts: int = 0
    last_error: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class StoryDraft:
    """
    In-flight state of one story. Owned by the orchestrator and discarded once the record
    is saved or the draft is cancelled.
    """

    request: StoryRequest
    id: str = field(default_factory=new_story_id)
    stage: Stage = Stage.PREPARING
    progress: int = 0
    label: str = STAGE_LABELS[Stage.PREPARING]
    cancelled: bool = False
    error: str | None = None
    retries: dict[str, int] = field(default_factory=dict)
    attempts: dict[tuple[str, str], GenerationAttempt] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)

    def advance(self, target: Stage, label: str | None = None) -> None:
        if target is self.stage:
            return
        if not can_transition(self.stage, target):
            raise ValueError(f"Illegal stage transition: {self.stage.value} -> {target.value}")
        self.stage = target
        self.label = label or STAGE_LABELS[target]
        if target in PROGRESS_BANDS:
            self.progress = PROGRESS_BANDS[target][0]

    def set_progress(self, progress: int, label: str | None = None) -> None:
        low, high = PROGRESS_BANDS.get(self.stage, (self.progress, self.progress))
        self.progress = min(max(int(progress), low, self.progress), high)
        if label:
            self.label = label

    def fail(self, message: str) -> None:
        self.error = message
        if self.stage is not Stage.ERROR:
            self.advance(Stage.ERROR)

    def cancel(self) -> None:
        self.cancelled = True

    def reset(self) -> None:
        """Back to ``preparing`` for a full restart; the story id is kept."""
        self.stage = Stage.PREPARING
        self.progress = 0
        self.label = STAGE_LABELS[Stage.PREPARING]
        self.cancelled = False
        self.error = None
        self.retries.clear()
        self.attempts.clear()

    def count_retry(self, key: str) -> int:
        self.retries[key] = self.retries.get(key, 0) + 1
        return self.retries[key]

    def retries_used(self, key: str) -> int:
        return self.retries.get(key, 0)

    def record_attempt(
        self,
        provider: str,
        capability: str,
        error: ProviderError | str | None = None,
    ) -> GenerationAttempt:
        entry = self.attempts.get((provider, capability))
        if entry is None:
            entry = self.attempts[(provider, capability)] = GenerationAttempt(provider, capability)
        entry.attempts += 1
        entry.timestamp = time.time()
        entry.last_error = str(error) if error is not None else None
        return entry
