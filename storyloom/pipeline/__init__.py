"""
Story generation pipeline: stages, observers, and the orchestrator.
"""

from .observer import CallbackObserver, LoggingObserver, PipelineObserver
from .pipeline import StoryOrchestrator
from .stages import (
    PROGRESS_BANDS,
    STAGE_LABELS,
    GenerationAttempt,
    Stage,
    StoryDraft,
    band_progress,
    can_transition,
)

__all__ = [
    "CallbackObserver",
    "GenerationAttempt",
    "LoggingObserver",
    "PROGRESS_BANDS",
    "PipelineObserver",
    "STAGE_LABELS",
    "Stage",
    "StoryDraft",
    "StoryOrchestrator",
    "band_progress",
    "can_transition",
]
