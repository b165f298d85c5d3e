"""
storyloom: personalised children's stories with resilient provider fallbacks and durable assets.
"""

from .assets.migration import AssetMigrationService, MigrationContext
from .assets.repair import RepairEngine, RepairReport
from .common import Settings
from .pipeline import CallbackObserver, PipelineObserver, Stage, StoryDraft, StoryOrchestrator
from .records import StoryRecord, StoryStore
from .story_generation import StoryRequest

__all__ = [
    "AssetMigrationService",
    "CallbackObserver",
    "MigrationContext",
    "PipelineObserver",
    "RepairEngine",
    "RepairReport",
    "Settings",
    "Stage",
    "StoryDraft",
    "StoryOrchestrator",
    "StoryRecord",
    "StoryRequest",
    "StoryStore",
]
