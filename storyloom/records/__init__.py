"""
Story records and the SQLite library that stores them.
"""

from .models import (
    ASSET_FIELDS,
    FIELD_COVER,
    FIELD_IMAGE,
    FIELD_NARRATION,
    AssetLocation,
    AssetReference,
    PageRecord,
    StoryRecord,
    new_story_id,
)
from .store import StoryStore

__all__ = [
    "ASSET_FIELDS",
    "AssetLocation",
    "AssetReference",
    "FIELD_COVER",
    "FIELD_IMAGE",
    "FIELD_NARRATION",
    "PageRecord",
    "StoryRecord",
    "StoryStore",
    "new_story_id",
]
