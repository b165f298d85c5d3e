"""
Asset durability: classification, placeholders, storage backends, and downloads.

The migration service and repair engine live in :mod:`storyloom.assets.migration` and
:mod:`storyloom.assets.repair`; they depend on :mod:`storyloom.records` and are imported
from there directly.
"""

from .cache import EphemeralCache
from .classifier import AssetClass, AssetClassifier
from .fetch import AssetFetcher, FetchedAsset, decode_data_uri
from .placeholders import (
    KNOWN_THEMES,
    cover_placeholder,
    default_image_for_theme,
    is_placeholder_url,
    page_placeholder,
    placeholder_for,
)
from .storage import DurableStorage, LocalStorage, S3Storage, build_storage

__all__ = [
    "AssetClass",
    "AssetClassifier",
    "AssetFetcher",
    "DurableStorage",
    "EphemeralCache",
    "FetchedAsset",
    "KNOWN_THEMES",
    "LocalStorage",
    "S3Storage",
    "build_storage",
    "cover_placeholder",
    "decode_data_uri",
    "default_image_for_theme",
    "is_placeholder_url",
    "page_placeholder",
    "placeholder_for",
]
