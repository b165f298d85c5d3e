"""
Moves ephemeral and inline assets into durable storage and keeps story records pointing at them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from storyloom.common.config import Settings
from storyloom.common.errors import AssetFetchError, PersistenceError
from storyloom.records.models import (
    FIELD_COVER,
    FIELD_NARRATION,
    AssetLocation,
    AssetReference,
    StoryRecord,
)
from storyloom.records.store import StoryStore

from .cache import EphemeralCache
from .classifier import AssetClass, AssetClassifier
from .fetch import AssetFetcher
from .placeholders import placeholder_for
from .storage import DurableStorage, build_storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationContext:
    """Identifies the record slot an asset belongs to and the theme used for its fallback."""

    story_id: str
    field: str
    page_index: int | None = None
    theme: str | None = None

    @classmethod
    def for_location(cls, location: AssetLocation, *, theme: str | None = None) -> "MigrationContext":
        return cls(
            story_id=location.story_id,
            field=location.field,
            page_index=location.page_index,
            theme=theme,
        )

    @property
    def location(self) -> AssetLocation:
        return AssetLocation(self.story_id, self.field, self.page_index)

    @property
    def placeholder(self) -> str:
        # Narration has no audio placeholder; a failed narration is simply absent.
        if self.field == FIELD_NARRATION:
            return ""
        return placeholder_for(self.field, self.theme)


@dataclass(frozen=True)
class PendingRepair:
    url: str
    context: MigrationContext
    reason: str


class AssetMigrationService:
    """
    Single writer of asset references into the story store.

    :meth:`ensure_durable` never raises: every failure degrades to the best available
    fallback (cache copy, then the original URL, then the themed placeholder), is logged,
    and is queued in :attr:`pending_repairs` for a later sweep.
    """

    def __init__(
        self,
        storage: DurableStorage,
        store: StoryStore | None,
        classifier: AssetClassifier,
        *,
        cache: EphemeralCache | None = None,
        fetcher: AssetFetcher | None = None,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 3600.0,
    ) -> None:
        self._storage = storage
        self._store = store
        self._classifier = classifier
        self._cache = cache or EphemeralCache(clock=clock)
        self._fetcher = fetcher or AssetFetcher()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._pending: list[PendingRepair] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: StoryStore | None = None,
        cache: EphemeralCache | None = None,
    ) -> "AssetMigrationService":
        storage = build_storage(settings)
        return cls(
            storage,
            store if store is not None else StoryStore(settings.db_path),
            AssetClassifier.from_settings(settings, storage_base=storage.public_base),
            cache=cache,
            fetcher=AssetFetcher(timeout=settings.download_timeout),
            sweep_interval=settings.sweep_interval_seconds,
        )

    @property
    def classifier(self) -> AssetClassifier:
        return self._classifier

    @property
    def store(self) -> StoryStore | None:
        return self._store

    @property
    def cache(self) -> EphemeralCache:
        return self._cache

    @property
    def fetcher(self) -> AssetFetcher:
        return self._fetcher

    @property
    def pending_repairs(self) -> tuple[PendingRepair, ...]:
        return tuple(self._pending)

    def drain_pending(self) -> list[PendingRepair]:
        drained, self._pending = self._pending, []
        return drained

    def reference(self, url: str | None) -> AssetReference:
        return AssetReference.of(url, self._classifier)

    def storage_key(self, context: MigrationContext, extension: str) -> str:
        timestamp_ms = int(self._clock() * 1000)
        slot = "cover" if context.page_index is None else f"page{context.page_index}"
        name = slot if context.field == FIELD_COVER else f"{context.field}-{slot}"
        return f"stories/{context.story_id}/{name}-{timestamp_ms}{extension}"

    async def ensure_durable(
        self,
        ref: AssetReference | str | None,
        context: MigrationContext,
        *,
        write_back: bool = True,
    ) -> AssetReference:
        url = ref.url if isinstance(ref, AssetReference) else (ref or "").strip()
        reference = self.reference(url)
        if reference.settled:
            return reference

        try:
            fetched = await self._fetcher.fetch(url)
        except AssetFetchError as exc:
            logger.warning("Could not fetch %s asset for %s: %s", context.field, context.story_id, exc)
            self._queue(url, context, f"fetch failed: {exc}")
            cached = self._cache.get(url)
            if cached:
                return AssetReference.of(cached, self._classifier, cache_key=url)
            return self.reference(context.placeholder)

        if reference.asset_class is not AssetClass.INLINE_DATA:
            self._cache.put(url, fetched.as_data_uri())

        key = self.storage_key(context, fetched.extension)
        try:
            durable_url = await self._storage.upload(key, fetched.data, content_type=fetched.content_type)
        except PersistenceError as exc:
            logger.warning("Upload of %s for %s failed: %s", key, context.story_id, exc)
            self._queue(url, context, f"upload failed: {exc}")
            cached = self._cache.get(url)
            if cached:
                return AssetReference.of(cached, self._classifier, cache_key=url)
            if reference.asset_class in (AssetClass.EPHEMERAL, AssetClass.INLINE_DATA):
                return reference
            return self.reference(context.placeholder)

        logger.info("Migrated %s asset of %s to %s", context.field, context.story_id, durable_url)
        if write_back:
            self._patch(context, durable_url)
        return AssetReference.of(durable_url, self._classifier, cache_key=url)

    async def finalize_record(self, record: StoryRecord) -> StoryRecord:
        """
        Migrate whatever is still unsettled, then save the record with ``published`` derived
        from its references.
        """
        await self._settle_references(record)
        record.published = record.all_settled(self._classifier)
        record.touch()
        if self._store is None:
            return record
        try:
            self._store.upsert_story(record)
        except PersistenceError as exc:
            logger.error("Story %s could not be saved: %s", record.id, exc)
            self._queue("", MigrationContext(record.id, FIELD_COVER, theme=record.theme), f"save failed: {exc}")
        else:
            logger.info(
                "Saved story %s '%s' (%d pages, published=%s)",
                record.id,
                record.title,
                len(record.pages),
                record.published,
            )
        return record

    async def sweep_library(self, limit: int = 10, *, force: bool = False) -> int:
        """
        Re-migrate unsettled references of the most recent stories.

        Runs at most once per sweep interval unless ``force`` is set. Returns the number of
        references that changed.
        """
        if self._store is None:
            return 0
        if not force and not self._cache.sweep_due(self._sweep_interval):
            logger.debug("Library sweep skipped; last sweep was within %.0fs.", self._sweep_interval)
            return 0
        self._cache.mark_sweep()

        try:
            records = self._store.recent_stories(limit)
        except PersistenceError as exc:
            logger.error("Library sweep could not list stories: %s", exc)
            return 0

        changed = 0
        for record in records:
            fixed = await self._settle_references(record, only_settled=True)
            settled = record.all_settled(self._classifier)
            if not fixed and settled == record.published:
                continue
            changed += fixed
            record.published = settled
            record.touch()
            try:
                self._store.upsert_story(record)
            except PersistenceError as exc:
                logger.error("Sweep could not save story %s: %s", record.id, exc)
        logger.info("Library sweep checked %d stories, updated %d references.", len(records), changed)
        return changed

    def publish_if_settled(self, story_id: str) -> bool:
        if self._store is None:
            return False
        try:
            record = self._store.get_story(story_id)
            if record is None or record.published or not record.all_settled(self._classifier):
                return False
            return self._store.set_published(story_id, True)
        except PersistenceError as exc:
            logger.warning("Could not publish story %s: %s", story_id, exc)
            return False

    def write_back(self, context: MigrationContext, url: str) -> bool:
        """Patch a single reference that was resolved outside :meth:`ensure_durable`."""
        return self._patch(context, url)

    async def _settle_references(self, record: StoryRecord, *, only_settled: bool = False) -> int:
        changed = 0
        for location, url in list(record.asset_locations()):
            if self.reference(url).settled:
                continue
            result = await self.ensure_durable(url, MigrationContext.for_location(location, theme=record.theme))
            if result.url == url or (only_settled and not result.settled):
                continue
            record.set_url(location, result.url)
            changed += 1
        return changed

    def _patch(self, context: MigrationContext, url: str) -> bool:
        if self._store is None:
            return False
        try:
            if context.field == FIELD_COVER:
                patched = self._store.patch_cover(context.story_id, url)
            else:
                patched = self._store.patch_page_asset(context.story_id, context.page_index, context.field, url)
        except PersistenceError as exc:
            logger.warning("Could not record %s for %s: %s", context.field, context.story_id, exc)
            self._queue(url, context, f"store patch failed: {exc}")
            return False
        if not patched:
            logger.debug("No stored record for %s yet; skipping %s patch.", context.story_id, context.field)
        return patched

    def _queue(self, url: str, context: MigrationContext, reason: str) -> None:
        self._pending.append(PendingRepair(url=url, context=context, reason=reason))
