"""
On-demand repair of asset URLs that failed to load in the rendering layer.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from storyloom.common.errors import PersistenceError
from storyloom.pipeline.observer import PipelineObserver
from storyloom.records.models import FIELD_IMAGE, AssetLocation, StoryRecord

from .classifier import AssetClass
from .migration import AssetMigrationService, MigrationContext

logger = logging.getLogger(__name__)

CACHE_BUST_PARAM = "_cb"


@dataclass
class RepairReport:
    """Counts for one repair pass plus the map of URLs that were replaced."""

    total: int = 0
    accessible: int = 0
    fixed: int = 0
    failed: int = 0
    fixed_urls: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "accessible": self.accessible,
            "fixed": self.fixed,
            "failed": self.failed,
            "fixed_urls": dict(self.fixed_urls),
        }


def add_cache_buster(url: str, stamp: int) -> str | None:
    """
    Append ``_cb=<stamp>`` once. Returns ``None`` when the URL was already busted.
    """
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key == CACHE_BUST_PARAM for key, _ in query):
        return None
    query.append((CACHE_BUST_PARAM, str(stamp)))
    return urlunsplit(parts._replace(query=urlencode(query)))


class RepairEngine:
    """
    Guarantees that an ephemeral URL never comes back unchanged: it is either migrated to
    durable storage or replaced by the themed placeholder.
    """

    def __init__(
        self,
        migration: AssetMigrationService,
        *,
        observer: PipelineObserver | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._migration = migration
        self._observer = observer
        self._clock = clock

    async def repair(
        self,
        urls: Iterable[str | None],
        *,
        story_id: str | None = None,
        theme: str | None = None,
    ) -> dict[str, str]:
        report = await self.check(urls, story_id=story_id, theme=theme)
        return report.fixed_urls

    async def check(
        self,
        urls: Iterable[str | None],
        *,
        story_id: str | None = None,
        theme: str | None = None,
    ) -> RepairReport:
        unique = list(dict.fromkeys(url.strip() for url in urls if url and url.strip()))
        record = self._load_record(story_id)
        if record is not None and theme is None:
            theme = record.theme

        report = RepairReport(total=len(unique))
        for url in unique:
            locations = record.locations_of(url) if record is not None else []
            context = self._context_for(url, locations, story_id=story_id, theme=theme)
            asset_class = self._migration.classifier.classify(url)

            if asset_class is AssetClass.PLACEHOLDER:
                report.accessible += 1
                continue

            if asset_class is AssetClass.DURABLE:
                replacement = await self._repair_durable(url, context)
                if replacement is None:
                    report.accessible += 1
                    continue
            else:
                replacement = await self._repair_ephemeral(url, context, locations)

            if replacement == context.placeholder:
                report.failed += 1
            else:
                report.fixed += 1
            report.fixed_urls[url] = replacement
            self._notify(url, replacement)

        if story_id and report.fixed_urls:
            self._migration.publish_if_settled(story_id)
        logger.info(
            "Repair pass: %d URL(s), %d accessible, %d fixed, %d replaced by placeholders.",
            report.total,
            report.accessible,
            report.fixed,
            report.failed,
        )
        return report

    async def _repair_ephemeral(
        self,
        url: str,
        context: MigrationContext,
        locations: list[AssetLocation],
    ) -> str:
        result = await self._migration.ensure_durable(url, context, write_back=False)
        replacement = result.url if result.asset_class is AssetClass.DURABLE else context.placeholder
        for location in locations:
            self._migration.write_back(MigrationContext.for_location(location, theme=context.theme), replacement)
        return replacement

    async def _repair_durable(self, url: str, context: MigrationContext) -> str | None:
        fetcher = self._migration.fetcher
        busted = add_cache_buster(url, int(self._clock() * 1000))
        if not fetcher.can_probe(url):
            # Relative storage paths: let the renderer retry the busted form once.
            if busted is not None:
                return busted
            logger.warning("Durable asset %s still fails after a cache-busted retry.", url[:80])
            return context.placeholder
        if await fetcher.probe(url):
            return None
        if busted is not None and await fetcher.probe(busted):
            return busted
        logger.warning("Durable asset %s is unreachable; showing placeholder.", url[:80])
        return context.placeholder

    def _load_record(self, story_id: str | None) -> StoryRecord | None:
        store = self._migration.store
        if not story_id or store is None:
            return None
        try:
            return store.get_story(story_id)
        except PersistenceError as exc:
            logger.warning("Could not load story %s for repair: %s", story_id, exc)
            return None

    @staticmethod
    def _context_for(
        url: str,
        locations: list[AssetLocation],
        *,
        story_id: str | None,
        theme: str | None,
    ) -> MigrationContext:
        if locations:
            return MigrationContext.for_location(locations[0], theme=theme)
        # Unknown slot: treat as a page image so the fallback is an image placeholder.
        return MigrationContext(story_id=story_id or "unassigned", field=FIELD_IMAGE, page_index=0, theme=theme)

    def _notify(self, original: str, fixed: str) -> None:
        if self._observer is not None:
            self._observer.on_asset_fixed(original, fixed)
