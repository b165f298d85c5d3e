"""
Orchestrates a story from request to saved record: narrative, cover, illustrations, narration.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

import backoff

from storyloom.assets.classifier import AssetClass
from storyloom.assets.fetch import FetchedAsset
from storyloom.assets.migration import AssetMigrationService, MigrationContext
from storyloom.assets.placeholders import cover_placeholder, page_placeholder
from storyloom.common.config import Settings
from storyloom.common.errors import AggregateError, GenerationCancelled, GenerationFailed
from storyloom.providers.base import Capability, ImageRequest, RawAsset, SpeechRequest
from storyloom.providers.fallback import ChainResult, FallbackChain
from storyloom.providers.health import ProviderHealth
from storyloom.providers.prompting import (
    IllustrationPrompt,
    build_illustration_prompt,
    derive_story_seed,
)
from storyloom.providers.registry import build_provider_chains
from storyloom.providers.speech import resolve_voice
from storyloom.records.models import FIELD_COVER, FIELD_IMAGE, FIELD_NARRATION, PageRecord, StoryRecord
from storyloom.records.store import StoryStore
from storyloom.story_generation import NarrativeGenerator, ParsedStory, StoryRequest
from storyloom.story_generation.request import SETTINGS, THEMES, display_name

from .observer import LoggingObserver, PipelineObserver
from .stages import Stage, StoryDraft, band_progress

logger = logging.getLogger(__name__)

SleepCallable = Callable[[float], Awaitable[Any]]


class StoryOrchestrator:
    """
    Drives a :class:`StoryDraft` through every generation stage.

    Parameters
    ----------
    narrative:
        Text chain wrapper that drafts and parses the story.
    image_chain:
        Fallback chain used for the cover and every page illustration.
    migration:
        Makes each generated asset durable and saves the final record.
    speech_chain:
        Optional; narration is skipped when it is ``None`` or the request has no voice.
    observer:
        Receives stage changes and per-page progress.

    Only a narrative failure surfaces to the caller (:class:`GenerationFailed`). Image
    failures degrade to themed placeholders and narration failures to silent pages.
    """

    def __init__(
        self,
        *,
        narrative: NarrativeGenerator,
        image_chain: FallbackChain,
        migration: AssetMigrationService,
        speech_chain: FallbackChain | None = None,
        settings: Settings | None = None,
        health: ProviderHealth | None = None,
        observer: PipelineObserver | None = None,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        self._narrative = narrative
        self._image_chain = image_chain
        self._speech_chain = speech_chain
        self._migration = migration
        self._settings = settings or Settings()
        self._health = health or ProviderHealth()
        self._observer = observer or LoggingObserver()
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        observer: PipelineObserver | None = None,
        store: StoryStore | None = None,
        migration: AssetMigrationService | None = None,
        health: ProviderHealth | None = None,
    ) -> "StoryOrchestrator":
        health = health or ProviderHealth()
        chains = build_provider_chains(settings, health=health)
        return cls(
            narrative=NarrativeGenerator(chains.text),
            image_chain=chains.image,
            speech_chain=chains.speech,
            migration=migration or AssetMigrationService.from_settings(settings, store=store),
            settings=settings,
            health=health,
            observer=observer,
        )

    @property
    def health(self) -> ProviderHealth:
        return self._health

    @property
    def migration(self) -> AssetMigrationService:
        return self._migration

    def create_draft(self, request: StoryRequest | Mapping[str, Any]) -> StoryDraft:
        if not isinstance(request, StoryRequest):
            request = StoryRequest.from_mapping(request)
        return StoryDraft(request=request)

    @staticmethod
    def cancel(draft: StoryDraft) -> None:
        draft.cancel()

    async def run(self, draft: StoryDraft) -> StoryRecord:
        """
        Run every stage and return the saved record.

        Raises :class:`GenerationFailed` when no narrative could be written and
        :class:`GenerationCancelled` when the draft was cancelled; in both cases nothing
        is saved. Running the same draft again restarts from the beginning.
        """
        if draft.stage is not Stage.PREPARING:
            draft.reset()

        try:
            return await self._run_pipeline(draft)
        except GenerationCancelled:
            logger.info("Story %s cancelled at stage %s", draft.id, draft.stage.value)
            raise
        except GenerationFailed as exc:
            draft.fail(str(exc))
            self._observer.on_stage_change(draft.stage.value, draft.progress, draft.label)
            raise

    async def _run_pipeline(self, draft: StoryDraft) -> StoryRecord:
        request = draft.request
        self._notify_stage(draft)
        seed = derive_story_seed(draft.id, request.name, request.theme, request.style)
        logger.info(
            "Generating %d-page %s story for %s (draft %s)",
            request.page_count,
            request.theme,
            request.name,
            draft.id,
        )

        self._transition(draft, Stage.NARRATIVE)
        parsed = await self._generate_narrative(draft)

        self._transition(draft, Stage.COVER, f"Painting the cover for \"{parsed.title}\"")
        cover = await self._generate_cover(draft, parsed, seed)

        self._transition(draft, Stage.ILLUSTRATIONS)
        pages = await self._illustrate_pages(draft, parsed, seed)

        if cover is None:
            first_image = pages[0].image
            if self._migration.classifier.classify(first_image) is AssetClass.PLACEHOLDER:
                cover = cover_placeholder(request.theme)
            else:
                cover = first_image
            logger.info("Cover for %s deferred to %s", draft.id, cover)

        if self._speech_chain and request.narration_voice:
            self._transition(draft, Stage.NARRATION)
            await self._narrate_pages(draft, pages)
        else:
            logger.info("Narration skipped for %s (no speech provider or voice).", draft.id)

        self._check_cancelled(draft)
        record = StoryRecord(
            id=draft.id,
            title=parsed.title,
            pages=pages,
            cover=cover,
            protagonist=request.name,
            theme=request.theme,
            setting=request.setting,
            style=request.style,
            language=request.language,
            narration_voice=request.narration_voice,
            created_at=draft.created_at,
        )
        record = await self._migration.finalize_record(record)
        draft.advance(Stage.COMPLETE)
        self._notify_stage(draft)
        return record

    async def _generate_narrative(self, draft: StoryDraft) -> ParsedStory:
        max_attempts = self._settings.narrative_max_attempts
        last_error: AggregateError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                parsed, result = await self._narrative.generate(draft.request)
            except AggregateError as exc:
                self._check_cancelled(draft)
                self._record_failures(draft, exc)
                draft.count_retry(Stage.NARRATIVE.value)
                last_error = exc
                logger.warning("Narrative attempt %d/%d failed: %s", attempt, max_attempts, exc)
                continue

            self._check_cancelled(draft)
            self._record_success(draft, result)
            draft.set_progress(band_progress(Stage.NARRATIVE, 1, 1), f"\"{parsed.title}\" is written")
            self._notify_stage(draft)
            return parsed

        raise GenerationFailed(
            "We couldn't write this story right now. Please try again.",
            stage=Stage.NARRATIVE.value,
            retryable=True,
        ) from last_error

    async def _generate_cover(self, draft: StoryDraft, parsed: ParsedStory, seed: int) -> str | None:
        """Returns the cover URL, or ``None`` when the cover should borrow page 0's image."""
        request = draft.request
        prompt = self._illustration_prompt(request, parsed.pages[0], cover_title=parsed.title)
        context = MigrationContext(draft.id, FIELD_COVER, theme=request.theme)
        attempts = 1 + self._settings.cover_regeneration_attempts

        for attempt in range(1, attempts + 1):
            self._check_cancelled(draft)
            url = await self._generate_image(draft, prompt, seed, context)
            if url is not None:
                draft.set_progress(band_progress(Stage.COVER, 1, 1))
                self._notify_stage(draft)
                return url
            if attempt < attempts:
                draft.count_retry(Stage.COVER.value)
                logger.info("Regenerating cover for %s (%d/%d)", draft.id, attempt, attempts - 1)

        logger.warning("Cover generation exhausted for %s; deferring to the first page.", draft.id)
        return None

    async def _illustrate_pages(self, draft: StoryDraft, parsed: ParsedStory, seed: int) -> list[PageRecord]:
        request = draft.request
        budget = self._settings.page_retry_budget
        total = len(parsed.pages)
        pages: list[PageRecord] = []

        for index, text in enumerate(parsed.pages):
            self._check_cancelled(draft)
            self._observer.on_page_progress("illustration", index + 1, total)
            prompt = self._illustration_prompt(request, text)
            context = MigrationContext(draft.id, FIELD_IMAGE, index, theme=request.theme)

            url = await self._generate_image(draft, prompt, seed, context)
            while url is None and budget > 0:
                budget -= 1
                draft.count_retry(Stage.ILLUSTRATIONS.value)
                logger.info("Retrying illustration for page %d (%d story retries left)", index + 1, budget)
                self._check_cancelled(draft)
                url = await self._generate_image(draft, prompt, seed, context)

            if url is None:
                url = page_placeholder(request.theme)
                logger.warning("Page %d of %s uses the %s placeholder.", index + 1, draft.id, request.theme)

            pages.append(PageRecord(index=index, text=text, image=url))
            draft.set_progress(
                band_progress(Stage.ILLUSTRATIONS, index + 1, total),
                f"Illustrated page {index + 1} of {total}",
            )
            self._notify_stage(draft)

        return pages

    async def _generate_image(
        self,
        draft: StoryDraft,
        prompt: IllustrationPrompt,
        seed: int,
        context: MigrationContext,
    ) -> str | None:
        image_request = ImageRequest(prompt=prompt.positive, seed=seed, negative_prompt=prompt.negative)
        try:
            result = await self._image_chain.execute(image_request)
        except AggregateError as exc:
            self._check_cancelled(draft)
            self._record_failures(draft, exc)
            return None

        self._check_cancelled(draft)
        self._record_success(draft, result)
        reference = await self._migration.ensure_durable(_asset_url(result.asset), context)
        return reference.url or None

    async def _narrate_pages(self, draft: StoryDraft, pages: list[PageRecord]) -> None:
        voice = resolve_voice(draft.request.narration_voice)
        total = len(pages)

        for position, page in enumerate(pages):
            self._check_cancelled(draft)
            if position:
                await self._sleep(self._settings.narration_delay_seconds)
                self._check_cancelled(draft)
            self._observer.on_page_progress("narration", position + 1, total)

            try:
                result = await self._speak(draft, SpeechRequest(text=page.text, voice=voice))
            except AggregateError as exc:
                logger.warning("Page %d of %s has no narration: %s", page.index + 1, draft.id, exc)
            else:
                context = MigrationContext(draft.id, FIELD_NARRATION, page.index, theme=draft.request.theme)
                reference = await self._migration.ensure_durable(_asset_url(result.asset), context)
                page.narration = reference.url or None

            draft.set_progress(
                band_progress(Stage.NARRATION, position + 1, total),
                f"Narrated page {position + 1} of {total}",
            )
            self._notify_stage(draft)

    async def _speak(self, draft: StoryDraft, request: SpeechRequest) -> ChainResult:
        settings = self._settings

        @backoff.on_exception(
            backoff.expo,
            AggregateError,
            max_tries=settings.narration_max_attempts,
            base=settings.narration_backoff_base,
            max_value=settings.narration_backoff_max,
            giveup=lambda exc: draft.cancelled or exc.unauthorized,
            logger=logger,
        )
        async def _attempt() -> ChainResult:
            self._check_cancelled(draft)
            try:
                result = await self._speech_chain.execute(request)
            except AggregateError as exc:
                self._check_cancelled(draft)
                self._record_failures(draft, exc)
                draft.count_retry(Stage.NARRATION.value)
                raise
            self._check_cancelled(draft)
            self._record_success(draft, result)
            return result

        return await _attempt()

    def _illustration_prompt(
        self,
        request: StoryRequest,
        scene_text: str,
        *,
        cover_title: str | None = None,
    ) -> IllustrationPrompt:
        notes = None
        if request.character_prompt:
            label = request.character_name or "Companion"
            notes = {label: request.character_prompt}
        return build_illustration_prompt(
            request.name,
            scene_text,
            theme=display_name(THEMES, request.theme),
            setting=display_name(SETTINGS, request.setting),
            style=request.style,
            age=request.age,
            character_notes=notes,
            cover_title=cover_title,
        )

    def _transition(self, draft: StoryDraft, stage: Stage, label: str | None = None) -> None:
        self._check_cancelled(draft)
        draft.advance(stage, label)
        self._notify_stage(draft)

    def _notify_stage(self, draft: StoryDraft) -> None:
        self._observer.on_stage_change(draft.stage.value, draft.progress, draft.label)

    @staticmethod
    def _check_cancelled(draft: StoryDraft) -> None:
        if draft.cancelled:
            raise GenerationCancelled(f"Story {draft.id} was cancelled.")

    @staticmethod
    def _record_failures(draft: StoryDraft, exc: AggregateError) -> None:
        for error in exc.errors:
            draft.record_attempt(error.provider, exc.capability, error)

    @staticmethod
    def _record_success(draft: StoryDraft, result: ChainResult) -> None:
        for error in result.errors:
            draft.record_attempt(error.provider, result.asset.capability.value, error)
        draft.record_attempt(result.provider, result.asset.capability.value)


def _asset_url(asset: RawAsset) -> str:
    """URL of a generated asset, or an inline data URI when the provider returned bytes."""
    if asset.url:
        return asset.url
    if asset.data:
        default_type = "audio/mpeg" if asset.capability is Capability.SPEECH else "image/png"
        return FetchedAsset(asset.data, asset.content_type or default_type).as_data_uri()
    return ""
