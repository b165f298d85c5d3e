from __future__ import annotations

from typing import Any

import pytest

from conftest import (
    CDN,
    HTTPStatusError,
    counting_images,
    speech_asset,
    story_text,
    text_asset,
)
from storyloom.assets.classifier import AssetClass
from storyloom.common.errors import GenerationCancelled, GenerationFailed
from storyloom.pipeline.stages import Stage
from storyloom.providers.base import Capability, RawAsset
from storyloom.story_generation.request import StoryRequest

LUNA = StoryRequest(name="Luna", page_count=5, theme="ocean")


def failing_for(marker: str, images):
    """Image outcome that fails whenever the prompt mentions ``marker``."""

    def _outcome(request: Any):
        if marker in request.prompt:
            raise HTTPStatusError(503, "image backend overloaded")
        return images(request)

    return _outcome


async def test_image_retries_recover_without_placeholders(make_orchestrator, migration, store):
    images = counting_images()
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna and the Whale", 5))],
        images=[images, HTTPStatusError(500), HTTPStatusError(500), images],
    )
    draft = orchestrator.create_draft({"name": "Luna", "pages": 5, "theme": "ocean"})

    record = await orchestrator.run(draft)

    assert len(record.pages) == 5
    assert len(adapters["image"].calls) == 1 + 3 + 4
    classes = [migration.classifier.classify(page.image) for page in record.pages]
    assert classes == [AssetClass.DURABLE] * 5
    assert record.pages[0].image.startswith(CDN)
    assert record.published
    assert draft.retries_used("illustrations") == 2
    assert store.get_story(record.id).title == "Luna and the Whale"


async def test_exhausted_page_gets_placeholder_and_others_are_unaffected(make_orchestrator, migration):
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna and the Whale", 5))],
        images=[failing_for("reef number 3.", counting_images())],
    )

    record = await orchestrator.run(orchestrator.create_draft(LUNA))

    classes = [migration.classifier.classify(page.image) for page in record.pages]
    assert classes[2] is AssetClass.PLACEHOLDER
    assert record.pages[2].image == "/images/placeholders/ocean.jpg"
    assert classes[:2] + classes[3:] == [AssetClass.DURABLE] * 4
    page_three_calls = [call for call in adapters["image"].calls if "reef number 3." in call.prompt]
    assert len(page_three_calls) == 1 + 3


async def test_missing_title_defaults_to_story_of_name(make_orchestrator):
    orchestrator, _ = make_orchestrator(
        text=[text_asset(story_text(None, 5))],
        images=[counting_images()],
    )

    record = await orchestrator.run(orchestrator.create_draft(LUNA))

    assert "Story of Luna" in record.title
    assert len(record.pages) == 5


@pytest.mark.parametrize("page_count", [1, 3, 7])
async def test_record_has_exactly_the_requested_pages(make_orchestrator, page_count):
    orchestrator, _ = make_orchestrator(
        text=[text_asset(story_text("Short", 2))],
        images=[counting_images()],
    )
    request = StoryRequest(name="Luna", page_count=page_count)

    record = await orchestrator.run(orchestrator.create_draft(request))

    assert [page.index for page in record.pages] == list(range(page_count))
    assert all(page.text.strip() for page in record.pages)


async def test_cancellation_stops_calls_and_persists_nothing(make_orchestrator, store):
    holder: dict[str, Any] = {}
    images = counting_images()

    def cancel_on_second_call(request: Any):
        holder["calls"] = holder.get("calls", 0) + 1
        if holder["calls"] == 2:
            holder["draft"].cancel()
        return images(request)

    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna", 5))],
        images=[cancel_on_second_call],
        speech=[speech_asset()],
    )
    draft = orchestrator.create_draft(StoryRequest(name="Luna", page_count=5, narration_voice="female"))
    holder["draft"] = draft

    with pytest.raises(GenerationCancelled):
        await orchestrator.run(draft)

    assert len(adapters["image"].calls) == 2
    assert adapters["speech"].calls == []
    assert store.get_story(draft.id) is None
    assert store.recent_stories() == []


async def test_cancel_before_run_issues_no_calls(make_orchestrator):
    orchestrator, adapters = make_orchestrator(text=[text_asset("x")], images=[counting_images()])
    draft = orchestrator.create_draft(LUNA)
    orchestrator.cancel(draft)

    with pytest.raises(GenerationCancelled):
        await orchestrator.run(draft)

    assert adapters["text"].calls == []


async def test_narrative_failure_is_retryable_and_rerun_restarts(make_orchestrator, observer):
    orchestrator, adapters = make_orchestrator(
        text=[HTTPStatusError(500), HTTPStatusError(502), text_asset(story_text("Second Try", 5))],
        images=[counting_images()],
    )
    draft = orchestrator.create_draft(LUNA)

    with pytest.raises(GenerationFailed) as excinfo:
        await orchestrator.run(draft)

    assert excinfo.value.stage == "narrative"
    assert excinfo.value.retryable
    assert draft.stage is Stage.ERROR
    assert len(adapters["text"].calls) == 2
    assert adapters["image"].calls == []
    assert observer.stages[-1][0] == "error"

    record = await orchestrator.run(draft)
    assert record.title == "Second Try"
    assert draft.stage is Stage.COMPLETE


async def test_cover_defers_to_first_page_after_regenerations(make_orchestrator):
    images = counting_images()
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna", 5))],
        images=[HTTPStatusError(500), HTTPStatusError(500), HTTPStatusError(500), images],
    )

    record = await orchestrator.run(orchestrator.create_draft(LUNA))

    assert record.cover == record.pages[0].image
    assert record.cover.startswith(CDN)
    assert len(adapters["image"].calls) == 3 + 5


async def test_total_image_outage_uses_themed_placeholders(make_orchestrator):
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna", 5))],
        images=[HTTPStatusError(503)],
    )

    record = await orchestrator.run(orchestrator.create_draft(LUNA))

    assert record.cover == "/images/covers/ocean.jpg"
    assert {page.image for page in record.pages} == {"/images/placeholders/ocean.jpg"}
    assert record.published
    assert len(adapters["image"].calls) == 3 + (1 + 3) + 4
    assert orchestrator.health.status("fake-image").status == "server_error"


async def test_narration_retries_then_uploads_audio(make_orchestrator):
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna", 3))],
        images=[counting_images()],
        speech=[HTTPStatusError(500), speech_asset()],
    )
    request = StoryRequest(name="Luna", page_count=3, narration_voice="male")

    record = await orchestrator.run(orchestrator.create_draft(request))

    assert len(adapters["speech"].calls) == 4
    assert adapters["speech"].calls[0].voice == "echo"
    assert all(page.narration.startswith(CDN) and page.narration.endswith(".mp3") for page in record.pages)


async def test_failed_narration_leaves_pages_silent(make_orchestrator, settings):
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna", 2))],
        images=[counting_images()],
        speech=[HTTPStatusError(500)],
    )
    request = StoryRequest(name="Luna", page_count=2, narration_voice="female")

    record = await orchestrator.run(orchestrator.create_draft(request))

    assert [page.narration for page in record.pages] == [None, None]
    assert len(adapters["speech"].calls) == 2 * settings.narration_max_attempts
    assert record.published


async def test_unauthorized_speech_is_not_retried(make_orchestrator):
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna", 2))],
        images=[counting_images()],
        speech=[HTTPStatusError(401)],
    )
    request = StoryRequest(name="Luna", page_count=2, narration_voice="female")

    await orchestrator.run(orchestrator.create_draft(request))

    assert len(adapters["speech"].calls) == 2


async def test_narration_skipped_without_voice(make_orchestrator, observer):
    orchestrator, adapters = make_orchestrator(
        text=[text_asset(story_text("Luna", 2))],
        images=[counting_images()],
        speech=[speech_asset()],
    )

    record = await orchestrator.run(orchestrator.create_draft(StoryRequest(name="Luna", page_count=2)))

    assert adapters["speech"].calls == []
    assert all(page.narration is None for page in record.pages)
    assert "narration" not in [stage for stage, _, _ in observer.stages]


async def test_progress_is_monotonic_and_ends_complete(make_orchestrator, observer):
    orchestrator, _ = make_orchestrator(
        text=[text_asset(story_text("Luna", 3))],
        images=[counting_images()],
        speech=[speech_asset()],
    )
    request = StoryRequest(name="Luna", page_count=3, narration_voice="female")

    await orchestrator.run(orchestrator.create_draft(request))

    progress = [value for _, value, _ in observer.stages]
    assert progress == sorted(progress)
    assert observer.stages[-1][:2] == ("complete", 100)
    stages = list(dict.fromkeys(stage for stage, _, _ in observer.stages))
    assert stages == ["preparing", "narrative", "cover", "illustrations", "narration", "complete"]
    assert ("illustration", 3, 3) in observer.pages
    assert ("narration", 1, 3) in observer.pages


async def test_inline_images_are_kept_through_storage_outage(make_orchestrator, storage, store, migration):
    inline_image = RawAsset(capability=Capability.IMAGE, provider="fake-image", data=b"png", content_type="image/png")
    orchestrator, _ = make_orchestrator(
        text=[text_asset(story_text("Luna", 3))],
        images=[inline_image],
    )
    storage.fail = True

    record = await orchestrator.run(orchestrator.create_draft(StoryRequest(name="Luna", page_count=3, theme="ocean")))

    classes = {migration.classifier.classify(page.image) for page in record.pages}
    assert classes == {AssetClass.INLINE_DATA}
    assert record.cover.startswith("data:image/png;base64,")
    assert not record.published

    storage.fail = False
    assert await migration.sweep_library(force=True) == 4
    swept = store.get_story(record.id)
    assert swept.published
    assert all(page.image.startswith(CDN) for page in swept.pages)
