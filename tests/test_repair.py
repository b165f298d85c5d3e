from __future__ import annotations

import pytest

from conftest import CDN, RecordingObserver
from storyloom.assets.cache import EphemeralCache
from storyloom.assets.classifier import AssetClass, AssetClassifier
from storyloom.assets.fetch import AssetFetcher
from storyloom.assets.migration import AssetMigrationService
from storyloom.assets.repair import RepairEngine, add_cache_buster
from storyloom.assets.storage import LocalStorage
from storyloom.records.models import PageRecord, StoryRecord

EPHEMERAL = "https://oaidalleapiprodscus.blob.core.windows.net/private/p0.png?se=2026&sig=x"
DURABLE = f"{CDN}/stories/story-1/image-page1-1.png"


@pytest.fixture
def engine(migration, observer) -> RepairEngine:
    return RepairEngine(migration, observer=observer, clock=lambda: 1_700_000_000.0)


def saved_record(store, *, image0: str = EPHEMERAL, image1: str = DURABLE) -> StoryRecord:
    record = StoryRecord(
        id="story-1",
        title="Luna",
        theme="space",
        cover=image0,
        pages=[
            PageRecord(index=0, text="Zero", image=image0),
            PageRecord(index=1, text="One", image=image1),
        ],
    )
    store.upsert_story(record)
    return record


async def test_ephemeral_url_is_never_returned_unchanged(engine, migration, fetcher):
    fetcher.broken.add("https://replicate.delivery/pbxt/gone.png")

    fixed = await engine.repair(
        [EPHEMERAL, "https://replicate.delivery/pbxt/gone.png"],
        theme="space",
    )

    assert migration.classifier.classify(fixed[EPHEMERAL]) is AssetClass.DURABLE
    assert fixed["https://replicate.delivery/pbxt/gone.png"] == "/images/placeholders/space.jpg"


async def test_repair_writes_back_every_location_and_publishes(engine, store, observer):
    saved_record(store)

    fixed = await engine.repair([EPHEMERAL, EPHEMERAL, "", None], story_id="story-1")

    stored = store.get_story("story-1")
    assert stored.cover == fixed[EPHEMERAL]
    assert stored.pages[0].image == fixed[EPHEMERAL]
    assert stored.published
    assert observer.fixed == [(EPHEMERAL, fixed[EPHEMERAL])]


async def test_upload_outage_substitutes_placeholder(engine, store, storage):
    saved_record(store)
    storage.fail = True

    fixed = await engine.repair([EPHEMERAL], story_id="story-1")

    assert fixed[EPHEMERAL] == "/images/covers/space.jpg"
    assert store.get_story("story-1").cover == "/images/covers/space.jpg"


async def test_reachable_durable_and_placeholder_urls_are_left_alone(engine, fetcher):
    report = await engine.check([DURABLE, "/images/placeholders/space.jpg"])

    assert report.fixed_urls == {}
    assert report.total == 2
    assert report.accessible == 2
    assert fetcher.probed == [DURABLE]


async def test_unreachable_durable_url_gets_cache_buster(engine, fetcher, store):
    saved_record(store)
    fetcher.unreachable.add(DURABLE)

    report = await engine.check([DURABLE], story_id="story-1")

    assert report.fixed_urls == {DURABLE: f"{DURABLE}?_cb=1700000000000"}
    assert report.fixed == 1
    assert store.get_story("story-1").pages[1].image == DURABLE


async def test_busted_url_that_still_fails_becomes_placeholder(engine, fetcher):
    busted = f"{DURABLE}?_cb=1"
    fetcher.unreachable.add(busted)

    report = await engine.check([busted], theme="space")

    assert report.fixed_urls == {busted: "/images/placeholders/space.jpg"}
    assert report.failed == 1


def test_cache_buster_is_added_once():
    busted = add_cache_buster("https://cdn.storyloom.test/a.png?v=1", 42)
    assert busted == "https://cdn.storyloom.test/a.png?v=1&_cb=42"
    assert add_cache_buster(busted, 43) is None


async def test_report_counts(engine, fetcher, observer: RecordingObserver):
    fetcher.unreachable.update({DURABLE, f"{DURABLE}?_cb=1700000000000"})

    report = await engine.check([EPHEMERAL, DURABLE, "/images/defaults/space.jpg"], theme="space")

    assert report.to_dict()["total"] == 3
    assert (report.accessible, report.fixed, report.failed) == (1, 1, 1)
    assert len(observer.fixed) == 2


async def test_relative_storage_url_gets_cache_buster_instead_of_placeholder(tmp_path, store):
    local = LocalStorage(tmp_path / "media", public_base="/static")
    url = await local.upload("stories/s1/image-page0-1.png", b"png")
    service = AssetMigrationService(
        local,
        store,
        AssetClassifier(durable_hosts=["/static"]),
        cache=EphemeralCache(),
        fetcher=AssetFetcher(timeout=1.0),
    )
    engine = RepairEngine(service, clock=lambda: 1_700_000_000.0)

    assert service.classifier.classify(url) is AssetClass.DURABLE
    fixed = await engine.repair([url], theme="ocean")
    assert fixed == {url: f"{url}?_cb=1700000000000"}

    busted = fixed[url]
    assert await engine.repair([busted], theme="ocean") == {busted: "/images/placeholders/ocean.jpg"}
