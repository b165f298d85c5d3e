from __future__ import annotations

import pytest

from storyloom.records.models import AssetLocation, PageRecord, StoryRecord
from storyloom.records.store import StoryStore


def make_record(story_id: str = "story-1", *, created_at: str = "2026-01-01T00:00:00+00:00") -> StoryRecord:
    return StoryRecord(
        id=story_id,
        title="Luna and the Whale",
        cover="https://cdn.storyloom.test/stories/story-1/cover-1.png",
        protagonist="Luna",
        theme="ocean",
        pages=[
            PageRecord(index=0, text="Luna went to the sea.", image="https://replicate.delivery/p0.png"),
            PageRecord(index=1, text="She met a whale.", image="/images/placeholders/ocean.jpg"),
        ],
        created_at=created_at,
    )


def test_upsert_and_load_round_trip(store):
    record = make_record()
    store.upsert_story(record)

    loaded = store.get_story("story-1")
    assert loaded is not None
    assert loaded.to_dict() == record.to_dict()


def test_upsert_replaces_pages(store):
    store.upsert_story(make_record())
    updated = make_record()
    updated.pages = updated.pages[:1]
    updated.published = True
    store.upsert_story(updated)

    loaded = store.get_story("story-1")
    assert len(loaded.pages) == 1
    assert loaded.published


def test_single_field_patches(store):
    store.upsert_story(make_record())

    assert store.patch_cover("story-1", "https://cdn.storyloom.test/new-cover.png")
    assert store.patch_page_asset("story-1", 0, "image", "https://cdn.storyloom.test/p0.png")
    assert store.patch_page_asset("story-1", 1, "narration", "https://cdn.storyloom.test/n1.mp3")

    loaded = store.get_story("story-1")
    assert loaded.cover == "https://cdn.storyloom.test/new-cover.png"
    assert loaded.pages[0].image == "https://cdn.storyloom.test/p0.png"
    assert loaded.pages[1].narration == "https://cdn.storyloom.test/n1.mp3"
    assert loaded.pages[1].image == "/images/placeholders/ocean.jpg"


def test_patches_on_missing_records_are_noops(store):
    assert not store.patch_cover("missing", "https://cdn.storyloom.test/x.png")
    assert not store.patch_page_asset("missing", 0, "image", "https://cdn.storyloom.test/x.png")
    assert not store.set_published("missing")


def test_patch_rejects_unknown_fields(store):
    with pytest.raises(ValueError):
        store.patch_page_asset("story-1", 0, "text", "hacked")


def test_recent_stories_orders_newest_first(store):
    store.upsert_story(make_record("old", created_at="2026-01-01T00:00:00+00:00"))
    store.upsert_story(make_record("new", created_at="2026-03-01T00:00:00+00:00"))

    assert [record.id for record in store.recent_stories(limit=5)] == ["new", "old"]
    assert [record.id for record in store.recent_stories(limit=1)] == ["new"]


def test_in_memory_database():
    memory = StoryStore(":memory:")
    memory.upsert_story(make_record())
    assert memory.get_story("story-1").title == "Luna and the Whale"
    memory.close()


def test_record_validation_and_locations(tmp_path):
    record = make_record()
    locations = [location for location, _ in record.asset_locations()]
    assert locations[0] == AssetLocation("story-1", "cover")
    assert record.locations_of("https://replicate.delivery/p0.png") == [AssetLocation("story-1", "image", 0)]

    with pytest.raises(ValueError):
        StoryRecord(id="x", title="t", pages=[PageRecord(index=1, text="gap")])
    with pytest.raises(ValueError):
        StoryRecord(id="x", title="t", pages=[PageRecord(index=0, text="  ")])

    path = tmp_path / "record.yaml"
    path.write_text(record.to_yaml(), encoding="utf-8")
    assert StoryRecord.from_yaml(path).to_dict() == record.to_dict()


def test_iter_story_ids_lists_every_story(store):
    store.upsert_story(make_record("b", created_at="2026-02-01T00:00:00+00:00"))
    store.upsert_story(make_record("a", created_at="2026-01-01T00:00:00+00:00"))

    assert list(store.iter_story_ids()) == ["a", "b"]
