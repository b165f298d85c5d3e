"""
Persisted story records and the asset references they point at.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml

from storyloom.assets.classifier import AssetClass, AssetClassifier

FIELD_COVER = "cover"
FIELD_IMAGE = "image"
FIELD_NARRATION = "narration"
ASSET_FIELDS = (FIELD_COVER, FIELD_IMAGE, FIELD_NARRATION)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_story_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class AssetReference:
    """
    A URL together with its durability class. Computed on read, never stored on its own.
    """

    url: str
    asset_class: AssetClass
    cache_key: str | None = None

    @classmethod
    def of(
        cls,
        url: str | None,
        classifier: AssetClassifier,
        *,
        cache_key: str | None = None,
    ) -> "AssetReference":
        value = (url or "").strip()
        return cls(url=value, asset_class=classifier.classify(value), cache_key=cache_key)

    @property
    def settled(self) -> bool:
        return self.asset_class in (AssetClass.DURABLE, AssetClass.PLACEHOLDER)


@dataclass(frozen=True)
class AssetLocation:
    """Where a reference lives inside a record: the cover, or one page's image/narration."""

    story_id: str
    field: str
    page_index: int | None = None

    def __post_init__(self) -> None:
        if self.field not in ASSET_FIELDS:
            raise ValueError(f"Unknown asset field '{self.field}'. Use one of: {', '.join(ASSET_FIELDS)}.")
        if self.field == FIELD_COVER and self.page_index is not None:
            raise ValueError("Cover locations cannot carry a page index.")
        if self.field != FIELD_COVER and self.page_index is None:
            raise ValueError(f"'{self.field}' locations require a page index.")

    @property
    def slot(self) -> str:
        return "cover" if self.page_index is None else f"page{self.page_index}"


@dataclass
class PageRecord:
    index: int
    text: str
    image: str = ""
    narration: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "text": self.text,
            "image": self.image,
            "narration": self.narration,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PageRecord":
        try:
            index = int(payload["index"])
            text = str(payload["text"]).strip()
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid page entry: {payload}") from exc
        narration = payload.get("narration")
        return cls(
            index=index,
            text=text,
            image=str(payload.get("image") or ""),
            narration=str(narration) if narration else None,
        )


@dataclass
class StoryRecord:
    """
    A finished story as stored in the library.

    ``published`` is only set once every reachable asset reference is durable or a
    placeholder; see :meth:`all_settled`.
    """

    id: str
    title: str
    pages: list[PageRecord]
    cover: str = ""
    protagonist: str = ""
    theme: str = "default"
    setting: str | None = None
    style: str | None = None
    language: str = "english"
    narration_voice: str | None = None
    published: bool = False
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def __post_init__(self) -> None:
        indices = [page.index for page in self.pages]
        if indices != list(range(len(indices))):
            raise ValueError(f"Page indices must be contiguous from 0, got {indices}.")
        for page in self.pages:
            if not page.text.strip():
                raise ValueError(f"Page {page.index} has no text.")

    def touch(self) -> None:
        self.updated_at = now_iso()

    def page(self, index: int) -> PageRecord:
        if not 0 <= index < len(self.pages):
            raise IndexError(f"Story {self.id} has no page {index}.")
        return self.pages[index]

    def get_url(self, location: AssetLocation) -> str | None:
        if location.field == FIELD_COVER:
            return self.cover
        page = self.page(location.page_index)
        return page.image if location.field == FIELD_IMAGE else page.narration

    def set_url(self, location: AssetLocation, url: str | None) -> None:
        if location.field == FIELD_COVER:
            self.cover = url or ""
        elif location.field == FIELD_IMAGE:
            self.page(location.page_index).image = url or ""
        else:
            self.page(location.page_index).narration = url or None
        self.touch()

    def asset_locations(self) -> Iterator[tuple[AssetLocation, str]]:
        yield AssetLocation(self.id, FIELD_COVER), self.cover
        for page in self.pages:
            yield AssetLocation(self.id, FIELD_IMAGE, page.index), page.image
            if page.narration:
                yield AssetLocation(self.id, FIELD_NARRATION, page.index), page.narration

    def asset_references(
        self,
        classifier: AssetClassifier,
    ) -> list[tuple[AssetLocation, AssetReference]]:
        return [
            (location, AssetReference.of(url, classifier))
            for location, url in self.asset_locations()
        ]

    def locations_of(self, url: str) -> list[AssetLocation]:
        return [location for location, value in self.asset_locations() if value == url]

    def all_settled(self, classifier: AssetClassifier) -> bool:
        return all(ref.settled for _, ref in self.asset_references(classifier))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "cover": self.cover,
            "protagonist": self.protagonist,
            "theme": self.theme,
            "setting": self.setting,
            "style": self.style,
            "language": self.language,
            "narration_voice": self.narration_voice,
            "published": self.published,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "pages": [page.to_dict() for page in self.pages],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StoryRecord":
        for required in ("id", "title", "pages"):
            if required not in payload:
                raise ValueError(f"Story record payload must include '{required}'.")

        pages = sorted(
            (PageRecord.from_dict(entry) for entry in payload.get("pages") or []),
            key=lambda page: page.index,
        )
        created_at = payload.get("created_at") or now_iso()
        return cls(
            id=str(payload["id"]),
            title=str(payload["title"]).strip(),
            pages=pages,
            cover=str(payload.get("cover") or ""),
            protagonist=str(payload.get("protagonist") or ""),
            theme=str(payload.get("theme") or "default"),
            setting=payload.get("setting"),
            style=payload.get("style"),
            language=str(payload.get("language") or "english"),
            narration_voice=payload.get("narration_voice"),
            published=bool(payload.get("published", False)),
            created_at=str(created_at),
            updated_at=str(payload.get("updated_at") or created_at),
        )

    @classmethod
    def from_yaml(cls, source: str | Path) -> "StoryRecord":
        path = Path(source)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError("Story record YAML must deserialize to a mapping.")
        return cls.from_dict(data)

    def copy(self) -> "StoryRecord":
        return replace(self, pages=[replace(page) for page in self.pages])
