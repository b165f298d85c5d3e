from __future__ import annotations

from typing import Any, Callable, Iterable

import pytest

from storyloom.assets.cache import EphemeralCache
from storyloom.assets.classifier import AssetClassifier
from storyloom.assets.fetch import AssetFetcher, FetchedAsset, decode_data_uri
from storyloom.assets.migration import AssetMigrationService
from storyloom.assets.storage import DurableStorage
from storyloom.common.config import Settings
from storyloom.common.errors import AssetFetchError, PersistenceError
from storyloom.pipeline import CallbackObserver, StoryOrchestrator
from storyloom.providers.base import Capability, ProviderAdapter, RawAsset
from storyloom.providers.fallback import FallbackChain
from storyloom.providers.health import ProviderHealth
from storyloom.records.store import StoryStore
from storyloom.story_generation import NarrativeGenerator

CDN = "https://cdn.storyloom.test"
PROVIDER_HOST = "https://replicate.delivery/pbxt"


class ScriptedAdapter(ProviderAdapter):
    """
    Adapter that replays a list of outcomes; the last outcome repeats once the list runs out.
    Outcomes may be a RawAsset, an exception instance, or a callable taking the request.
    """

    def __init__(
        self,
        name: str,
        capability: Capability | str,
        outcomes: Iterable[Any],
        *,
        credential: str = "key-a",
        timeout: float = 5.0,
        before_return: Callable[[], None] | None = None,
    ) -> None:
        self.capability = Capability(capability)
        super().__init__(name=name, timeout=timeout, credential_id=credential)
        self._outcomes = list(outcomes)
        self._before_return = before_return
        self.calls: list[Any] = []

    async def _call(self, request: Any) -> RawAsset:
        self.calls.append(request)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if self._before_return is not None:
            self._before_return()
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = outcome(request)
        return outcome


class HTTPStatusError(Exception):
    def __init__(self, status_code: int, message: str = "provider error") -> None:
        super().__init__(message)
        self.status_code = status_code


def text_asset(text: str, provider: str = "fake-text") -> RawAsset:
    return RawAsset(capability=Capability.TEXT, provider=provider, text=text)


def image_asset(url: str, provider: str = "fake-image") -> RawAsset:
    return RawAsset(capability=Capability.IMAGE, provider=provider, url=url)


def speech_asset(data: bytes = b"ID3-audio", provider: str = "fake-speech") -> RawAsset:
    return RawAsset(capability=Capability.SPEECH, provider=provider, data=data, content_type="audio/mpeg")


def counting_images(prefix: str = "img") -> Callable[[Any], RawAsset]:
    counter = {"n": 0}

    def _make(_request: Any) -> RawAsset:
        counter["n"] += 1
        return image_asset(f"{PROVIDER_HOST}/{prefix}-{counter['n']}.png")

    return _make


def story_text(title: str | None, pages: int, name: str = "Luna") -> str:
    lines = [f"TITLE: {title}", ""] if title else []
    for number in range(1, pages + 1):
        lines.append(f"PAGE {number}: {name} swam past coral reef number {number}.")
        lines.append("")
    return "\n".join(lines)


class MemoryStorage(DurableStorage):
    def __init__(self, public_base: str = CDN) -> None:
        self._public_base = public_base
        self.uploads: dict[str, tuple[bytes, str | None]] = {}
        self.fail = False

    @property
    def public_base(self) -> str:
        return self._public_base

    async def upload(self, key: str, data: bytes, *, content_type: str | None = None) -> str:
        if self.fail:
            raise PersistenceError("storage is offline")
        self.uploads[key] = (data, content_type)
        return self.public_url(key)


class FakeFetcher(AssetFetcher):
    def __init__(self) -> None:
        super().__init__(timeout=1.0)
        self.broken: set[str] = set()
        self.unreachable: set[str] = set()
        self.fetched: list[str] = []
        self.probed: list[str] = []

    async def fetch(self, url: str) -> FetchedAsset:
        self.fetched.append(url)
        if url.startswith("data:"):
            return decode_data_uri(url)
        if url in self.broken:
            raise AssetFetchError(f"Download of {url} failed with HTTP 403.")
        return FetchedAsset(data=f"bytes-of-{url}".encode(), content_type="image/png")

    async def probe(self, url: str) -> bool:
        self.probed.append(url)
        return url not in self.unreachable


@pytest.fixture
def classifier() -> AssetClassifier:
    return AssetClassifier(durable_hosts=[CDN])


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def cache() -> EphemeralCache:
    return EphemeralCache()


@pytest.fixture
def store(tmp_path) -> StoryStore:
    story_store = StoryStore(tmp_path / "stories.db")
    yield story_store
    story_store.close()


@pytest.fixture
def migration(storage, store, classifier, cache, fetcher) -> AssetMigrationService:
    return AssetMigrationService(
        storage,
        store,
        classifier,
        cache=cache,
        fetcher=fetcher,
        clock=lambda: 1_700_000_000.0,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        text_api_key="sk-test",
        narration_delay_seconds=0.0,
        narration_backoff_max=0.0,
    )


class RecordingObserver(CallbackObserver):
    def __init__(self) -> None:
        self.stages: list[tuple[str, int, str]] = []
        self.pages: list[tuple[str, int, int]] = []
        self.fixed: list[tuple[str, str]] = []
        super().__init__(
            on_stage_change=lambda *args: self.stages.append(args),
            on_page_progress=lambda *args: self.pages.append(args),
            on_asset_fixed=lambda *args: self.fixed.append(args),
        )


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def make_orchestrator(migration, settings, observer):
    """Build an orchestrator from scripted adapters; returns (orchestrator, adapters)."""

    def _build(
        *,
        text: Iterable[Any],
        images: Iterable[Any],
        speech: Iterable[Any] | None = None,
        settings_override: Settings | None = None,
    ):
        health = ProviderHealth()
        text_adapter = ScriptedAdapter("fake-text", Capability.TEXT, text)
        image_adapter = ScriptedAdapter("fake-image", Capability.IMAGE, images)
        speech_adapter = (
            ScriptedAdapter("fake-speech", Capability.SPEECH, speech) if speech is not None else None
        )
        orchestrator = StoryOrchestrator(
            narrative=NarrativeGenerator(FallbackChain(Capability.TEXT, [text_adapter], health=health)),
            image_chain=FallbackChain(Capability.IMAGE, [image_adapter], health=health),
            speech_chain=(
                FallbackChain(Capability.SPEECH, [speech_adapter], health=health)
                if speech_adapter is not None
                else None
            ),
            migration=migration,
            settings=settings_override or settings,
            health=health,
            observer=observer,
            sleep=_no_sleep,
        )
        return orchestrator, {"text": text_adapter, "image": image_adapter, "speech": speech_adapter}

    return _build


async def _no_sleep(_seconds: float) -> None:
    return None
