"""
Rule-table classification of asset URLs by durability.
"""

from __future__ import annotations

import fnmatch
from enum import Enum
from typing import Iterable
from urllib.parse import parse_qsl, urlsplit

from storyloom.common.config import Settings

from .placeholders import is_placeholder_url


class AssetClass(str, Enum):
    DURABLE = "durable"
    EPHEMERAL = "ephemeral"
    INLINE_DATA = "inline-data"
    PLACEHOLDER = "placeholder"


DEFAULT_DURABLE_HOSTS = (
    "i.ibb.co",
    "image.ibb.co",
    "*.supabase.co",
)

DEFAULT_EPHEMERAL_HOSTS = (
    "oaidalleapiprodscus.blob.core.windows.net",
    "*.blob.core.windows.net",
    "replicate.delivery",
    "*.replicate.delivery",
    "fal.media",
    "*.fal.media",
    "cdn.openai.com",
    "*.oaiusercontent.com",
    "cdn.leonardo.ai",
)

# Query parameters carried by signed, short-lived links (Azure SAS, S3 presign, CloudFront).
TOKEN_MARKERS = ("se", "sig", "x-amz-expires", "x-amz-signature", "expires", "token")


def _host_matches(host: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(host, pattern.lower()) for pattern in patterns)


def _normalize_pattern(pattern: str) -> str:
    """Accept bare hosts, full base URLs, or same-origin path prefixes in configuration."""
    text = pattern.strip().lower()
    if "://" in text:
        text = urlsplit(text).hostname or ""
    elif text.startswith("/"):
        text = text.rstrip("/") + "/"
    return text


class AssetClassifier:
    """
    Pure classifier: the same input always yields the same :class:`AssetClass`.

    Rules, in priority order: inline data, durable host, ephemeral host or signed-token
    query, placeholder path, and finally ``ephemeral`` for anything unknown so that
    unrecognised hosts are re-migrated rather than trusted.
    """

    def __init__(
        self,
        *,
        durable_hosts: Iterable[str] = (),
        ephemeral_hosts: Iterable[str] = (),
        include_defaults: bool = True,
    ) -> None:
        durable = list(DEFAULT_DURABLE_HOSTS) if include_defaults else []
        ephemeral = list(DEFAULT_EPHEMERAL_HOSTS) if include_defaults else []
        durable.extend(durable_hosts)
        ephemeral.extend(ephemeral_hosts)
        normalized = [p for p in map(_normalize_pattern, durable) if p]
        self._durable_hosts = tuple(p for p in normalized if not p.startswith("/"))
        self._durable_paths = tuple(p for p in normalized if p.startswith("/"))
        self._ephemeral_hosts = tuple(p for p in map(_normalize_pattern, ephemeral) if p)

    @classmethod
    def from_settings(cls, settings: Settings, *, storage_base: str | None = None) -> "AssetClassifier":
        durable = list(settings.durable_hosts)
        if storage_base:
            durable.append(storage_base)
        return cls(durable_hosts=durable, ephemeral_hosts=settings.ephemeral_hosts)

    @property
    def durable_hosts(self) -> tuple[str, ...]:
        return self._durable_hosts

    def classify(self, url_or_blob: str | bytes | None) -> AssetClass:
        if isinstance(url_or_blob, (bytes, bytearray)):
            return AssetClass.INLINE_DATA
        if not url_or_blob or not url_or_blob.strip():
            return AssetClass.PLACEHOLDER

        value = url_or_blob.strip()
        if value[:5].lower() == "data:":
            return AssetClass.INLINE_DATA

        parts = urlsplit(value)
        host = (parts.hostname or "").lower()

        if host and _host_matches(host, self._durable_hosts):
            return AssetClass.DURABLE
        if not host and self._durable_paths and parts.path.lower().startswith(self._durable_paths):
            return AssetClass.DURABLE

        if host and _host_matches(host, self._ephemeral_hosts):
            return AssetClass.EPHEMERAL
        query_keys = {key.lower() for key, _ in parse_qsl(parts.query, keep_blank_values=True)}
        if query_keys.intersection(TOKEN_MARKERS):
            return AssetClass.EPHEMERAL

        if is_placeholder_url(value):
            return AssetClass.PLACEHOLDER

        return AssetClass.EPHEMERAL

    def is_durable(self, url: str | None) -> bool:
        return self.classify(url) is AssetClass.DURABLE

    def is_settled(self, url: str | None) -> bool:
        """Durable or placeholder: nothing left to migrate."""
        return self.classify(url) in (AssetClass.DURABLE, AssetClass.PLACEHOLDER)
