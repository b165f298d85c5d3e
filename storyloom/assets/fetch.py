"""
Download, decode, and probe asset URLs.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import mimetypes
from dataclasses import dataclass
from urllib.parse import urlsplit

import aiohttp

from storyloom.common.errors import AssetFetchError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class FetchedAsset:
    data: bytes
    content_type: str

    @property
    def extension(self) -> str:
        return extension_for(self.content_type)

    def as_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


def extension_for(content_type: str | None) -> str:
    if not content_type:
        return ".bin"
    base = content_type.split(";", 1)[0].strip().lower()
    if base in {"image/jpeg", "image/jpg"}:
        return ".jpg"
    if base in {"audio/mpeg", "audio/mp3"}:
        return ".mp3"
    return mimetypes.guess_extension(base) or ".bin"


def decode_data_uri(uri: str) -> FetchedAsset:
    """
    Decode a ``data:<mime>;base64,<payload>`` URI into raw bytes.
    """
    header, separator, payload = uri.partition(",")
    if not separator or not header.lower().startswith("data:"):
        raise AssetFetchError("Inline asset is not a valid data URI.")

    meta = header[5:]
    content_type = meta.split(";", 1)[0] or DEFAULT_CONTENT_TYPE
    try:
        if ";base64" in meta.lower():
            data = base64.b64decode(payload, validate=True)
        else:
            data = payload.encode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise AssetFetchError("Inline asset contains invalid base64 data.") from exc

    if not data:
        raise AssetFetchError("Inline asset is empty.")
    return FetchedAsset(data=data, content_type=content_type)


class AssetFetcher:
    """
    aiohttp-based downloader for provider-hosted assets.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    async def fetch(self, url: str) -> FetchedAsset:
        if url[:5].lower() == "data:":
            return decode_data_uri(url)

        try:
            async with self._open() as session:
                async with session.get(url, timeout=self._timeout) as resp:
                    if resp.status >= 400:
                        raise AssetFetchError(f"Download of {url[:80]} failed with HTTP {resp.status}.")
                    data = await resp.read()
                    content_type = resp.headers.get("Content-Type") or (
                        mimetypes.guess_type(url.split("?", 1)[0])[0] or DEFAULT_CONTENT_TYPE
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise AssetFetchError(f"Download of {url[:80]} failed: {exc}") from exc

        if not data:
            raise AssetFetchError(f"Download of {url[:80]} returned no bytes.")
        return FetchedAsset(data=data, content_type=content_type.split(";", 1)[0].strip())

    @staticmethod
    def can_probe(url: str) -> bool:
        """Only absolute http(s) URLs can be checked from the server side."""
        parts = urlsplit(url)
        return parts.scheme in ("http", "https") and bool(parts.netloc)

    async def probe(self, url: str) -> bool:
        """
        HEAD request used by repair to test whether a URL currently loads.
        """
        if url[:5].lower() == "data:":
            return True
        try:
            async with self._open() as session:
                async with session.head(url, timeout=self._timeout, allow_redirects=True) as resp:
                    return resp.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("Probe of %s failed: %s", url[:80], exc)
            return False

    def _open(self) -> "_SessionContext":
        return _SessionContext(self._session)


class _SessionContext:
    """Reuse an injected session, otherwise open a short-lived one."""

    def __init__(self, session: aiohttp.ClientSession | None) -> None:
        self._shared = session
        self._owned: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> aiohttp.ClientSession:
        if self._shared is not None:
            return self._shared
        self._owned = aiohttp.ClientSession()
        return self._owned

    async def __aexit__(self, *exc_info: object) -> None:
        if self._owned is not None:
            await self._owned.close()
