"""
Theme-based default images used whenever a real asset cannot be produced or recovered.
"""

from __future__ import annotations

from urllib.parse import urlsplit

KNOWN_THEMES = ("default", "space", "ocean", "fantasy", "adventure", "dinosaurs")

PLACEHOLDER_PREFIXES = (
    "/images/defaults/",
    "/images/placeholders/",
    "/images/covers/",
)
PLACEHOLDER_FILES = ("/placeholder.svg",)


def _theme_key(theme: str | None) -> str:
    key = (theme or "default").strip().lower()
    return key if key in KNOWN_THEMES else "default"


def default_image_for_theme(theme: str | None = None) -> str:
    return f"/images/defaults/{_theme_key(theme)}.jpg"


def page_placeholder(theme: str | None = None) -> str:
    return f"/images/placeholders/{_theme_key(theme)}.jpg"


def cover_placeholder(theme: str | None = None) -> str:
    return f"/images/covers/{_theme_key(theme)}.jpg"


def placeholder_for(field: str, theme: str | None = None) -> str:
    if field == "cover":
        return cover_placeholder(theme)
    if field == "image":
        return page_placeholder(theme)
    return default_image_for_theme(theme)


def is_placeholder_url(url: str | None) -> bool:
    """
    True when ``url`` points at one of the bundled default assets (query ignored).
    """
    if not url:
        return False
    path = urlsplit(url.strip()).path
    if not path:
        return False
    return path.startswith(PLACEHOLDER_PREFIXES) or path.endswith(PLACEHOLDER_FILES)
