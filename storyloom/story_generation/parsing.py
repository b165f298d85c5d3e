"""
Best-effort parsing of page-marked narrative text into a title and exactly N pages.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from storyloom.common.errors import ParseError

logger = logging.getLogger(__name__)

_TITLE_PATTERN = re.compile(
    r"^[ \t#*>_]*(?:title|t[ií]tulo)[ \t*_]*[:\-–—][ \t*_]*(?P<title>[^\n]+?)[ \t*_]*$",
    re.IGNORECASE | re.MULTILINE,
)
_HEADING_PATTERN = re.compile(r"^[ \t]*#{1,3}[ \t]+(?P<title>[^\n]+?)[ \t#]*$", re.MULTILINE)
_PAGE_MARKER_PATTERN = re.compile(
    r"^[ \t#*>_]*(?:page|p[aá]gina)[ \t]*(?P<number>\d+)[ \t*_]*(?:[:.\-–—)][ \t*_]*)?",
    re.IGNORECASE | re.MULTILINE,
)

_IMAGE_WORDS = (
    r"\b(?:illustration|image|picture|scene|"
    r"ilustra[cç][aã]o|ilustraci[oó]n|imagem|imagen|cena|escena)s?\b"
)
_LEAKAGE_PATTERNS = (
    re.compile(r"\[[^\]\n]*" + _IMAGE_WORDS + r"[^\]\n]*\]", re.IGNORECASE),
    re.compile(r"\(\s*" + _IMAGE_WORDS + r"[^)\n]*\)", re.IGNORECASE),
    re.compile(
        r"^[ \t*_>-]*(?:descri[cç][aã]o da |descripci[oó]n de la )?"
        + _IMAGE_WORDS
        + r"(?:[ \t]+(?:description|prompt|idea|notes?))?[ \t*_]*:[^\n]*$",
        re.IGNORECASE | re.MULTILINE,
    ),
)

_DEFAULT_TITLES = {
    "english": "The Story of {name}",
    "portuguese": "A História de {name}",
    "spanish": "La Historia de {name}",
}

_CONTINUATION_SENTENCES = {
    "english": "{name} smiled and kept going, ready for whatever would come next.",
    "portuguese": "{name} sorriu e seguiu em frente, pronto para o que viesse a seguir.",
    "spanish": "{name} sonrió y siguió adelante, listo para lo que viniera.",
}


@dataclass
class ParsedStory:
    """Title and page texts recovered from a narrative response."""

    title: str
    pages: list[str]
    title_found: bool = True
    issues: list[ParseError] = field(default_factory=list)


def default_title(name: str, language: str = "english") -> str:
    template = _DEFAULT_TITLES.get(language, _DEFAULT_TITLES["english"])
    return template.format(name=name)


def continuation_sentence(name: str, language: str = "english") -> str:
    template = _CONTINUATION_SENTENCES.get(language, _CONTINUATION_SENTENCES["english"])
    return template.format(name=name)


def strip_illustration_leakage(text: str) -> str:
    """
    Remove illustration/image directions the text provider sometimes echoes inline.
    """
    cleaned = text
    for pattern in _LEAKAGE_PATTERNS:
        cleaned = pattern.sub("", cleaned)

    lines = [re.sub(r"[ \t]{2,}", " ", line).strip() for line in cleaned.splitlines()]
    paragraphs: list[str] = []
    current: list[str] = []
    for line in lines:
        if line:
            current.append(line)
        elif current:
            paragraphs.append(" ".join(current))
            current = []
    if current:
        paragraphs.append(" ".join(current))
    return "\n\n".join(paragraphs).strip(" *_")


def _extract_title(text: str) -> tuple[str | None, str]:
    match = _TITLE_PATTERN.search(text)
    if match:
        title = match.group("title").strip().strip('"“”*_')
        return title or None, text[: match.start()] + text[match.end() :]

    heading = _HEADING_PATTERN.search(text)
    if heading and not _PAGE_MARKER_PATTERN.match(heading.group(0)):
        title = heading.group("title").strip().strip('"“”*_')
        return title or None, text[: heading.start()] + text[heading.end() :]

    return None, text


def _extract_pages(text: str) -> list[str]:
    markers = list(_PAGE_MARKER_PATTERN.finditer(text))
    if not markers:
        raise ParseError("No page markers found in narrative text.")

    pages: list[str] = []
    for position, marker in enumerate(markers):
        end = markers[position + 1].start() if position + 1 < len(markers) else len(text)
        pages.append(text[marker.end() : end])
    return pages


def _split_paragraphs(text: str) -> list[str]:
    return [block for block in re.split(r"\n[ \t]*\n", text) if block.strip()]


def parse_story_text(
    raw_text: str,
    *,
    name: str,
    page_count: int,
    language: str = "english",
) -> ParsedStory:
    """
    Parse ``raw_text`` into a title and exactly ``page_count`` non-empty pages.

    Parsing is lossy on purpose: missing pages are padded with a continuation sentence
    naming the protagonist, surplus pages are dropped, and a missing title falls back to
    a templated one. Problems are recorded in ``issues`` instead of being raised.
    """
    if page_count < 1:
        raise ValueError("page_count must be at least 1.")

    issues: list[ParseError] = []
    title, remainder = _extract_title(raw_text or "")
    title_found = title is not None
    if title is None:
        issues.append(ParseError("Narrative text has no title marker."))
        title = default_title(name, language)

    try:
        raw_pages = _extract_pages(remainder)
    except ParseError as exc:
        issues.append(exc)
        raw_pages = _split_paragraphs(remainder)

    pages = [strip_illustration_leakage(page) for page in raw_pages]
    pages = [page for page in pages if page]

    if len(pages) < page_count:
        issues.append(
            ParseError(f"Parsed {len(pages)} pages, expected {page_count}; padding.")
        )
        filler = continuation_sentence(name, language)
        pages.extend(filler for _ in range(page_count - len(pages)))
    elif len(pages) > page_count:
        issues.append(
            ParseError(f"Parsed {len(pages)} pages, expected {page_count}; truncating.")
        )
        pages = pages[:page_count]

    for issue in issues:
        logger.warning("Narrative parsing: %s", issue)

    return ParsedStory(title=title, pages=pages, title_found=title_found, issues=issues)
