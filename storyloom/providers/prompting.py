"""
Prompt construction utilities for cover and page illustrations.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Mapping, Sequence

STYLE_DIRECTIONS = {
    "cartoon": "bright cartoon illustration, bold clean outlines, cheerful saturated colors",
    "watercolor": "soft watercolor painting, gentle washes, paper texture, pastel palette",
    "realistic": "semi-realistic digital painting, natural lighting, detailed textures",
    "childrenbook": "classic children's picture-book illustration, warm gouache tones",
    "papercraft": "layered papercraft diorama, cut-paper shapes, soft shadows between layers",
}

NEGATIVE_PROMPT = (
    "text, letters, watermark, logo, frightening imagery, violence, distorted anatomy, "
    "extra limbs, blurry, low quality"
)

_SEED_MOD = 2_147_483_647


@dataclass(frozen=True)
class IllustrationPrompt:
    """Container for the positive and negative prompts passed to the image model."""

    positive: str
    negative: str = NEGATIVE_PROMPT


def build_illustration_prompt(
    protagonist: str,
    scene_text: str,
    *,
    theme: str | None = None,
    setting: str | None = None,
    style: str | None = None,
    age: int | None = None,
    character_notes: str | Sequence[str] | Mapping[str, str] | None = None,
    cover_title: str | None = None,
) -> IllustrationPrompt:
    """
    Build the prompt for a page illustration, or for the cover when ``cover_title`` is set.
    """
    if not protagonist or not protagonist.strip():
        raise ValueError("protagonist must be a non-empty string.")

    if not scene_text or not scene_text.strip():
        raise ValueError("scene_text must be a non-empty string.")

    style_direction = STYLE_DIRECTIONS.get((style or "").lower(), STYLE_DIRECTIONS["cartoon"])
    age_clause = f", a {age}-year-old child," if age is not None else ", a young child,"

    if cover_title:
        task = (
            f"Book cover illustration for the children's story \"{cover_title}\" "
            f"featuring {protagonist}{age_clause} as the hero."
        )
    else:
        task = f"Storybook page illustration featuring {protagonist}{age_clause} as the hero."

    sections = [
        task,
        f"SCENE\n- {scene_text.strip()}",
        f"ART DIRECTION\n- {style_direction}",
    ]

    world_lines = []
    if theme:
        world_lines.append(f"Theme: {theme}")
    if setting:
        world_lines.append(f"Setting: {setting}")
    if world_lines:
        sections.append(_format_bullet_section("WORLD", world_lines))

    character_lines = _normalize_note_input(character_notes)
    if character_lines:
        sections.append(_format_bullet_section("CHARACTER CONTINUITY", character_lines))

    sections.append(
        "RULES\n- Child-safe, wholesome, uplifting mood.\n- No text or lettering in the image."
    )

    return IllustrationPrompt(positive="\n\n".join(sections))


def derive_story_seed(*parts: object) -> int:
    """
    Deterministic seed so every illustration of one story shares a visual baseline.
    """
    hasher = hashlib.blake2b(digest_size=8)
    for part in parts:
        if part is not None:
            hasher.update(str(part).strip().lower().encode("utf-8"))
            hasher.update(b"\x00")
    return int.from_bytes(hasher.digest(), "big") % _SEED_MOD or 1


def _normalize_note_input(
    value: str | Sequence[str] | Mapping[str, str] | None,
) -> list[str]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        items = [f"{key}: {details}" for key, details in value.items()]
    elif isinstance(value, str):
        items = [value]
    else:
        items = [str(item) for item in value]

    lines: list[str] = []
    for item in items:
        for raw in item.replace("\r", "\n").split("\n"):
            cleaned = raw.strip(" \t-•—")
            if cleaned:
                lines.append(cleaned)
    return lines


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
