"""
Structured representation of the story parameters gathered from the creation form.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

THEMES = {
    "adventure": "Adventure",
    "fantasy": "Fantasy",
    "space": "Space",
    "ocean": "Ocean",
    "dinosaurs": "Dinosaurs",
}

SETTINGS = {
    "forest": "Enchanted Forest",
    "castle": "Magic Castle",
    "space": "Outer Space",
    "underwater": "Underwater World",
    "dinosaurland": "Dinosaur Land",
}

STYLES = {
    "cartoon": "Cartoon",
    "watercolor": "Watercolor",
    "realistic": "Realistic",
    "childrenbook": "Classic Children's Book",
    "papercraft": "Papercraft",
}

MORALS = {
    "friendship": "the value of friendship",
    "courage": "finding courage",
    "respect": "respecting others",
    "environment": "caring for nature",
    "honesty": "telling the truth",
    "perseverance": "never giving up",
}

LENGTH_PRESETS = {
    "short": 5,
    "medium": 10,
    "long": 15,
}

MIN_PAGES = 1
MAX_PAGES = 30


def display_name(mapping: Mapping[str, str], key: str | None) -> str:
    if not key:
        return ""
    return mapping.get(key, key)


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _coerce_optional_int(value: Any, *, field_name: str) -> int | None:
    if value is None or value == "":
        return None

    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Expected an integer-compatible value for {field_name}, got {value!r}"
        ) from exc


def _normalize_key(value: Any, default: str) -> str:
    # Unknown keys are kept as free text; display_name falls back to the raw key.
    text = _coerce_optional_str(value)
    return text.lower() if text else default


@dataclass(frozen=True)
class StoryRequest:
    """
    Canonical representation of the inputs for one generated story.

    Attributes
    ----------
    name:
        Protagonist's name (required).
    age:
        Age in years, if provided.
    theme / setting / style:
        Keys from :data:`THEMES`, :data:`SETTINGS`, :data:`STYLES` (free text tolerated).
    page_count:
        Exact number of pages the finished story must have.
    reading_level / language / moral:
        Narrative tuning knobs.
    character_prompt:
        Optional visual description of a companion character reused in illustrations.
    narration_voice:
        ``male`` / ``female`` (or a raw voice id). ``None`` skips narration.
    """

    name: str
    age: int | None = None
    theme: str = "adventure"
    setting: str = "forest"
    style: str = "cartoon"
    page_count: int = LENGTH_PRESETS["short"]
    reading_level: str = "intermediate"
    language: str = "english"
    moral: str = "friendship"
    character_name: str | None = None
    character_prompt: str | None = None
    narration_voice: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Story request must include a non-empty protagonist name.")
        if not MIN_PAGES <= self.page_count <= MAX_PAGES:
            raise ValueError(
                f"page_count must fall between {MIN_PAGES} and {MAX_PAGES}, "
                f"received {self.page_count}."
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryRequest":
        """
        Build a request from a dict-like object (e.g., parsed JSON/YAML form data).
        """
        name = _coerce_optional_str(data.get("name") or data.get("child_name") or data.get("childName"))
        if name is None:
            raise ValueError("Story data must include a non-empty 'name' field.")

        page_count = _coerce_optional_int(
            data.get("page_count") or data.get("pages"), field_name="page_count"
        )
        if page_count is None:
            length = _coerce_optional_str(data.get("length")) or "short"
            if length.lower() not in LENGTH_PRESETS:
                raise ValueError(
                    f"Unknown story length {length!r}. Use one of: {', '.join(LENGTH_PRESETS)}."
                )
            page_count = LENGTH_PRESETS[length.lower()]

        return cls(
            name=name,
            age=_coerce_optional_int(data.get("age") or data.get("child_age"), field_name="age"),
            theme=_normalize_key(data.get("theme"), "adventure"),
            setting=_normalize_key(data.get("setting"), "forest"),
            style=_normalize_key(data.get("style"), "cartoon"),
            page_count=page_count,
            reading_level=_normalize_key(data.get("reading_level") or data.get("readingLevel"), "intermediate"),
            language=_normalize_key(data.get("language") or data.get("story_language"), "english"),
            moral=_normalize_key(data.get("moral") or data.get("lesson"), "friendship"),
            character_name=_coerce_optional_str(data.get("character_name")),
            character_prompt=_coerce_optional_str(
                data.get("character_prompt") or data.get("generation_prompt")
            ),
            narration_voice=_coerce_optional_str(
                data.get("narration_voice") or data.get("voice")
            ),
        )

    def context_bullets(self) -> list[str]:
        """
        Produce bullet-friendly lines describing the story request, for prompt conditioning.
        """
        bullets: list[str] = [f"Protagonist: {self.name}"]

        if self.age is not None:
            bullets.append(f"Age: {self.age}")

        bullets.append(f"Theme: {display_name(THEMES, self.theme)}")
        bullets.append(f"Setting: {display_name(SETTINGS, self.setting)}")

        if self.character_name:
            bullets.append(f"Companion character: {self.character_name}")

        bullets.append(f"Reading level: {self.reading_level}")
        bullets.append(f"Moral: {display_name(MORALS, self.moral)}")
        bullets.append(f"Story language: {self.language}")

        return bullets

    def summary_for_prompt(self) -> str:
        lines = self.context_bullets()
        return "\n".join(f"- {line}" for line in lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "age": self.age,
            "theme": self.theme,
            "setting": self.setting,
            "style": self.style,
            "page_count": self.page_count,
            "reading_level": self.reading_level,
            "language": self.language,
            "moral": self.moral,
            "character_name": self.character_name,
            "character_prompt": self.character_prompt,
            "narration_voice": self.narration_voice,
        }
