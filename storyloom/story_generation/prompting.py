"""
Prompt construction utilities for the narrative generation stage.
"""

from __future__ import annotations

from dataclasses import dataclass

from .request import SETTINGS, THEMES, StoryRequest, display_name

READING_LEVEL_GUIDANCE = {
    "beginner": "Use very short sentences (5-8 words) and simple, familiar words.",
    "intermediate": "Use clear sentences (8-14 words) with a few new, explained words.",
    "advanced": "Use richer vocabulary and varied sentence lengths while staying child-friendly.",
}

LANGUAGE_NAMES = {
    "english": "English",
    "portuguese": "Brazilian Portuguese",
    "spanish": "Spanish",
}

DEFAULT_STRUCTURE_GUIDANCE = (
    "Respond using exactly this layout and nothing else:\n"
    "TITLE: <a short, captivating story title>\n"
    "PAGE 1: <text for page 1>\n"
    "PAGE 2: <text for page 2>\n"
    "...\n"
    "Each page has 2-4 sentences of reader-facing text only. "
    "Never describe illustrations, images, or camera directions inside the page text."
)


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the text provider.
    """

    system: str
    user: str


def build_story_prompt(
    request: StoryRequest,
    *,
    structure_guidance: str = DEFAULT_STRUCTURE_GUIDANCE,
) -> StoryPrompt:
    """
    Build the prompt pair used to solicit a complete, page-marked story from the LLM.
    """
    language = LANGUAGE_NAMES.get(request.language, request.language)
    reading_guidance = READING_LEVEL_GUIDANCE.get(
        request.reading_level, READING_LEVEL_GUIDANCE["intermediate"]
    )

    system_prompt = f"""You are a compassionate children's author who writes illustrated picture books.
You create personalized stories that celebrate the child, nurture confidence, and deliver the requested lesson.

Writing directives:
- Treat {request.name} as the hero of the story. Keep their agency central on every page.
- Maintain a warm, hopeful tone with playful humor and sensory-rich description.
- Follow a clear beginning, middle, climax, and resolution across exactly {request.page_count} pages.
- Make the moral explicit in the final pages.
- {reading_guidance}
- Always write in {language}, including the title.
- Do not include author notes, illustration notes, or meta commentary.

Safety guardrails:
- Avoid frightening peril, violence, or mature themes.
- Use inclusive, respectful language and keep the story safe and kind for children.
"""

    companion = ""
    if request.character_name:
        companion = f"\nInclude {request.character_name} as a friendly companion throughout the story."

    user_prompt = f"""Write a {request.page_count}-page story for this child:

{request.summary_for_prompt()}

The adventure is about {display_name(THEMES, request.theme).lower()} and takes place in the {display_name(SETTINGS, request.setting).lower()}.{companion}

{structure_guidance}"""

    return StoryPrompt(system=system_prompt, user=user_prompt)
