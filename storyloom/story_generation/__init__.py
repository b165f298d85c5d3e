"""
Narrative generation: story requests, prompts, and page parsing.
"""

from .parsing import ParsedStory, default_title, parse_story_text, strip_illustration_leakage
from .prompting import StoryPrompt, build_story_prompt
from .request import LENGTH_PRESETS, StoryRequest
from .story_service import NarrativeGenerator

__all__ = [
    "LENGTH_PRESETS",
    "NarrativeGenerator",
    "ParsedStory",
    "StoryPrompt",
    "StoryRequest",
    "build_story_prompt",
    "default_title",
    "parse_story_text",
    "strip_illustration_leakage",
]
