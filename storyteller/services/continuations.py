from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from flask import current_app

from .chapter_generation import StoryPreferences
from .prompting import PromptConfigError, _get_text_generator, load_prompt_entry, reading_level_label

PROMPT_KEY = "continuations"
OPTION_COUNT = 3

_NUMBERED_OPTIONS = re.compile(
    r"(?:1\.|•)\s*(.+?)(?:\n|$)(?:2\.|•)\s*(.+?)(?:\n|$)(?:3\.|•)\s*(.+)",
    re.DOTALL,
)
_NUMBER_PREFIX = re.compile(r"^\d+\.\s*")


class ContinuationError(RuntimeError):
    """Raised when continuation options cannot be produced."""


@dataclass
class ContinuationResult:
    options: List[str]
    used_fallback: bool


def generate_continuations(context: str, preferences: Optional[StoryPreferences] = None) -> ContinuationResult:
    """Suggest three short directions the story could take next."""

    cleaned_context = (context or "").strip()
    if not cleaned_context:
        raise ContinuationError("The story needs at least one chapter before suggesting continuations.")

    preferences = preferences or StoryPreferences()

    try:
        entry = load_prompt_entry(PROMPT_KEY)
    except PromptConfigError as exc:
        raise ContinuationError(str(exc)) from exc

    structural_guidance = preferences.structural_prompt or ""
    system_prompt = entry.render_system(
        reading_level=reading_level_label(preferences.reading_level),
        chapter_length=preferences.chapter_length or current_app.config["DEFAULT_CHAPTER_LENGTH"],
        structural_guidance=structural_guidance,
    )
    final_prompt = entry.render(context=cleaned_context)

    generator = _get_text_generator()
    generation_kwargs = entry.generation_kwargs()

    raw_response: Optional[str] = None
    if generator is not None:
        try:
            raw_response = generator.generate_response(final_prompt, system_prompt=system_prompt, **generation_kwargs)
        except Exception as exc:  # pragma: no cover - defensive logging for external integrations
            current_app.logger.warning("Continuation generation failed; using fallback options. Error: %s", exc)

    options = parse_continuation_options(raw_response)
    if not options:
        return ContinuationResult(options=_fallback_options(cleaned_context), used_fallback=True)
    return ContinuationResult(options=options, used_fallback=False)


def parse_continuation_options(raw_response: Optional[str]) -> List[str]:
    if not raw_response:
        return []

    text = raw_response.strip()
    match = _NUMBERED_OPTIONS.search(text)
    if match:
        options = [group.strip() for group in match.groups()]
        if all(options):
            return options

    lines = [_NUMBER_PREFIX.sub("", line).strip() for line in text.splitlines()]
    return [line for line in lines if line][:OPTION_COUNT]


def _fallback_options(context: str) -> List[str]:
    last_line = context.splitlines()[-1].strip()
    anchor = " ".join(last_line.split()[:6]).rstrip(".!?,;:") or "the last scene"
    return [
        f"An unexpected ally appears right after {anchor}.",
        "A hidden secret comes to light and changes the plan.",
        "The danger grows closer and forces a hard choice.",
    ]
