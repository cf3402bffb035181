from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from flask import current_app

from .chapter_generation import StoryPreferences
from .prompting import PromptConfigError, _get_text_generator, load_prompt_entry, reading_level_label

PROMPT_KEY = "story_arc"
DEFAULT_STORY_LENGTH = 7


class StoryArcError(RuntimeError):
    """Raised when a story arc cannot be generated."""


@dataclass
class ArcStep:
    title: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "description": self.description}


@dataclass
class StoryArcResult:
    steps: List[ArcStep]
    prompt: str
    used_fallback: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"steps": [step.to_dict() for step in self.steps]}


def generate_story_arc(
    title: str,
    initial_prompt: str,
    preferences: Optional[StoryPreferences] = None,
) -> StoryArcResult:
    """Draft a chapter-by-chapter arc for a new story.

    Parameters
    ----------
    title:
        The story title supplied by the user.
    initial_prompt:
        The premise the first chapter is built from.
    preferences:
        Reading level, story length, chapter length and structural guidance.
        ``story_length`` decides how many steps the arc has.
    """

    title_text = (title or "").strip()
    prompt_text = (initial_prompt or "").strip()
    if not title_text or not prompt_text:
        raise StoryArcError("A title and an initial prompt are required to draft a story arc.")

    preferences = preferences or StoryPreferences()
    story_length = preferences.story_length or _default_story_length()

    try:
        entry = load_prompt_entry(PROMPT_KEY)
    except PromptConfigError as exc:
        raise StoryArcError(str(exc)) from exc

    structural_guidance = ""
    if preferences.structural_prompt:
        structural_guidance = f"Incorporate this structural guidance into the arc: {preferences.structural_prompt}"

    final_prompt = entry.render(
        title=title_text,
        initial_prompt=prompt_text,
        story_length=story_length,
        reading_level=reading_level_label(preferences.reading_level),
        chapter_length=preferences.chapter_length or current_app.config["DEFAULT_CHAPTER_LENGTH"],
        structural_guidance=structural_guidance,
    )

    generator = _get_text_generator()
    generation_kwargs = entry.generation_kwargs()

    raw_response: Optional[str] = None
    if generator is not None:
        try:
            raw_response = generator.generate_response(
                final_prompt,
                system_prompt=entry.system_prompt,
                **generation_kwargs,
            )
        except Exception as exc:  # pragma: no cover - defensive logging for external integrations
            current_app.logger.warning("LLM story arc generation failed; using fallback arc. Error: %s", exc)

    steps = parse_arc_steps(raw_response)
    used_fallback = False
    if not steps:
        if raw_response:
            current_app.logger.warning("Story arc response was not valid arc JSON; using fallback arc.")
        steps = _fallback_arc(prompt_text, story_length)
        used_fallback = True

    return StoryArcResult(steps=steps, prompt=final_prompt, used_fallback=used_fallback)


def parse_arc_steps(raw_response: Optional[str]) -> List[ArcStep]:
    if not raw_response:
        return []

    try:
        data = json.loads(_strip_code_fence(raw_response))
    except json.JSONDecodeError:
        return []

    raw_steps = data.get("steps") if isinstance(data, dict) else data
    if not isinstance(raw_steps, list):
        return []

    steps: List[ArcStep] = []
    for item in raw_steps:
        if not isinstance(item, dict):
            continue
        title_raw = item.get("title")
        description_raw = item.get("description")
        if not isinstance(title_raw, str) or not isinstance(description_raw, str):
            continue
        step_title = title_raw.strip()
        description = description_raw.strip()
        if not step_title or not description:
            continue
        steps.append(ArcStep(title=step_title, description=description))
    return steps


def arc_step_for_chapter(steps: List[Dict[str, str]], chapter_number: int) -> Optional[Dict[str, str]]:
    """Return the arc step guiding ``chapter_number`` (1-based), if there is one."""

    if chapter_number < 1 or len(steps) < chapter_number:
        return None
    step = steps[chapter_number - 1]
    return step if isinstance(step, dict) else None


_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

_FALLBACK_BEATS = [
    ("The Ordinary World", "Show the protagonist's everyday life and hint at what is missing"),
    ("The Call", "An unexpected event disrupts the routine and demands a response"),
    ("Crossing the Threshold", "The protagonist commits to the journey and leaves safety behind"),
    ("Trials and Allies", "New friends and enemies test the protagonist's resolve"),
    ("The Ordeal", "Everything goes wrong and the protagonist faces their greatest fear"),
    ("The Reward", "A hard-won victory reveals a truth that changes the goal"),
    ("The Return", "The protagonist brings the change home and the story resolves"),
]


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    match = _CODE_FENCE.match(cleaned)
    return match.group(1) if match else cleaned


def _fallback_arc(premise: str, story_length: int) -> List[ArcStep]:
    beats = _FALLBACK_BEATS
    if story_length <= len(beats):
        # Keep the opening and the ending, drop from the middle.
        indices = _spread_indices(len(beats), story_length)
        selected = [beats[index] for index in indices]
    else:
        middle = [
            (f"Rising Complications {number}", "A fresh obstacle raises the stakes and tests a new weakness")
            for number in range(1, story_length - len(beats) + 1)
        ]
        selected = beats[:4] + middle + beats[4:]

    excerpt = _premise_excerpt(premise)
    return [
        ArcStep(title=beat_title, description=f"{description}, rooted in: {excerpt}.")
        for beat_title, description in selected
    ]


def _spread_indices(total: int, count: int) -> List[int]:
    if count <= 1:
        return [0]
    step = (total - 1) / (count - 1)
    return [round(position * step) for position in range(count)]


def _premise_excerpt(premise: str, max_words: int = 18) -> str:
    words = premise.split()
    if len(words) <= max_words:
        return premise.rstrip(".!?")
    return " ".join(words[:max_words]) + "…"


def _default_story_length() -> int:
    try:
        return int(current_app.config.get("DEFAULT_STORY_LENGTH", DEFAULT_STORY_LENGTH))
    except (TypeError, ValueError):
        return DEFAULT_STORY_LENGTH
