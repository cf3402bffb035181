"""Chapter drafting for new and continuing stories.

Every generated chapter passes through :func:`enforce_chapter_length` before it
is returned, so callers always persist text that has been checked against the
story's chapter length category and trimmed when it ran long.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from flask import current_app

from .chapter_length import (
    ChapterLengthCategory,
    ChapterMeasurement,
    get_length_spec,
    measure_chapter,
    resolve_category,
    truncate_to_spec,
    validate_chapter_length,
)
from .prompting import PromptConfigError, PromptEntry, _get_text_generator, load_prompt_entry, reading_level_label

OPENING_PROMPT_KEY = "chapter_opening"
CONTINUATION_PROMPT_KEY = "chapter_continuation"
STORY_ENDING = "The End."

_THE_END_PATTERN = re.compile(r"the end", re.IGNORECASE)


class ChapterGenerationError(RuntimeError):
    """Raised when a chapter cannot be generated."""


@dataclass(frozen=True)
class StoryPreferences:
    reading_level: Optional[int] = None
    story_length: Optional[int] = None
    chapter_length: Optional[str] = None
    structural_prompt: Optional[str] = None


@dataclass
class LengthEnforcement:
    content: str
    category: ChapterLengthCategory
    truncated: bool
    valid: bool
    before: ChapterMeasurement
    after: ChapterMeasurement


@dataclass
class ChapterGenerationResult:
    content: str
    prompt: str
    used_fallback: bool
    truncated: bool
    length_valid: bool
    is_final: bool


def enforce_chapter_length(content: str, category: str) -> LengthEnforcement:
    """Validate ``content`` against ``category`` and truncate it when it does not fit."""

    resolved = resolve_category(category)
    before = measure_chapter(content)

    if validate_chapter_length(content, resolved):
        return LengthEnforcement(
            content=content,
            category=resolved,
            truncated=False,
            valid=True,
            before=before,
            after=before,
        )

    truncated_content = truncate_to_spec(content, resolved)
    after = measure_chapter(truncated_content)
    truncated = truncated_content != content.strip()
    valid = validate_chapter_length(truncated_content, resolved)

    if truncated:
        current_app.logger.info(
            "Chapter content did not fit '%s'; truncated from %s to %s.",
            resolved.value,
            _describe(before),
            _describe(after),
        )
    if not valid:
        spec = get_length_spec(resolved)
        current_app.logger.warning(
            "Chapter content still outside '%s' bounds after truncation (%s; expected sentences %s, words %s).",
            resolved.value,
            _describe(after),
            spec.sentences,
            spec.words,
        )

    return LengthEnforcement(
        content=truncated_content,
        category=resolved,
        truncated=truncated,
        valid=valid,
        before=before,
        after=after,
    )


def generate_opening_chapter(
    title: str,
    initial_prompt: str,
    preferences: StoryPreferences,
    *,
    arc_step: Optional[Dict[str, str]] = None,
) -> ChapterGenerationResult:
    title_text = (title or "").strip()
    prompt_text = (initial_prompt or "").strip()
    if not title_text or not prompt_text:
        raise ChapterGenerationError("A title and an initial prompt are required for the first chapter.")

    chapter_prompt = f'Write the first chapter of the story "{title_text}".'
    chapter_prompt += _guidance_block(arc_step, preferences)
    chapter_prompt += f"\n\nInitial user prompt/context: {prompt_text}"

    return _generate(
        OPENING_PROMPT_KEY,
        chapter_prompt,
        preferences,
        chapter_number=1,
        arc_step=arc_step,
        seed_text=prompt_text,
    )


def generate_next_chapter(
    title: str,
    previous_chapters: Sequence[str],
    preferences: StoryPreferences,
    *,
    chapter_number: int,
    arc_step: Optional[Dict[str, str]] = None,
    user_prompt: Optional[str] = None,
) -> ChapterGenerationResult:
    title_text = (title or "").strip() or "the story"
    context = "\n\n".join(chapter.strip() for chapter in previous_chapters if chapter and chapter.strip())
    if not context:
        raise ChapterGenerationError("The story has no chapters to continue from.")

    user_input = (user_prompt or "").strip()

    chapter_prompt = f'Continue the story "{title_text}".'
    chapter_prompt += _guidance_block(arc_step, preferences)
    if user_input:
        chapter_prompt += f"\n\nUser input/context: {user_input}"
    chapter_prompt += f"\n\nStory so far:\n{context}"

    return _generate(
        CONTINUATION_PROMPT_KEY,
        chapter_prompt,
        preferences,
        chapter_number=chapter_number,
        arc_step=arc_step,
        seed_text=user_input or title_text,
    )


def _generate(
    prompt_key: str,
    chapter_prompt: str,
    preferences: StoryPreferences,
    *,
    chapter_number: int,
    arc_step: Optional[Dict[str, str]],
    seed_text: str,
) -> ChapterGenerationResult:
    category = resolve_category(preferences.chapter_length or current_app.config["DEFAULT_CHAPTER_LENGTH"])
    is_final = bool(preferences.story_length) and chapter_number >= preferences.story_length

    try:
        entry = load_prompt_entry(prompt_key)
    except PromptConfigError as exc:
        raise ChapterGenerationError(str(exc)) from exc

    final_prompt = entry.render(chapter_prompt=chapter_prompt)
    system_prompt = _system_prompt(entry, preferences, category, is_final)

    generator = _get_text_generator()
    generation_kwargs = entry.generation_kwargs()

    content: Optional[str] = None
    if generator is not None:
        try:
            content = generator.generate_response(final_prompt, system_prompt=system_prompt, **generation_kwargs)
        except Exception as exc:  # pragma: no cover - defensive logging for external integrations
            current_app.logger.warning(
                "LLM chapter generation failed for chapter %s; using fallback chapter. Error: %s",
                chapter_number,
                exc,
            )

    used_fallback = False
    if not content or not content.strip():
        content = _fallback_chapter(seed_text, arc_step, category, is_final)
        used_fallback = True

    enforcement = enforce_chapter_length(content.strip(), category)
    final_content = enforcement.content
    if not final_content:
        raise ChapterGenerationError("The chapter generator returned an empty response.")

    if is_final and not _THE_END_PATTERN.search(final_content):
        final_content = f"{final_content}\n\n{STORY_ENDING}"

    return ChapterGenerationResult(
        content=final_content,
        prompt=final_prompt,
        used_fallback=used_fallback,
        truncated=enforcement.truncated,
        length_valid=enforcement.valid,
        is_final=is_final,
    )


def _guidance_block(arc_step: Optional[Dict[str, str]], preferences: StoryPreferences) -> str:
    block = ""
    if arc_step:
        block += (
            f'\n\nThis chapter should follow the arc step: "{arc_step.get("title", "")}"'
            f' - {arc_step.get("description", "")}'
        )
    if preferences.structural_prompt:
        block += f"\n\nIncorporate the following structural guidance: {preferences.structural_prompt}"
    return block


def _system_prompt(
    entry: PromptEntry,
    preferences: StoryPreferences,
    category: ChapterLengthCategory,
    is_final: bool,
) -> str:
    structural_guidance = ""
    if preferences.structural_prompt:
        structural_guidance = f"Crucial story elements to weave in: {preferences.structural_prompt}"
    ending_guidance = ""
    if is_final:
        ending_guidance = (
            "This is the FINAL chapter: resolve the central conflict, show how the characters have changed, "
            f'and finish with "{STORY_ENDING}"'
        )
    return entry.render_system(
        story_length=preferences.story_length or "[NUMBER]",
        chapter_length=category.value,
        reading_level=reading_level_label(preferences.reading_level),
        structural_guidance=structural_guidance,
        ending_guidance=ending_guidance,
    )


def _fallback_chapter(
    seed_text: str,
    arc_step: Optional[Dict[str, str]],
    category: ChapterLengthCategory,
    is_final: bool,
) -> str:
    focus = _excerpt(seed_text)
    beat = (arc_step or {}).get("title") or "the next turn of the story"
    beat_detail = ((arc_step or {}).get("description") or "").rstrip(".!?")

    sentences = [
        f"The story pressed onward toward {beat}, carried by the promise of {focus}.",
        "Every footstep echoed with questions that nobody in the quiet town dared to ask out loud.",
        "Shadows stretched across the old stone walls as the afternoon light began to fade.",
        "A sudden sound from the far end of the street made everyone stop and turn their heads.",
        "Nobody could say for certain what waited beyond the gate, but curiosity was stronger than fear.",
        "Old friends exchanged worried looks, remembering promises they had made long ago.",
        "The wind carried the smell of rain and something sharper that none of them could name.",
        "With a deep breath, the hero stepped forward and chose to face whatever came next.",
    ]
    if beat_detail:
        sentences.insert(1, f"{beat_detail[:1].upper()}{beat_detail[1:]}.")
    if is_final:
        sentences[-1] = "At last the long journey reached its quiet ending, and everyone finally understood what it had cost."

    if category is ChapterLengthCategory.FEW_PARAGRAPHS:
        middle = [
            "Hours passed in a blur of careful plans and whispered arguments about what to do.",
            "Some wanted to turn back, while others insisted that the answer was finally within reach.",
            "In the end they agreed to keep going together, because splitting up felt far more dangerous.",
            "The path ahead twisted through places none of them had ever dared to explore before.",
            "Each new discovery raised another question, and each question made the silence heavier.",
        ]
        return "\n\n".join([" ".join(sentences[:5]), " ".join(middle), " ".join(sentences[5:])])
    return " ".join(sentences)


def _excerpt(text: str, max_words: int = 12) -> str:
    words = (text or "").split()
    if not words:
        return "what lay ahead"
    return " ".join(words[:max_words]).rstrip(".!?,;:")


def _describe(measurement: ChapterMeasurement) -> str:
    return (
        f"{measurement.sentences} sentences, {measurement.words} words, "
        f"{measurement.paragraphs} paragraphs"
    )
