import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyteller import create_app
from storyteller.config import TestConfig
from storyteller.services import chapter_generation
from storyteller.services.chapter_generation import (
    ChapterGenerationError,
    StoryPreferences,
    enforce_chapter_length,
)
from storyteller.services.chapter_length import (
    ChapterLengthCategory,
    InvalidChapterLengthCategory,
    count_sentences,
    count_words,
    get_length_spec,
)

LONG_CHAPTER = (
    "Mara found the brass key beneath the floorboards of the abandoned lighthouse. "
    "It was warm, as if someone had held it moments before. "
    "Outside, the fog rolled in thick and silent across the harbor. "
    "She heard footsteps on the spiral stairs below. "
    "Nobody else was supposed to know about this place."
)


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


def _generator_returning(text, calls):
    class DummyGenerator:
        def generate_response(self, prompt: str, **kwargs: object) -> str:
            calls.append({"prompt": prompt, **kwargs})
            return text

    return DummyGenerator()


def test_enforce_chapter_length_keeps_conforming_text(app_ctx):
    text = "The old lighthouse keeper watched the storm roll across the dark and restless sea."

    enforcement = enforce_chapter_length(text, "A sentence")

    assert enforcement.content == text
    assert enforcement.valid
    assert not enforcement.truncated
    assert enforcement.category is ChapterLengthCategory.SENTENCE
    assert enforcement.before == enforcement.after


def test_enforce_chapter_length_truncates_long_text(app_ctx):
    enforcement = enforce_chapter_length(LONG_CHAPTER, "A sentence")

    assert enforcement.truncated
    assert enforcement.content == "Mara found the brass key beneath the floorboards of the abandoned lighthouse."
    assert enforcement.valid
    assert enforcement.before.sentences == 5
    assert enforcement.after.sentences == 1
    assert enforcement.after.words == 12


def test_enforce_chapter_length_reports_under_length_text(app_ctx):
    enforcement = enforce_chapter_length("Too short.", "A full paragraph")

    assert enforcement.content == "Too short."
    assert not enforcement.truncated
    assert not enforcement.valid


def test_enforce_chapter_length_rejects_unknown_category(app_ctx):
    with pytest.raises(InvalidChapterLengthCategory):
        enforce_chapter_length(LONG_CHAPTER, "A chapter")


def test_opening_chapter_uses_generator_and_enforces_length(monkeypatch, app_ctx):
    calls = []
    monkeypatch.setattr(chapter_generation, "_get_text_generator", lambda: _generator_returning(LONG_CHAPTER, calls))

    preferences = StoryPreferences(reading_level=4, story_length=5, chapter_length="A few sentences")
    result = chapter_generation.generate_opening_chapter(
        "The Lighthouse Key",
        "A girl finds a key that opens every door in her town.",
        preferences,
        arc_step={"title": "The Call", "description": "Mara discovers the key."},
    )

    assert not result.used_fallback
    assert result.truncated
    assert result.length_valid
    assert not result.is_final
    assert count_sentences(result.content) == 4
    assert result.content.startswith("Mara found the brass key")

    assert len(calls) == 1
    call = calls[0]
    assert 'Write the first chapter of the story "The Lighthouse Key".' in call["prompt"]
    assert '"The Call" - Mara discovers the key.' in call["prompt"]
    assert "A girl finds a key" in call["prompt"]
    assert "Length: EXACTLY A few sentences." in call["system_prompt"]
    assert "Reading level: 4 Grade." in call["system_prompt"]
    assert call["max_new_tokens"] == 512
    assert call["seed"] == 1


def test_next_chapter_includes_context_and_user_input(monkeypatch, app_ctx):
    calls = []
    monkeypatch.setattr(chapter_generation, "_get_text_generator", lambda: _generator_returning(LONG_CHAPTER, calls))

    result = chapter_generation.generate_next_chapter(
        "The Lighthouse Key",
        ["Chapter one text.", "Chapter two text."],
        StoryPreferences(reading_level=0, story_length=7, chapter_length="A full paragraph",
                         structural_prompt="Keep a talking gull nearby."),
        chapter_number=3,
        user_prompt="Mara hides the key.",
    )

    prompt = calls[0]["prompt"]
    assert 'Continue the story "The Lighthouse Key".' in prompt
    assert "User input/context: Mara hides the key." in prompt
    assert "Story so far:\nChapter one text.\n\nChapter two text." in prompt
    assert "Keep a talking gull nearby." in prompt
    assert "Reading level: Kindergarten." in calls[0]["system_prompt"]
    # Five sentences and 51 words sit below "A full paragraph"; nothing is cut.
    assert result.content == LONG_CHAPTER
    assert not result.truncated
    assert not result.length_valid


def test_next_chapter_requires_previous_chapters(app_ctx):
    with pytest.raises(ChapterGenerationError):
        chapter_generation.generate_next_chapter(
            "Empty",
            ["", "   "],
            StoryPreferences(chapter_length="A sentence"),
            chapter_number=1,
        )


def test_opening_chapter_requires_title_and_prompt(app_ctx):
    with pytest.raises(ChapterGenerationError):
        chapter_generation.generate_opening_chapter("", "A premise", StoryPreferences())


@pytest.mark.parametrize("category", list(ChapterLengthCategory))
def test_fallback_chapter_respects_upper_bounds(monkeypatch, app_ctx, category):
    monkeypatch.setattr(chapter_generation, "_get_text_generator", lambda: None)

    result = chapter_generation.generate_opening_chapter(
        "Fallback Tale",
        "A stubborn pilot searches for a lost sky island",
        StoryPreferences(story_length=5, chapter_length=category.value),
        arc_step={"title": "The Ordinary World", "description": "Show the pilot at home"},
    )

    spec = get_length_spec(category)
    assert result.used_fallback
    assert result.content
    assert count_sentences(result.content) <= spec.sentences[1]
    assert count_words(result.content) <= spec.words[1]


def test_generator_failure_falls_back(monkeypatch, app_ctx):
    class FailingGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            raise RuntimeError("service unavailable")

    monkeypatch.setattr(chapter_generation, "_get_text_generator", lambda: FailingGenerator())

    result = chapter_generation.generate_opening_chapter(
        "Fallback Tale",
        "A stubborn pilot",
        StoryPreferences(chapter_length="A small paragraph"),
    )

    assert result.used_fallback


def test_default_chapter_length_comes_from_config(monkeypatch, app_ctx):
    calls = []
    monkeypatch.setattr(chapter_generation, "_get_text_generator", lambda: _generator_returning(LONG_CHAPTER, calls))
    app_ctx.config["DEFAULT_CHAPTER_LENGTH"] = "A sentence"

    result = chapter_generation.generate_opening_chapter("Title", "Premise", StoryPreferences())

    assert "Length: EXACTLY A sentence." in calls[0]["system_prompt"]
    assert count_sentences(result.content) == 1


def test_final_chapter_appends_the_end(monkeypatch, app_ctx):
    calls = []
    monkeypatch.setattr(chapter_generation, "_get_text_generator", lambda: _generator_returning(LONG_CHAPTER, calls))

    result = chapter_generation.generate_next_chapter(
        "The Lighthouse Key",
        ["Earlier chapter."],
        StoryPreferences(story_length=2, chapter_length="A sentence"),
        chapter_number=2,
    )

    assert result.is_final
    assert result.content.endswith("\n\nThe End.")
    assert "FINAL chapter" in calls[0]["system_prompt"]


def test_final_chapter_does_not_repeat_the_end(monkeypatch, app_ctx):
    ending = "The lighthouse went dark for the last time and everyone finally slept. The end."
    monkeypatch.setattr(chapter_generation, "_get_text_generator", lambda: _generator_returning(ending, []))

    result = chapter_generation.generate_next_chapter(
        "The Lighthouse Key",
        ["Earlier chapter."],
        StoryPreferences(story_length=2, chapter_length="A few sentences"),
        chapter_number=2,
    )

    assert result.content == ending
