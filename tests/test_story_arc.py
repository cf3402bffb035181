import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyteller import create_app
from storyteller.config import TestConfig
from storyteller.services import story_arc
from storyteller.services.chapter_generation import StoryPreferences
from storyteller.services.story_arc import (
    StoryArcError,
    arc_step_for_chapter,
    generate_story_arc,
    parse_arc_steps,
)


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


ARC_PAYLOAD = {
    "steps": [
        {"title": "A Quiet Harbor", "description": "Mara keeps the lighthouse lamp burning."},
        {"title": "The Brass Key", "description": "She finds a key under the floorboards."},
        {"title": "Locked Doors", "description": "Every door in town starts to open for her."},
    ]
}


def test_story_arc_uses_generator_response(monkeypatch, app_ctx):
    calls = []

    class DummyGenerator:
        def generate_response(self, prompt: str, **kwargs: object) -> str:
            calls.append({"prompt": prompt, **kwargs})
            return json.dumps(ARC_PAYLOAD)

    monkeypatch.setattr(story_arc, "_get_text_generator", lambda: DummyGenerator())

    result = generate_story_arc(
        "The Lighthouse Key",
        "A girl finds a key that opens every door.",
        StoryPreferences(reading_level=3, story_length=3, chapter_length="A small paragraph",
                         structural_prompt="Include a talking gull."),
    )

    assert not result.used_fallback
    assert [step.title for step in result.steps] == ["A Quiet Harbor", "The Brass Key", "Locked Doors"]
    assert result.to_dict() == ARC_PAYLOAD

    prompt = calls[0]["prompt"]
    assert "Title: The Lighthouse Key" in prompt
    assert "Story length: 3 chapters" in prompt
    assert "Reading level: 3 Grade" in prompt
    assert "Chapter length: A small paragraph" in prompt
    assert "Include a talking gull." in prompt
    assert "Return exactly 3 steps." in prompt
    assert "story architect" in calls[0]["system_prompt"]
    assert calls[0]["temperature"] == 0.7


def test_story_arc_falls_back_on_invalid_json(monkeypatch, app_ctx):
    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            return "Here is a great arc for you!"

    monkeypatch.setattr(story_arc, "_get_text_generator", lambda: DummyGenerator())

    result = generate_story_arc("Title", "A premise about dragons.", StoryPreferences(story_length=4))

    assert result.used_fallback
    assert len(result.steps) == 4
    assert all("A premise about dragons" in step.description for step in result.steps)


@pytest.mark.parametrize(
    "story_length, expected_titles",
    [
        (1, ["The Ordinary World"]),
        (3, ["The Ordinary World", "Trials and Allies", "The Return"]),
        (7, ["The Ordinary World", "The Call", "Crossing the Threshold", "Trials and Allies",
             "The Ordeal", "The Reward", "The Return"]),
    ],
)
def test_fallback_arc_keeps_opening_and_ending(monkeypatch, app_ctx, story_length, expected_titles):
    monkeypatch.setattr(story_arc, "_get_text_generator", lambda: None)

    result = generate_story_arc("Title", "Premise", StoryPreferences(story_length=story_length))

    assert [step.title for step in result.steps] == expected_titles


def test_fallback_arc_adds_middle_steps_for_long_stories(monkeypatch, app_ctx):
    monkeypatch.setattr(story_arc, "_get_text_generator", lambda: None)

    result = generate_story_arc("Title", "Premise", StoryPreferences(story_length=10))

    titles = [step.title for step in result.steps]
    assert len(titles) == 10
    assert titles[:4] == ["The Ordinary World", "The Call", "Crossing the Threshold", "Trials and Allies"]
    assert titles[4:7] == ["Rising Complications 1", "Rising Complications 2", "Rising Complications 3"]
    assert titles[-1] == "The Return"


def test_story_arc_defaults_length_from_config(monkeypatch, app_ctx):
    monkeypatch.setattr(story_arc, "_get_text_generator", lambda: None)
    app_ctx.config["DEFAULT_STORY_LENGTH"] = 5

    result = generate_story_arc("Title", "Premise")

    assert len(result.steps) == 5


def test_story_arc_requires_title_and_prompt(app_ctx):
    with pytest.raises(StoryArcError):
        generate_story_arc("  ", "Premise")


def test_parse_arc_steps_handles_code_fences_and_bare_lists():
    fenced = "```json\n" + json.dumps(ARC_PAYLOAD) + "\n```"
    bare = json.dumps(ARC_PAYLOAD["steps"][:2])

    assert len(parse_arc_steps(fenced)) == 3
    assert [step.title for step in parse_arc_steps(bare)] == ["A Quiet Harbor", "The Brass Key"]


def test_parse_arc_steps_skips_incomplete_entries():
    raw = json.dumps(
        {
            "steps": [
                {"title": "Kept", "description": "Has both fields."},
                {"title": "No description"},
                {"title": "  ", "description": "Blank title."},
                "not a step",
            ]
        }
    )

    steps = parse_arc_steps(raw)

    assert [step.title for step in steps] == ["Kept"]
    assert parse_arc_steps(None) == []
    assert parse_arc_steps("{not json") == []


def test_arc_step_for_chapter_is_one_based():
    steps = list(ARC_PAYLOAD["steps"])

    assert arc_step_for_chapter(steps, 1)["title"] == "A Quiet Harbor"
    assert arc_step_for_chapter(steps, 3)["title"] == "Locked Doors"
    assert arc_step_for_chapter(steps, 4) is None
    assert arc_step_for_chapter(steps, 0) is None
