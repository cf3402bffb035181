import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyteller import api_handler
from storyteller.api_handler import OpenAIChatGenerator


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _generator(monkeypatch, content):
    completions = FakeCompletions(content)

    class FakeClient:
        def __init__(self, api_key):
            self.api_key = api_key
            self.chat = SimpleNamespace(completions=completions)

    monkeypatch.setattr(api_handler.openai, "OpenAI", FakeClient)
    return OpenAIChatGenerator(model_name="gpt-4.1-mini", api_key="sk-test-1234567890"), completions


def test_generate_response_sends_system_prompt_and_parameters(monkeypatch):
    generator, completions = _generator(monkeypatch, "  Once upon a time.  ")

    text = generator.generate_response(
        "Write a chapter.",
        system_prompt=" Be brief. ",
        max_new_tokens=64,
        temperature=0.8,
        frequency_penalty=1,
        seed=1,
    )

    assert text == "Once upon a time."
    request = completions.calls[0]
    assert request["model"] == "gpt-4.1-mini"
    assert request["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Write a chapter."},
    ]
    assert request["max_tokens"] == 64
    assert request["temperature"] == 0.8
    assert request["frequency_penalty"] == 1.0
    assert request["seed"] == 1
    assert "top_p" not in request


def test_generate_response_uses_default_max_tokens(monkeypatch):
    generator, completions = _generator(monkeypatch, "Text.")

    generator.generate_response("Prompt")

    assert completions.calls[0]["max_tokens"] == 512
    assert completions.calls[0]["messages"] == [{"role": "user", "content": "Prompt"}]


def test_generate_response_joins_text_parts(monkeypatch):
    generator, _ = _generator(
        monkeypatch,
        [{"type": "text", "text": "First part."}, {"type": "image"}, {"type": "text", "text": "Second part."}],
    )

    assert generator.generate_response("Prompt") == "First part.\nSecond part."


def test_empty_completion_raises(monkeypatch):
    generator, _ = _generator(monkeypatch, "   ")

    with pytest.raises(RuntimeError):
        generator.generate_response("Prompt")


def test_invalid_arguments_raise(monkeypatch):
    generator, _ = _generator(monkeypatch, "Text.")

    with pytest.raises(ValueError):
        generator.generate_response("   ")
    with pytest.raises(ValueError):
        generator.generate_response("Prompt", max_new_tokens=0)
    with pytest.raises(ValueError):
        OpenAIChatGenerator(model_name="", api_key="key")
    with pytest.raises(ValueError):
        OpenAIChatGenerator(model_name="gpt-4.1-mini", api_key="")


def test_signature_redacts_api_key(monkeypatch):
    generator, _ = _generator(monkeypatch, "Text.")

    assert generator.signature() == ("gpt-4.1-mini", "sk-t…7890")
