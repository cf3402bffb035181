"""Prompt templates from ``prompt_config.json`` and the shared LLM client.

Each top-level key of the config file is one prompt entry::

    {
      "chapter_opening": {
        "system_prompt": "Length: EXACTLY {chapter_length}.",
        "prompt_template": "{chapter_prompt}",
        "parameters": {"max_new_tokens": 512, "temperature": 0.8}
      }
    }

Placeholders use ``{name}`` and are replaced literally, so JSON braces in a
template survive rendering.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from flask import current_app

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_CACHE_KEY = "_TEXT_GENERATOR_INSTANCE"

GENERATION_PARAMETERS = (
    "max_new_tokens",
    "temperature",
    "top_p",
    "presence_penalty",
    "frequency_penalty",
    "seed",
)


class PromptConfigError(RuntimeError):
    """Raised when the prompt configuration is missing or malformed."""


@dataclass(frozen=True)
class PromptEntry:
    key: str
    prompt_template: str
    system_prompt: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def render(self, **values: Any) -> str:
        return apply_template(self.prompt_template, **values)

    def render_system(self, **values: Any) -> str:
        return apply_template(self.system_prompt, **values).strip()

    def generation_kwargs(self) -> Dict[str, Any]:
        return extract_generation_parameters(self.parameters)


def load_prompt_entry(key: str) -> PromptEntry:
    raw = _prompt_config().get(key)
    if raw is None:
        raise PromptConfigError(f"Prompt configuration is missing the '{key}' entry.")
    if not isinstance(raw, dict):
        raise PromptConfigError(f"Prompt configuration entry '{key}' must be an object.")

    template = raw.get("prompt_template")
    if not isinstance(template, str) or not template.strip():
        raise PromptConfigError(f"Prompt configuration entry '{key}' has no prompt_template.")

    parameters = raw.get("parameters")
    return PromptEntry(
        key=key,
        prompt_template=template,
        system_prompt=raw.get("system_prompt") or "",
        parameters=parameters if isinstance(parameters, dict) else {},
    )


def _prompt_config() -> Dict[str, Any]:
    cached = current_app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    configured = current_app.config.get("PROMPT_CONFIG_PATH")
    if not configured:
        raise PromptConfigError("PROMPT_CONFIG_PATH is not configured.")
    path = Path(configured)
    if not path.is_file():
        raise PromptConfigError(f"Prompt configuration file not found at: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PromptConfigError(f"Unable to parse {path.name}: {exc.msg} (line {exc.lineno})") from exc
    if not isinstance(data, dict):
        raise PromptConfigError(f"{path.name} must contain a JSON object.")

    current_app.config[PROMPT_CACHE_KEY] = data
    return data


def extract_generation_parameters(parameters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Keep only the generation options ``generate_response`` accepts."""

    if not isinstance(parameters, Mapping):
        return {}
    return {name: parameters[name] for name in GENERATION_PARAMETERS if parameters.get(name) is not None}


def apply_template(template: str, **values: Any) -> str:
    result = template or ""
    for name, value in values.items():
        result = result.replace("{" + name + "}", value if isinstance(value, str) else str(value))
    return result


def reading_level_label(level: Optional[int]) -> str:
    if level is None:
        return "an unspecified grade"
    if level == 0:
        return "Kindergarten"
    return f"{level} Grade"


def _get_text_generator() -> Optional[Any]:
    """Return the app-wide chat generator, or ``None`` when generation is not configured."""

    config = current_app.config
    if GENERATOR_CACHE_KEY in config:
        return config[GENERATOR_CACHE_KEY]

    generator = None
    api_key = config.get("OPENAI_API_KEY")
    model_name = config.get("OPENAI_MODEL")
    if not api_key:
        current_app.logger.info("OPENAI_API_KEY not configured; stories will use fallback text.")
    else:
        from ..api_handler import OpenAIChatGenerator

        try:
            generator = OpenAIChatGenerator(model_name=model_name, api_key=api_key)
        except Exception as exc:
            current_app.logger.warning("Could not initialise OpenAI generator for '%s': %s", model_name, exc)
        else:
            model, redacted_key = generator.signature()
            current_app.logger.info("Using OpenAI model %s (key %s) for story generation.", model, redacted_key)

    config[GENERATOR_CACHE_KEY] = generator
    return generator
