"""OpenAI chat completions client used for story generation.

Services only call :meth:`OpenAIChatGenerator.generate_response`, so any object
with the same method can stand in for it (the tests use small dummy classes).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import openai

LOGGER = logging.getLogger(__name__)

_FLOAT_OPTIONS = ("temperature", "top_p", "frequency_penalty", "presence_penalty")
_LOG_SNIPPET_LIMIT = 1200


class OpenAIChatGenerator:
    """Send a prompt, with an optional system prompt, to a chat model.

    Requires the OpenAI Python SDK 1.x client interface.
    """

    def __init__(self, model_name: str, api_key: str, default_max_tokens: int = 512) -> None:
        self.model_name = (model_name or "").strip()
        self.api_key = (api_key or "").strip()
        if not self.model_name:
            raise ValueError("model_name must be provided.")
        if not self.api_key:
            raise ValueError("api_key must be provided.")
        self.default_max_tokens = int(default_max_tokens or 512)
        self._client = openai.OpenAI(api_key=self.api_key)

    def generate_response(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        frequency_penalty: Optional[float] = None,
        presence_penalty: Optional[float] = None,
        seed: Optional[int] = None,
    ) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = self.default_max_tokens if max_new_tokens is None else int(max_new_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        options = {
            "temperature": temperature,
            "top_p": top_p,
            "frequency_penalty": frequency_penalty,
            "presence_penalty": presence_penalty,
        }
        request: Dict[str, Any] = {
            "model": self.model_name,
            "messages": self._messages(prompt, system_prompt),
            "max_tokens": max_tokens,
            "n": 1,
        }
        request.update({name: float(options[name]) for name in _FLOAT_OPTIONS if options[name] is not None})
        if seed is not None:
            request["seed"] = int(seed)

        LOGGER.debug("Chat completion request: model=%s max_tokens=%s", self.model_name, max_tokens)
        completion = self._client.chat.completions.create(**request)

        text = _completion_text(completion).strip()
        if not text:
            raise RuntimeError(f"Chat completion returned no text: {_log_snippet(completion)}")
        return text

    def signature(self) -> Tuple[str, str]:
        """Return the model name and a redacted API key for display."""

        redacted = f"{self.api_key[:4]}…{self.api_key[-4:]}" if self.api_key else ""
        return self.model_name, redacted

    @staticmethod
    def _messages(prompt: str, system_prompt: Optional[str]) -> List[Dict[str, str]]:
        messages = []
        if system_prompt and system_prompt.strip():
            messages.append({"role": "system", "content": system_prompt.strip()})
        messages.append({"role": "user", "content": prompt})
        return messages


def _completion_text(completion: Any) -> str:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)

    # Content may arrive as a list of typed parts.
    if isinstance(content, list):
        texts = [
            str(part.get("text") or "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        return "\n".join(text for text in texts if text)
    return str(content or "")


def _log_snippet(value: Any) -> str:
    flat = str(value).replace("\n", " ")
    if len(flat) <= _LOG_SNIPPET_LIMIT:
        return flat
    return flat[:_LOG_SNIPPET_LIMIT] + "…"


__all__ = ["OpenAIChatGenerator"]
