from __future__ import annotations

from repolens_core.prompts import Prompt
from repolens_core.providers.base import RequestKind
from repolens_core.providers.openai import OpenAIProvider

# The local server ignores the key, but the SDK refuses to start without one.
_PLACEHOLDER_KEY = "lm-studio"


class LMStudioProvider(OpenAIProvider):
    """A local LM Studio server speaking the OpenAI chat-completions protocol."""

    NAME = "lmstudio"
    TEMPERATURE = 0.7

    def _api_key(self) -> str:
        return self.sensitive.api_key.get_secret_value() or _PLACEHOLDER_KEY

    def _organization(self) -> str | None:
        return None

    def _request_kwargs(self, kind: RequestKind, prompt: Prompt) -> dict:
        kwargs: dict = {
            "model": self.model,
            "messages": prompt.to_dicts(),
            "temperature": self.TEMPERATURE,
            "stream": False,
        }
        if self.settings.max_tokens:
            kwargs["max_tokens"] = self.settings.max_tokens
        return kwargs
