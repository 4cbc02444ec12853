from __future__ import annotations

try:
    import openai as _openai
except ImportError:
    _openai = None  # type: ignore[assignment]

from repolens_core.exceptions import ProviderError, ProviderTimeoutError, TransientProviderError
from repolens_core.prompts import Prompt
from repolens_core.providers.base import BAD_GATEWAY, BaseProvider, Choice, ProviderResponse, RequestKind

# Fixed seed for reproducible sampling on models that honour it.
SEED_VAL = 1234

_CHAT_COMPLETIONS = "/chat/completions"


def sdk_base_url(api_url: str) -> str:
    """The SDK appends ``/chat/completions`` itself; strip it from the configured URL."""
    url = api_url.rstrip("/")
    if url.endswith(_CHAT_COMPLETIONS):
        url = url[: -len(_CHAT_COMPLETIONS)]
    return url


class OpenAIProvider(BaseProvider):
    NAME = "openai"

    def __init__(self, settings, sensitive, client=None):
        super().__init__(settings, sensitive)
        if client is None:
            if _openai is None:
                raise ImportError(
                    "The 'openai' package is required for this provider. Install it with: pip install openai"
                )
            client = _openai.OpenAI(
                api_key=self._api_key(),
                organization=self._organization(),
                base_url=sdk_base_url(settings.api_url),
                timeout=self.timeout,
                # Retries are ours, so only 502s and timeouts repeat.
                max_retries=0,
            )
        self.client = client

    def _api_key(self) -> str:
        return self._require_api_key()

    def _organization(self) -> str | None:
        return self.sensitive.org_id

    def _request_kwargs(self, kind: RequestKind, prompt: Prompt) -> dict:
        kwargs: dict = {"model": self.model, "messages": prompt.to_dicts()}
        if self.settings.max_tokens:
            kwargs["max_tokens"] = self.settings.max_tokens
        if "preview" in self.model or "turbo" in self.model:
            kwargs["seed"] = SEED_VAL
            if kind is RequestKind.REVIEW:
                kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    def _call_api(self, kind: RequestKind, prompt: Prompt) -> ProviderResponse:
        try:
            response = self.client.chat.completions.create(**self._request_kwargs(kind, prompt))
        except _openai.APITimeoutError as e:
            raise ProviderTimeoutError(f"{self.NAME} API request timed out after {self.timeout}s") from e
        except _openai.APIStatusError as e:
            if e.status_code == BAD_GATEWAY:
                raise TransientProviderError(f"{self.NAME} API returned 502: {e}", status_code=e.status_code) from e
            raise ProviderError(f"{self.NAME} API request failed: {e}", status_code=e.status_code) from e
        except _openai.APIConnectionError as e:
            raise ProviderError(f"{self.NAME} API connection failed: {e}") from e

        return ProviderResponse(
            id=response.id or "",
            model=response.model or self.model,
            choices=[Choice(content=c.message.content or "") for c in response.choices],
        )
