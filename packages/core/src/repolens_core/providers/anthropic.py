from __future__ import annotations

from repolens_core.exceptions import ProviderError, ProviderTimeoutError, TransientProviderError
from repolens_core.prompts import Prompt, Role
from repolens_core.providers.base import BAD_GATEWAY, BaseProvider, Choice, ProviderResponse, RequestKind

DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider(BaseProvider):
    NAME = "anthropic"

    def __init__(self, settings, sensitive, client=None):
        super().__init__(settings, sensitive)
        if client is None:
            try:
                from anthropic import Anthropic
            except ImportError:
                raise ImportError(
                    "The 'anthropic' package is required for this provider. "
                    "Install it with: pip install 'repolens[anthropic]'"
                )
            client = Anthropic(api_key=self._require_api_key(), timeout=self.timeout, max_retries=0)
        self.client = client

    def _messages(self, prompt: Prompt) -> list[dict]:
        # The messages API only knows user and assistant turns.
        return [
            {"role": "assistant" if m.role is Role.ASSISTANT else "user", "content": m.content}
            for m in prompt.conversation()
        ]

    def _call_api(self, kind: RequestKind, prompt: Prompt) -> ProviderResponse:
        # Imported inside the method because the anthropic package is optional;
        # __init__ already validated it is installed before we reach here.
        import anthropic
        from anthropic.types import TextBlock

        try:
            response = self.client.messages.create(
                model=self.model,
                system=prompt.system_text(),
                messages=self._messages(prompt),
                max_tokens=self.settings.max_tokens or DEFAULT_MAX_TOKENS,
            )
        except anthropic.APITimeoutError as e:
            raise ProviderTimeoutError(f"Anthropic API request timed out after {self.timeout}s") from e
        except anthropic.APIStatusError as e:
            if e.status_code == BAD_GATEWAY:
                raise TransientProviderError(f"Anthropic API returned 502: {e}", status_code=e.status_code) from e
            raise ProviderError(f"Anthropic API request failed: {e}", status_code=e.status_code) from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(f"Anthropic API connection failed: {e}") from e

        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return ProviderResponse(
            id=response.id or "",
            model=response.model or self.model,
            choices=[Choice(content="".join(text_blocks).strip())],
        )
