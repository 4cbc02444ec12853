"""Google Gemini over the public generateContent REST endpoint."""

from __future__ import annotations

import logging

import httpx

from repolens_core.exceptions import ProviderError, ProviderTimeoutError, TransientProviderError
from repolens_core.prompts import Prompt
from repolens_core.providers.base import BAD_GATEWAY, USER_AGENT, BaseProvider, Choice, ProviderResponse, RequestKind

logger = logging.getLogger(__name__)


def build_contents(prompt: Prompt) -> dict:
    """Gemini takes one user turn; every prompt message becomes a text part."""
    return {"contents": {"role": "user", "parts": [{"text": m.content} for m in prompt.messages]}}


def candidate_texts(payload: dict) -> list[str]:
    texts = []
    for candidate in payload.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            text = part.get("text")
            if text is not None:
                texts.append(text)
    return texts


def to_provider_response(payloads: list[dict], model: str) -> ProviderResponse:
    """Collapse every part of every candidate into a single choice."""
    texts = [text for payload in payloads for text in candidate_texts(payload)]
    return ProviderResponse(id="", model=model, choices=[Choice(content="\n".join(texts))])


def check_status(status_code: int) -> None:
    if 200 <= status_code < 300:
        return
    if status_code == BAD_GATEWAY:
        raise TransientProviderError(f"Bad gateway. Code: {status_code}", status_code=status_code)
    if status_code == 401:
        raise ProviderError(f"Authorization error. Code: {status_code}", status_code=status_code)
    if status_code == 400:
        raise ProviderError(f"API request format not correctly formed. Code: {status_code}", status_code=status_code)
    if status_code == 403:
        raise ProviderError(f"Forbidden. Check API permissions. Code: {status_code}", status_code=status_code)
    raise ProviderError(f"An unexpected HTTP error code: {status_code}", status_code=status_code)


class GeminiProvider(BaseProvider):
    NAME = "google"

    def __init__(self, settings, sensitive, client: httpx.Client | None = None):
        super().__init__(settings, sensitive)
        self.client = client or httpx.Client(timeout=self.timeout, headers={"User-Agent": USER_AGENT})

    def api_url(self) -> str:
        return self.settings.api_url.replace("{model}", self.model)

    def _call_api(self, kind: RequestKind, prompt: Prompt) -> ProviderResponse:
        key = self._require_api_key()
        try:
            response = self.client.post(self.api_url(), params={"key": key}, json=build_contents(prompt))
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Gemini API request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Gemini API request failed: {e}") from e

        check_status(response.status_code)
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(f"Gemini API returned a body that is not JSON: {e}") from e
        logger.debug("Gemini usage: %s", payload.get("usageMetadata"))
        return to_provider_response([payload], self.model)
