"""Gemini on Vertex AI over the regional streamGenerateContent endpoint.

Authentication uses application default credentials for the cloud-platform
scope. The endpoint streams a JSON array of partial responses; elements are
decoded as they arrive and their candidate parts joined into one choice.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import httpx

from repolens_core.exceptions import ConfigurationError, ProviderError, ProviderTimeoutError
from repolens_core.prompts import Prompt
from repolens_core.providers.base import USER_AGENT, BaseProvider, ProviderResponse, RequestKind
from repolens_core.providers.gemini import build_contents, check_status, to_provider_response

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class JsonArrayStream:
    """Incrementally decode the elements of a JSON array fed as text chunks."""

    def __init__(self):
        self._decoder = json.JSONDecoder()
        self._buffer = ""
        self._opened = False
        self._closed = False

    def feed(self, chunk: str) -> list[Any]:
        self._buffer += chunk
        items = []
        while True:
            self._buffer = self._buffer.lstrip()
            if not self._buffer or self._closed:
                break
            if not self._opened:
                if self._buffer[0] != "[":
                    raise ProviderError("Streamed response is not a JSON array")
                self._buffer = self._buffer[1:]
                self._opened = True
                continue
            if self._buffer[0] == ",":
                self._buffer = self._buffer[1:]
                continue
            if self._buffer[0] == "]":
                self._buffer = self._buffer[1:]
                self._closed = True
                continue
            try:
                item, end = self._decoder.raw_decode(self._buffer)
            except json.JSONDecodeError:
                # Element not complete yet.
                break
            items.append(item)
            self._buffer = self._buffer[end:]
        return items

    def close(self) -> None:
        if self._buffer.strip() or (self._opened and not self._closed):
            raise ProviderError("Streamed response ended before the JSON array was complete")


class VertexProvider(BaseProvider):
    NAME = "vertex"

    def __init__(self, settings, sensitive, client: httpx.Client | None = None, credentials=None):
        super().__init__(settings, sensitive)
        self.client = client or httpx.Client(timeout=self.timeout, headers={"User-Agent": USER_AGENT})
        self._credentials = credentials

    def api_url(self) -> str:
        project_id = self.sensitive.project_id
        if not project_id:
            raise ConfigurationError("sensitive.project_id is required for provider 'vertex'.")
        return (
            self.settings.api_url.replace("{model}", self.model)
            .replace("{region}", self.sensitive.region)
            .replace("{project_id}", project_id)
        )

    def _access_token(self) -> str:
        try:
            if self._credentials is None:
                self._credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
            if not self._credentials.valid:
                self._credentials.refresh(google.auth.transport.requests.Request())
        except google.auth.exceptions.GoogleAuthError as e:
            raise ProviderError(f"Could not obtain application default credentials: {e}") from e
        return self._credentials.token

    def _call_api(self, kind: RequestKind, prompt: Prompt) -> ProviderResponse:
        url = self.api_url()
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        payloads: list[dict] = []
        stream = JsonArrayStream()
        try:
            with self.client.stream("POST", url, json=build_contents(prompt), headers=headers) as response:
                check_status(response.status_code)
                for chunk in response.iter_text():
                    payloads.extend(stream.feed(chunk))
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Vertex AI request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Vertex AI request failed: {e}") from e
        stream.close()

        usage = [p["usageMetadata"] for p in payloads if isinstance(p, dict) and p.get("usageMetadata")]
        if usage:
            logger.debug("Vertex AI usage: %s", usage[-1])
        return to_provider_response([p for p in payloads if isinstance(p, dict)], self.model)
