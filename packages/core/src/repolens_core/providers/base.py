"""Base provider implementing the Template Method pattern.

All providers share the same request algorithm:
    ask() → _call_with_retry() → _call_api()   ← only this differs per provider

Subclasses implement two things only:
  - __init__: validate settings and store the SDK / HTTP client
  - _call_api: make one raw API call and return a normalised ProviderResponse

Each family converts its native response shape into ProviderResponse, so
sanitising and parsing the text downstream never depends on which provider
answered. Retry logic lives here so it is defined once.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from repolens_core.config import ProviderSettings, SensitiveSettings
from repolens_core.exceptions import ConfigurationError, TransientProviderError
from repolens_core.prompts import Prompt

logger = logging.getLogger(__name__)

USER_AGENT = "repolens"
BAD_GATEWAY = 502


class RequestKind(str, Enum):
    REVIEW = "review"
    SUMMARISE = "summarise"


@dataclass
class Choice:
    content: str


@dataclass
class ProviderResponse:
    id: str
    model: str
    choices: list[Choice] = field(default_factory=list)

    @property
    def content(self) -> str:
        return self.choices[0].content if self.choices else ""


class BaseProvider(ABC):
    NAME: str = ""

    def __init__(self, settings: ProviderSettings, sensitive: SensitiveSettings):
        self.settings = settings
        self.sensitive = sensitive
        self.model = settings.active_service().model
        self.timeout = settings.api_timeout
        self.max_retries = settings.max_retries

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def ask(self, kind: RequestKind, prompt: Prompt) -> ProviderResponse:
        """Send *prompt* and return the normalised response.

        Transient failures (HTTP 502, timeouts) are retried; any other
        ProviderError propagates on the first occurrence.
        """
        if prompt.correlation_id:
            logger.debug("%s %s request %s", self.NAME, kind.value, prompt.correlation_id)
        return self._call_with_retry(kind, prompt)

    @property
    def identity(self) -> str:
        return f"{self.NAME}/{self.model}"

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, kind: RequestKind, prompt: Prompt) -> ProviderResponse:
        """Make a single API call and return the converted response.

        Raise TransientProviderError for failures worth retrying and
        ProviderError for everything else.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, kind: RequestKind, prompt: Prompt) -> ProviderResponse:
        """Call _call_api once plus up to ``max_retries`` retries with exponential backoff."""
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                return self._call_api(kind, prompt)
            except TransientProviderError as e:
                if attempt == attempts - 1:
                    logger.error(
                        "%s API failed after %d attempt(s): %s",
                        self.__class__.__name__,
                        attempts,
                        e,
                    )
                    raise
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    attempts,
                    e,
                    delay,
                )
                time.sleep(delay)

    def _require_api_key(self) -> str:
        key = self.sensitive.api_key.get_secret_value()
        if not key:
            raise ConfigurationError(f"sensitive.api_key is required for provider {self.NAME!r}.")
        return key
