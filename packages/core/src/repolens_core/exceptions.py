"""Exception hierarchy for the review pipeline.

Inner layers raise these; the CLI translates any ``RepoLensError`` into a
non-zero exit. File-local problems (undecodable content, unknown language)
are logged and skipped instead of raised.
"""

from __future__ import annotations


class RepoLensError(Exception):
    """Base exception for the entire application."""


# ── Configuration & repository ──────────────────────────────────────────────


class ConfigurationError(RepoLensError):
    """Settings are missing, malformed, or reference an unknown name."""


class RepositoryError(RepoLensError):
    """The repository path is not a directory or not a git repository."""


class PromptError(RepoLensError):
    """A prompt template could not be substituted or parsed."""


# ── Provider errors ─────────────────────────────────────────────────────────


class ProviderError(RepoLensError):
    """A provider call failed and must not be retried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """A provider call failed in a way that is worth retrying (HTTP 502)."""


class ProviderTimeoutError(TransientProviderError):
    """The HTTP round-trip exceeded the provider's ``api_timeout``."""


# ── Response handling ───────────────────────────────────────────────────────


class ResponseFormatError(RepoLensError):
    """No JSON object could be located in the model's text."""


class ReviewDeserializationError(RepoLensError):
    """The located JSON does not satisfy the file review schema."""


# ── Output ──────────────────────────────────────────────────────────────────


class ReportError(RepoLensError):
    """The report could not be written."""


class OutputNotImplementedError(ReportError):
    """The requested output type has no renderer."""
