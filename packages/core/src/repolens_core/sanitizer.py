"""Recover the review JSON object from a model's free-form text.

Providers wrap JSON in code fences, add prose around it, or emit stray
control characters. Cleaning is tolerant; schema validation afterwards is
strict. Keeping them separate lets each be tested on its own.
"""

from __future__ import annotations

import re

from pydantic import ValidationError

from repolens_core.exceptions import ResponseFormatError, ReviewDeserializationError
from repolens_core.models import FileReviewResponse

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")


def strip_control_characters(text: str) -> str:
    return _CONTROL_CHARS.sub("", text)


def strip_artifacts(text: str) -> str:
    """Return the span from the first ``{`` to the last ``}`` after scrubbing control characters.

    Applying it twice gives the same result as applying it once.
    """
    cleaned = strip_control_characters(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ResponseFormatError(f"No JSON object found in response: {cleaned[:200]!r}")
    return cleaned[start : end + 1]


def parse_file_review(text: str) -> FileReviewResponse:
    candidate = strip_artifacts(text)
    try:
        return FileReviewResponse.model_validate_json(candidate)
    except ValidationError as e:
        raise ReviewDeserializationError(f"Response does not match the file review schema: {e}") from e
