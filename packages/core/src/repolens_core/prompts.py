"""Prompt templates and the immutable prompt types sent to providers.

Templates are JSON documents of ``messages`` stored in ``prompt_templates/``.
Values for ``{{token}}`` placeholders are JSON-escaped before insertion so a
schema or an apostrophe can never break the surrounding document, and the
substituted text must still parse as JSON.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from repolens_core.exceptions import PromptError
from repolens_core.models import FileReviewResponse, ReviewType

PROMPT_DIR = Path(__file__).parent / "prompt_templates"

DEFAULT_LANGUAGE = "British English"

GENERAL_REVIEW = "general_review"
SECURITY_REVIEW = "security_review"
REPOSITORY_SUMMARY = "repository_summary"

_TOKEN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Prompt:
    messages: tuple[Message, ...]
    correlation_id: str | None = None

    def with_user_message(self, content: str) -> Prompt:
        return replace(self, messages=self.messages + (Message(Role.USER, content),))

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self.messages]

    def system_text(self) -> str:
        return "\n".join(m.content for m in self.messages if m.role is Role.SYSTEM)

    def conversation(self) -> list[Message]:
        return [m for m in self.messages if m.role is not Role.SYSTEM]


def file_review_schema() -> str:
    return json.dumps(FileReviewResponse.model_json_schema())


def default_tokens() -> dict[str, str]:
    return {"language": DEFAULT_LANGUAGE, "file_review_schema": file_review_schema()}


def substitute_tokens(template: str, values: Mapping[str, str]) -> str:
    """Replace every ``{{name}}`` in *template* with the JSON-escaped value."""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in values:
            raise PromptError(f"No value supplied for prompt token '{name}'")
        # Strip the quotes json.dumps adds; the token already sits inside a string.
        return json.dumps(str(values[name]))[1:-1]

    return _TOKEN.sub(_replace, template)


def parse_prompt(text: str, correlation_id: str | None = None) -> Prompt:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PromptError(f"Prompt is not valid JSON after substitution: {e}")
    try:
        messages = tuple(Message(Role(m["role"]), m["content"]) for m in data["messages"])
    except (KeyError, TypeError, ValueError) as e:
        raise PromptError(f"Prompt has an invalid message list: {e}")
    return Prompt(messages=messages, correlation_id=correlation_id)


def load_prompt(name: str, values: Mapping[str, str] | None = None, correlation_id: str | None = None) -> Prompt:
    path = PROMPT_DIR / f"{name}.json"
    if not path.exists():
        raise PromptError(f"Prompt template not found: {name}")
    tokens = default_tokens()
    if values:
        tokens.update(values)
    return parse_prompt(substitute_tokens(path.read_text(encoding="utf-8"), tokens), correlation_id)


def general_review_prompt(values: Mapping[str, str] | None = None) -> Prompt:
    return load_prompt(GENERAL_REVIEW, values)


def security_review_prompt(values: Mapping[str, str] | None = None) -> Prompt:
    return load_prompt(SECURITY_REVIEW, values)


def summary_prompt(values: Mapping[str, str] | None = None) -> Prompt:
    return load_prompt(REPOSITORY_SUMMARY, values)


def review_prompt_for(review_type: ReviewType) -> Prompt | None:
    """Return the review prompt for *review_type*; CodeStats runs send nothing."""
    if review_type is ReviewType.GENERAL:
        return general_review_prompt()
    if review_type is ReviewType.SECURITY:
        return security_review_prompt()
    return None


def file_review_message(relative_path: str, content: str) -> str:
    return f"File name: {relative_path}\n{content}\n"


def summary_request(summaries: str) -> str:
    return f"Concisely summarise the following: {summaries}"
