"""Resolve a file's language and decide whether it is worth reviewing."""

from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath
from typing import NamedTuple

from repolens_core.linguist.taxonomy import Language, Taxonomy
from repolens_core.utils.code import count_lines_of_code, file_size

logger = logging.getLogger(__name__)

DEFAULT_PREFIX_BYTES = 8192

CONFIGURATION_EXTENSIONS = frozenset(
    {"json", "yaml", "yml", "toml", "ini", "cfg", "conf", "xml", "csv", "lock", "properties", "env"}
)

_SHEBANG = re.compile(r"^#!\s*(\S+)(?:[ \t]+(.*))?")


class Classification(NamedTuple):
    language: Language
    size: int
    loc: int


def _join(patterns: list[str]) -> re.Pattern | None:
    if not patterns:
        return None
    return re.compile("|".join(f"(?:{p})" for p in patterns))


def shebang_interpreter(content: str) -> str | None:
    """Return the interpreter named on a ``#!`` first line, if any.

    ``#!/usr/bin/env python3.11`` and ``#!/usr/bin/python3`` both give
    ``python3``.
    """
    first_line = content.split("\n", 1)[0]
    match = _SHEBANG.match(first_line)
    if not match:
        return None
    interpreter = match.group(1).rsplit("/", 1)[-1]
    if interpreter == "env":
        args = [a for a in (match.group(2) or "").split() if not a.startswith("-") and "=" not in a]
        if not args:
            return None
        interpreter = args[0]
    return re.sub(r"(\.\d+)$", "", interpreter)


class LanguageClassifier:
    """Classify files against a :class:`Taxonomy`.

    Resolution order: a single language claiming the extension, then a single
    language claiming the exact file name, then content heuristics over the
    first ``prefix_bytes`` of the file. Remaining ties go to the highest
    ``priority``; a tie on priority leaves the file unresolved.
    """

    def __init__(self, taxonomy: Taxonomy | None = None, prefix_bytes: int = DEFAULT_PREFIX_BYTES):
        self.taxonomy = taxonomy or Taxonomy.load()
        self.prefix_bytes = prefix_bytes
        self._vendor = _join(self.taxonomy.vendor_patterns)
        self._documentation = _join(self.taxonomy.documentation_patterns)

    # ------------------------------------------------------------------ #
    # Path rejections                                                      #
    # ------------------------------------------------------------------ #

    def is_vendored(self, relative_path: str) -> bool:
        return bool(self._vendor and self._vendor.search(relative_path))

    def is_documentation(self, relative_path: str) -> bool:
        return bool(self._documentation and self._documentation.search(relative_path))

    @staticmethod
    def is_dotfile(relative_path: str) -> bool:
        return PurePosixPath(relative_path).name.startswith(".")

    @staticmethod
    def is_configuration(extension: str) -> bool:
        return extension.lower().lstrip(".") in CONFIGURATION_EXTENSIONS

    def rejection_reason(self, relative_path: str, extension: str) -> str | None:
        if self.is_vendored(relative_path):
            return "vendored"
        if self.is_documentation(relative_path):
            return "documentation"
        if self.is_dotfile(relative_path):
            return "dotfile"
        if self.is_configuration(extension):
            return "configuration"
        return None

    # ------------------------------------------------------------------ #
    # Resolution                                                           #
    # ------------------------------------------------------------------ #

    def resolve_language(self, name: str, extension: str, content: str) -> Language | None:
        by_extension = self.taxonomy.by_extension(extension)
        if len(by_extension) == 1:
            return by_extension[0]

        by_name = self.taxonomy.by_filename(name)
        if len(by_name) == 1:
            return by_name[0]

        prefix = self._prefix(content)
        candidates = by_extension or by_name
        if candidates:
            candidates = self._disambiguate(extension, candidates, prefix)
        else:
            candidates = self.taxonomy.by_interpreter(shebang_interpreter(prefix))
        return _pick_by_priority(candidates)

    def classify(self, relative_path: str, name: str, extension: str, content: str) -> Classification | None:
        reason = self.rejection_reason(relative_path, extension)
        if reason:
            logger.debug("Skipping %s: %s", relative_path, reason)
            return None

        language = self.resolve_language(name, extension, content)
        if language is None:
            logger.debug("Skipping %s: language unresolved", relative_path)
            return None
        if not language.is_reviewable:
            logger.debug("Skipping %s: %s is %s", relative_path, language.name, language.type)
            return None

        return Classification(language=language, size=file_size(content), loc=count_lines_of_code(content))

    def _prefix(self, content: str) -> str:
        return content.encode("utf-8")[: self.prefix_bytes].decode("utf-8", errors="ignore")

    def _disambiguate(self, extension: str, candidates: list[Language], prefix: str) -> list[Language]:
        if len(candidates) < 2:
            return candidates
        for rule in self.taxonomy.rules_for(extension):
            if not rule.matches(prefix):
                continue
            narrowed = [lang for lang in candidates if lang.name in rule.languages]
            if narrowed:
                return narrowed
        return candidates


def _pick_by_priority(candidates: list[Language]) -> Language | None:
    if not candidates:
        return None
    best = max(lang.priority for lang in candidates)
    top = [lang for lang in candidates if lang.priority == best]
    if len(top) == 1:
        return top[0]
    logger.debug("Ambiguous language: %s", ", ".join(lang.name for lang in top))
    return None
