"""Language taxonomy loaded from Linguist-format YAML data files.

The data directory holds four documents:

    languages.yml      language name → type, extensions, filenames, interpreters
    heuristics.yml     content rules that disambiguate shared extensions
    vendor.yml         regexes for vendored / generated paths
    documentation.yml  regexes for documentation paths

Parsing happens once per data directory; ``Taxonomy.load()`` returns the
cached instance.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import yaml

from repolens_core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"

REVIEWABLE_TYPES = frozenset({"programming", "markup"})


@dataclass(frozen=True)
class Language:
    name: str
    type: str
    extensions: tuple[str, ...] = ()
    filenames: tuple[str, ...] = ()
    interpreters: tuple[str, ...] = ()
    priority: int = 0

    @property
    def is_reviewable(self) -> bool:
        return self.type in REVIEWABLE_TYPES


@dataclass(frozen=True)
class Condition:
    """One clause of a heuristic rule: any of ``patterns`` must (or must not) match."""

    patterns: tuple[re.Pattern, ...]
    negate: bool = False

    def holds(self, content: str) -> bool:
        found = any(p.search(content) for p in self.patterns)
        return not found if self.negate else found


@dataclass(frozen=True)
class HeuristicRule:
    languages: tuple[str, ...]
    conditions: tuple[Condition, ...] = ()

    def matches(self, content: str) -> bool:
        return all(c.holds(content) for c in self.conditions)


@dataclass
class Taxonomy:
    languages: dict[str, Language]
    disambiguations: dict[str, list[HeuristicRule]] = field(default_factory=dict)
    vendor_patterns: list[str] = field(default_factory=list)
    documentation_patterns: list[str] = field(default_factory=list)

    def __post_init__(self):
        self._by_extension: dict[str, list[Language]] = {}
        self._by_filename: dict[str, list[Language]] = {}
        self._by_interpreter: dict[str, list[Language]] = {}
        for language in self.languages.values():
            for ext in language.extensions:
                self._by_extension.setdefault(ext.lower(), []).append(language)
            for name in language.filenames:
                self._by_filename.setdefault(name, []).append(language)
            for interpreter in language.interpreters:
                self._by_interpreter.setdefault(interpreter, []).append(language)

    @classmethod
    def load(cls, data_dir: Path = DATA_DIR) -> Taxonomy:
        return _load_cached(str(data_dir))

    def by_extension(self, extension: str) -> list[Language]:
        if not extension:
            return []
        return list(self._by_extension.get(_dotted(extension), []))

    def by_filename(self, name: str) -> list[Language]:
        return list(self._by_filename.get(name, []))

    def by_interpreter(self, interpreter: str | None) -> list[Language]:
        if not interpreter:
            return []
        return list(self._by_interpreter.get(interpreter, []))

    def rules_for(self, extension: str) -> list[HeuristicRule]:
        if not extension:
            return []
        return self.disambiguations.get(_dotted(extension), [])


def _dotted(extension: str) -> str:
    ext = extension.lower()
    return ext if ext.startswith(".") else f".{ext}"


def _read_yaml(path: Path):
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Taxonomy file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Taxonomy file {path.name} is not valid YAML: {e}")


def _compile(patterns) -> tuple[re.Pattern, ...]:
    if isinstance(patterns, str):
        patterns = [patterns]
    return tuple(re.compile(p, re.MULTILINE) for p in patterns)


def _conditions(rule: dict, named: dict[str, tuple[re.Pattern, ...]]) -> list[Condition]:
    conditions = []
    if "pattern" in rule:
        conditions.append(Condition(_compile(rule["pattern"])))
    if "negative_pattern" in rule:
        conditions.append(Condition(_compile(rule["negative_pattern"]), negate=True))
    if "named_pattern" in rule:
        conditions.append(Condition(named[rule["named_pattern"]]))
    for sub in rule.get("and", []):
        conditions.extend(_conditions(sub, named))
    return conditions


def _parse_languages(raw: dict) -> dict[str, Language]:
    languages = {}
    for name, attrs in (raw or {}).items():
        languages[name] = Language(
            name=name,
            type=attrs.get("type", "programming"),
            extensions=tuple(attrs.get("extensions", [])),
            filenames=tuple(attrs.get("filenames", [])),
            interpreters=tuple(attrs.get("interpreters", [])),
            priority=int(attrs.get("priority", 0)),
        )
    return languages


def _parse_heuristics(raw: dict) -> dict[str, list[HeuristicRule]]:
    raw = raw or {}
    named = {key: _compile(value) for key, value in raw.get("named_patterns", {}).items()}
    disambiguations: dict[str, list[HeuristicRule]] = {}
    for entry in raw.get("disambiguations", []):
        rules = []
        for rule in entry.get("rules", []):
            langs = rule["language"]
            if isinstance(langs, str):
                langs = [langs]
            rules.append(HeuristicRule(languages=tuple(langs), conditions=tuple(_conditions(rule, named))))
        for ext in entry.get("extensions", []):
            disambiguations.setdefault(ext.lower(), []).extend(rules)
    return disambiguations


@lru_cache(maxsize=None)
def _load_cached(data_dir: str) -> Taxonomy:
    base = Path(data_dir)
    taxonomy = Taxonomy(
        languages=_parse_languages(_read_yaml(base / "languages.yml")),
        disambiguations=_parse_heuristics(_read_yaml(base / "heuristics.yml")),
        vendor_patterns=list(_read_yaml(base / "vendor.yml") or []),
        documentation_patterns=list(_read_yaml(base / "documentation.yml") or []),
    )
    logger.debug("Loaded %d languages from %s", len(taxonomy.languages), base)
    return taxonomy
