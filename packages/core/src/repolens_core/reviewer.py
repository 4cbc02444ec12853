"""Core repository review orchestration."""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import re
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console

from repolens_core.config import Settings
from repolens_core.exceptions import (
    ConfigurationError,
    ProviderError,
    ReportError,
    RepositoryError,
    ResponseFormatError,
    ReviewDeserializationError,
)
from repolens_core.linguist.classifier import LanguageClassifier
from repolens_core.models import (
    FileRecord,
    FileReviewResponse,
    FileStatistics,
    FileVerdict,
    LanguageTally,
    RepositoryReview,
    RepositorySpec,
    ReviewBreakdown,
)
from repolens_core.prompts import Prompt, file_review_message, review_prompt_for, summary_prompt, summary_request
from repolens_core.providers.anthropic import AnthropicProvider
from repolens_core.providers.base import BaseProvider, RequestKind
from repolens_core.providers.gemini import GeminiProvider
from repolens_core.providers.lmstudio import LMStudioProvider
from repolens_core.providers.openai import OpenAIProvider
from repolens_core.providers.vertex import VertexProvider
from repolens_core.sanitizer import parse_file_review, strip_artifacts
from repolens_core.scoring import file_rag_status, predominant_language, repository_rag_status
from repolens_core.utils.code import content_hash
from repolens_core.utils.git import get_contributors, get_file_change_frequency, get_total_commits

console = Console()
logger = logging.getLogger(__name__)

DATE_FORMAT = "%H:%M, %d/%m/%Y"
UNKNOWN_LANGUAGE = "UNKNOWN"

PROVIDERS: dict[str, type[BaseProvider]] = {
    OpenAIProvider.NAME: OpenAIProvider,
    LMStudioProvider.NAME: LMStudioProvider,
    GeminiProvider.NAME: GeminiProvider,
    VertexProvider.NAME: VertexProvider,
    AnthropicProvider.NAME: AnthropicProvider,
}

# "[Rr]elease/" style lines: one two-letter character class, then a literal name.
_CHAR_CLASS_LINE = re.compile(r"^\[(\w)(\w)\]([^\[\]*?]+?)/?$")


def get_provider(settings: Settings) -> BaseProvider:
    provider_settings = settings.active_provider()
    provider_cls = PROVIDERS.get(provider_settings.name)
    if provider_cls is None:
        raise ConfigurationError(
            f"Unsupported provider {provider_settings.name!r}. Choose one of: {', '.join(sorted(PROVIDERS))}."
        )
    return provider_cls(provider_settings, settings.sensitive)


# --------------------------------------------------------------------------- #
# Walking the repository                                                      #
# --------------------------------------------------------------------------- #


def validate_repository(path: str | Path) -> Path:
    root = Path(path).expanduser()
    if not root.is_dir():
        raise RepositoryError(f"Repository path is not a directory: {root}")
    if not (root / ".git").is_dir():
        raise RepositoryError(f"Not a git repository (no .git directory): {root}")
    return root.resolve()


def expand_gitignore_line(line: str) -> list[str]:
    """Turn one .gitignore line into the ignore entries it stands for.

    ``[Rr]elease/`` gives ``Release`` and ``release``. Comments, blank lines
    and negations give nothing.
    """
    line = line.strip()
    if not line or line.startswith("#") or line.startswith("!"):
        return []
    match = _CHAR_CLASS_LINE.match(line)
    if match:
        first, second, rest = match.groups()
        return [first + rest, second + rest]
    pattern = line.strip("/")
    # fnmatch has no "**"; a leading "**/" already matches at any depth here.
    while pattern.startswith("**/"):
        pattern = pattern[3:]
    return [pattern] if pattern else []


def build_ignore_set(root: Path) -> frozenset[str]:
    ignore = {".git"}
    gitignore = root / ".gitignore"
    if gitignore.is_file():
        try:
            lines = gitignore.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as e:
            logger.warning("Could not read %s: %s", gitignore, e)
            lines = []
        for line in lines:
            ignore.update(expand_gitignore_line(line))
    logger.debug("Ignore set: %s", sorted(ignore))
    return frozenset(ignore)


def build_repository_spec(repository_path: str | Path) -> RepositorySpec:
    root = validate_repository(repository_path)
    return RepositorySpec(root=root, ignore=build_ignore_set(root))


def is_ignored(relative_path: str, ignore: frozenset[str]) -> bool:
    name = relative_path.rsplit("/", 1)[-1]
    for pattern in ignore:
        if name == pattern or fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(relative_path, pattern):
            return True
    return False


def collect_candidate_paths(spec: RepositorySpec) -> list[Path]:
    """List every regular, non-ignored file under the root, sorted by relative path.

    The list is built in full before any file is reviewed, so no directory
    handle is held open across provider calls. Symbolic links are skipped.
    """
    paths = []
    for dirpath, dirnames, filenames in os.walk(spec.root, followlinks=False):
        current = Path(dirpath)
        rel_dir = current.relative_to(spec.root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"
        dirnames[:] = [
            d for d in dirnames if not (current / d).is_symlink() and not is_ignored(prefix + d, spec.ignore)
        ]
        for filename in filenames:
            path = current / filename
            if path.is_symlink() or not path.is_file():
                continue
            if is_ignored(prefix + filename, spec.ignore):
                continue
            paths.append(path)
    paths.sort(key=lambda p: p.relative_to(spec.root).as_posix())
    return paths


def read_file_record(root: Path, path: Path) -> FileRecord | None:
    relative = path.relative_to(root).as_posix()
    try:
        content = path.read_bytes().decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Skipping %s: content is not valid UTF-8", relative)
        return None
    except OSError as e:
        logger.warning("Skipping %s: %s", relative, e)
        return None
    return FileRecord(relative_path=relative, name=path.name, extension=path.suffix.lstrip("."), content=content)


# --------------------------------------------------------------------------- #
# Talking to the provider                                                     #
# --------------------------------------------------------------------------- #


def _log_pretty_json(text: str) -> None:
    try:
        logger.debug("Sanitised review:\n%s", json.dumps(json.loads(text), indent=2))
    except json.JSONDecodeError as e:
        logger.debug("Sanitised review is not valid JSON (%s): %s", e, text)


def review_file(
    provider: BaseProvider,
    prompt: Prompt,
    record: FileRecord,
    max_retries: int = 0,
    verbose_data_output: bool = False,
) -> FileReviewResponse:
    """Ask for a review of one file and parse the answer.

    A response that cannot be recovered as a file review is requested again,
    up to ``max_retries`` more times.
    """
    request = replace(
        prompt.with_user_message(file_review_message(record.relative_path, record.content)),
        correlation_id=record.id_hash[:12] or None,
    )
    attempts = max_retries + 1
    for attempt in range(attempts):
        response = provider.ask(RequestKind.REVIEW, request)
        try:
            cleaned = strip_artifacts(response.content)
            if verbose_data_output:
                _log_pretty_json(cleaned)
            return parse_file_review(cleaned)
        except (ResponseFormatError, ReviewDeserializationError) as e:
            if attempt == attempts - 1:
                raise
            logger.warning(
                "Unusable review for %s (attempt %d/%d): %s",
                record.relative_path,
                attempt + 1,
                attempts,
                e,
            )


def summarise(provider: BaseProvider, breakdown: ReviewBreakdown) -> str:
    prompt = summary_prompt().with_user_message(summary_request(breakdown.summary))
    return provider.ask(RequestKind.SUMMARISE, prompt).content.strip()


def build_verdict(review: FileReviewResponse, record: FileRecord, num_commits: int, frequency: float) -> FileVerdict:
    """Attach locally computed statistics and the computed RAG label to a parsed review."""
    data = review.model_dump()
    data["filename"] = record.relative_path
    data["file_rag_status"] = file_rag_status(review, record.loc)
    data["statistics"] = FileStatistics(
        language=record.language or "",
        extension=record.extension,
        size=record.size,
        loc=record.loc,
        id_hash=record.id_hash,
        num_commits=num_commits,
        frequency=frequency,
    )
    return FileVerdict.model_validate(data)


# --------------------------------------------------------------------------- #
# Pipeline                                                                    #
# --------------------------------------------------------------------------- #


def run_review(settings: Settings, provider: BaseProvider | None = None, now: datetime | None = None) -> RepositoryReview:
    """Run the full repository review pipeline and return the finished report record.

    CodeStats runs classify and measure files but never contact a provider.
    Files whose review cannot be parsed are skipped. Other provider errors
    abort the run unless ``abort_on_provider_error`` is false, in which case
    the file is skipped.
    """
    spec = build_repository_spec(settings.repository_path)
    review_type = settings.review_type
    prompt = review_prompt_for(review_type)
    if prompt is None:
        provider = None
    elif provider is None:
        provider = get_provider(settings)
    if provider is not None:
        logger.info("Reviewing %s with %s", spec.name, provider.identity)

    max_retries = provider.max_retries if provider else 0
    dev = settings.dev
    max_files = dev.max_file_count if dev.max_file_count and dev.max_file_count > 0 else None

    classifier = LanguageClassifier(prefix_bytes=settings.heuristics_prefix_bytes)
    paths = collect_candidate_paths(spec)
    total = len(paths)
    total_commits = get_total_commits(spec.root) if prompt is not None else 0

    tally = LanguageTally()
    breakdown = ReviewBreakdown()
    verdicts: list[FileVerdict] = []
    dispatched = 0

    for i, path in enumerate(paths, 1):
        record = read_file_record(spec.root, path)
        if record is None:
            continue
        classification = classifier.classify(record.relative_path, record.name, record.extension, record.content)
        if classification is None:
            continue
        record = replace(
            record,
            language=classification.language.name,
            size=classification.size,
            loc=classification.loc,
            id_hash=content_hash(record.content),
        )
        tally.add_usage(record.language, record.extension, record.size, record.loc)

        if prompt is None:
            continue
        if max_files is not None and dispatched >= max_files:
            continue

        console.print(f"\n[[{i}/{total}]] Reviewing: {record.relative_path}")
        dispatched += 1
        try:
            file_review = review_file(provider, prompt, record, max_retries, dev.verbose_data_output)
        except (ResponseFormatError, ReviewDeserializationError) as e:
            console.print(f"  [yellow]Skipping: could not parse the review ({e.__class__.__name__}).[/yellow]")
            logger.warning("Skipping %s: %s", record.relative_path, e)
            continue
        except ProviderError as e:
            if settings.abort_on_provider_error:
                raise
            console.print(f"  [red]Skipping: provider error: {e}[/red]")
            logger.warning("Skipping %s after provider error: %s", record.relative_path, e)
            continue

        num_commits, frequency = get_file_change_frequency(spec.root, record.relative_path, total_commits)
        verdict = build_verdict(file_review, record, num_commits, frequency)
        verdicts.append(verdict)
        breakdown.add(verdict)
        console.print(f"  {verdict.file_rag_status.value}: {verdict.summary}")

    summary = ""
    if provider is not None and verdicts:
        try:
            summary = summarise(provider, breakdown)
        except ProviderError as e:
            if settings.abort_on_provider_error:
                raise
            logger.warning("Summary pass failed; keeping per-file summaries: %s", e)
            summary = breakdown.summary.strip()

    now = now or datetime.now()
    logger.info("Classified %d file(s), reviewed %d", tally.file_count, len(verdicts))
    return RepositoryReview(
        repository_name=spec.name,
        review_type=review_type,
        provider=provider.NAME if provider else None,
        model=provider.model if provider else None,
        date=now.strftime(DATE_FORMAT),
        repository_type=predominant_language(tally) or UNKNOWN_LANGUAGE,
        summary=summary,
        repository_rag_status=repository_rag_status(breakdown, len(verdicts)),
        sum_loc=tally.total_loc,
        num_files=tally.file_count,
        statistics=breakdown,
        contributors=get_contributors(spec.root),
        language_file_types=tally.to_language_file_types(),
        file_reviews=verdicts,
    )


def replay_report_path(settings: Settings) -> Path | None:
    """The report a developer replay reads, from ``developer_mode.test_path`` / ``test_file``."""
    dev = settings.dev
    if not dev.test_path:
        return None
    base = Path(dev.test_path)
    return base / dev.test_file if dev.test_file else base


def load_report(report_path: str | Path) -> RepositoryReview:
    path = Path(report_path)
    try:
        return RepositoryReview.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ReportError(f"Could not read report {path}: {e}")
    except ValidationError as e:
        raise ReportError(f"{path} is not a repository review report: {e}")


def resummarise(
    settings: Settings,
    report_path: str | Path,
    provider: BaseProvider | None = None,
    now: datetime | None = None,
) -> RepositoryReview:
    """Rerun only the summary pass over the file reviews of an existing JSON report.

    The returned review is dated ``now``; everything except the summary,
    totals, repository label and provider comes from the saved report.
    """
    review = load_report(report_path)
    breakdown = ReviewBreakdown()
    for file_review in review.file_reviews:
        breakdown.add(file_review)

    provider = provider or get_provider(settings)
    logger.info("Resummarising %s with %s", review.repository_name, provider.identity)
    review.date = (now or datetime.now()).strftime(DATE_FORMAT)
    review.summary = summarise(provider, breakdown) if review.file_reviews else ""
    review.statistics = breakdown
    review.repository_rag_status = repository_rag_status(breakdown, len(review.file_reviews))
    review.provider = provider.NAME
    review.model = provider.model
    return review
