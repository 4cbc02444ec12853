"""Data model for file reviews and the repository report.

Anything that crosses the LLM boundary or is written into the report is a
pydantic model so it can be validated on the way in and serialised on the
way out. Working state that never leaves the process (the walked file, the
language tally) stays a plain dataclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field


class RAGStatus(str, Enum):
    GREEN = "Green"
    AMBER = "Amber"
    RED = "Red"


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ReviewType(str, Enum):
    GENERAL = "general"
    SECURITY = "security"
    CODESTATS = "codestats"


class OutputType(str, Enum):
    JSON = "json"
    HTML = "html"
    PDF = "pdf"


# ---------------------------------------------------------------------------
# LLM response schema
# ---------------------------------------------------------------------------


class ReviewError(BaseModel):
    code: str = Field(description="The code affected, including line number")
    issue: str = Field(description="A description of the error")
    resolution: str = Field(description="The potential resolution")


class Improvement(BaseModel):
    code: str = Field(description="The code affected, including line number")
    suggestion: str = Field(description="A suggestion to improve the code")
    # Older prompts asked for "example"; both spellings are accepted.
    detail: str = Field(
        validation_alias=AliasChoices("detail", "example"),
        description="An example or further detail of the improvement",
    )


class SecurityIssue(BaseModel):
    severity: Severity = Field(description="One of Low, Medium, High, Critical")
    code: str = Field(description="The code affected, including line number")
    threat: str = Field(description="A description of the threat")
    mitigation: str = Field(description="The potential mitigation")


class FileReviewResponse(BaseModel):
    """The single JSON object a model must return for one reviewed file."""

    model_config = ConfigDict(extra="ignore")

    filename: str = Field(default="", description="The name of the file")
    summary: str = Field(description="A summary of the findings of the review")
    file_rag_status: RAGStatus = Field(default=RAGStatus.GREEN, description="In {Red, Amber, Green}")
    errors: list[ReviewError] | None = None
    improvements: list[Improvement] | None = None
    security_issues: list[SecurityIssue] | None = None

    @property
    def error_count(self) -> int:
        return len(self.errors or [])

    @property
    def improvement_count(self) -> int:
        return len(self.improvements or [])

    @property
    def security_issue_count(self) -> int:
        return len(self.security_issues or [])

    def has_severe_security_issue(self) -> bool:
        return any(i.severity in (Severity.HIGH, Severity.CRITICAL) for i in self.security_issues or [])


class FileStatistics(BaseModel):
    """Locally computed facts about a file; never taken from the model."""

    language: str
    extension: str
    size: int
    loc: int
    id_hash: str
    num_commits: int = 0
    frequency: float = 0.0


class FileVerdict(FileReviewResponse):
    statistics: FileStatistics | None = None


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class SecurityIssueBreakdown(BaseModel):
    low: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.low + self.medium + self.high + self.critical

    def add(self, severity: Severity) -> None:
        name = severity.value.lower()
        setattr(self, name, getattr(self, name) + 1)


class ReviewBreakdown(BaseModel):
    """Running totals across every reviewed file, in encounter order."""

    errors: int = 0
    improvements: int = 0
    security_issues: SecurityIssueBreakdown = Field(default_factory=SecurityIssueBreakdown)
    # The concatenated per-file summaries feed the summary pass; the report
    # carries the condensed summary instead.
    summary: str = Field(default="", exclude=True)

    def add(self, review: FileReviewResponse) -> None:
        self.errors += review.error_count
        self.improvements += review.improvement_count
        for issue in review.security_issues or []:
            self.security_issues.add(issue.severity)
        self.summary += review.summary.strip() + "\n"


class LanguageFileType(BaseModel):
    language: str
    extension: str
    percentage: float
    loc: int
    total_size: int
    file_count: int


class Contributor(BaseModel):
    name: str
    last_contribution: datetime
    num_commits: int
    percentage: int


class RepositoryReview(BaseModel):
    repository_name: str
    review_type: ReviewType = ReviewType.GENERAL
    provider: str | None = None
    model: str | None = None
    date: str = ""
    repository_type: str | None = None
    repository_purpose: str | None = None
    summary: str = ""
    repository_rag_status: RAGStatus = RAGStatus.GREEN
    sum_loc: int = 0
    num_files: int = 0
    statistics: ReviewBreakdown = Field(default_factory=ReviewBreakdown)
    contributors: list[Contributor] = Field(default_factory=list)
    language_file_types: list[LanguageFileType] = Field(default_factory=list)
    file_reviews: list[FileVerdict] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Working state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RepositorySpec:
    root: Path
    ignore: frozenset[str] = frozenset({".git"})

    @property
    def name(self) -> str:
        return self.root.resolve().name


@dataclass(frozen=True)
class FileRecord:
    relative_path: str
    name: str
    extension: str
    content: str
    language: str | None = None
    size: int = 0
    loc: int = 0
    id_hash: str = ""


@dataclass
class ExtensionUsage:
    size: int = 0
    file_count: int = 0
    loc: int = 0


@dataclass
class LanguageTally:
    """Per-language, per-extension size/count/LOC totals."""

    usages: dict[str, dict[str, ExtensionUsage]] = field(default_factory=dict)
    total_size: int = 0

    def add_usage(self, language: str, extension: str, size: int, loc: int) -> None:
        usage = self.usages.setdefault(language, {}).setdefault(extension, ExtensionUsage())
        usage.size += size
        usage.file_count += 1
        usage.loc += loc
        self.total_size += size

    @property
    def total_loc(self) -> int:
        return sum(u.loc for exts in self.usages.values() for u in exts.values())

    @property
    def file_count(self) -> int:
        return sum(u.file_count for exts in self.usages.values() for u in exts.values())

    def language_totals(self) -> dict[str, ExtensionUsage]:
        totals: dict[str, ExtensionUsage] = {}
        for language, extensions in self.usages.items():
            agg = totals.setdefault(language, ExtensionUsage())
            for usage in extensions.values():
                agg.size += usage.size
                agg.file_count += usage.file_count
                agg.loc += usage.loc
        return totals

    def to_language_file_types(self) -> list[LanguageFileType]:
        """Flatten the tally; percentages are shares of total LOC.

        When no file has functional lines the share falls back to size so the
        percentages still sum to 100.
        """
        total_loc = self.total_loc
        types = []
        for language in sorted(self.usages):
            for extension in sorted(self.usages[language]):
                usage = self.usages[language][extension]
                if total_loc:
                    percentage = usage.loc / total_loc * 100.0
                elif self.total_size:
                    percentage = usage.size / self.total_size * 100.0
                else:
                    percentage = 0.0
                types.append(
                    LanguageFileType(
                        language=language,
                        extension=extension,
                        percentage=percentage,
                        loc=usage.loc,
                        total_size=usage.size,
                        file_count=usage.file_count,
                    )
                )
        return types
