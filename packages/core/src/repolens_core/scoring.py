"""Deterministic Red/Amber/Green scoring for files and whole repositories."""

from __future__ import annotations

from repolens_core.models import FileReviewResponse, LanguageTally, RAGStatus, ReviewBreakdown

# Per-file thresholds, as a fraction of lines of code.
GREEN_ERROR_RATIO = 0.07
GREEN_SECURITY_RATIO = 0.05
GREEN_IMPROVEMENT_RATIO = 0.15
AMBER_ERROR_RATIO = 0.18
AMBER_SECURITY_RATIO = 0.12
AMBER_IMPROVEMENT_RATIO = 0.40

# Repository thresholds, as issues per reviewed file.
REPO_SECURITY_RATIO = 0.05
REPO_ERROR_RATIO = 0.08
REPO_IMPROVEMENT_RATIO = 0.60


def file_rag_status(review: FileReviewResponse, loc: int) -> RAGStatus:
    """Score one file from its issue counts relative to its lines of code.

    Any High or Critical security issue is Red outright. A file with no
    functional lines is scored as if it had one.
    """
    if review.has_severe_security_issue():
        return RAGStatus.RED

    n = loc if loc > 0 else 1
    er = review.error_count / n
    sr = review.security_issue_count / n
    ir = review.improvement_count / n

    if er <= GREEN_ERROR_RATIO and sr <= GREEN_SECURITY_RATIO and ir <= GREEN_IMPROVEMENT_RATIO:
        return RAGStatus.GREEN
    if er <= AMBER_ERROR_RATIO and sr <= AMBER_SECURITY_RATIO and ir <= AMBER_IMPROVEMENT_RATIO:
        return RAGStatus.AMBER
    return RAGStatus.RED


def repository_rag_status(breakdown: ReviewBreakdown, file_count: int) -> RAGStatus:
    security = breakdown.security_issues
    if security.high or security.critical:
        return RAGStatus.RED
    if file_count <= 0:
        return RAGStatus.GREEN

    sr = security.total / file_count
    er = breakdown.errors / file_count
    ir = breakdown.improvements / file_count
    if sr > REPO_SECURITY_RATIO or er > REPO_ERROR_RATIO or ir > REPO_IMPROVEMENT_RATIO:
        return RAGStatus.AMBER
    return RAGStatus.GREEN


def predominant_language(tally: LanguageTally) -> str | None:
    """The language with the most lines of code; ties go to the larger total size."""
    totals = tally.language_totals()
    if not totals:
        return None
    return max(totals, key=lambda name: (totals[name].loc, totals[name].size))
