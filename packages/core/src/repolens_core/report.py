"""Write a finished RepositoryReview to disk."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from repolens_core.exceptions import OutputNotImplementedError, ReportError
from repolens_core.models import OutputType, RepositoryReview

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
HTML_TEMPLATE = "report.html.j2"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def report_filename(repo_name: str, ext: str, timestamp: datetime) -> str:
    return f"{repo_name}-{timestamp.strftime(TIMESTAMP_FORMAT)}.{ext}"


def format_percentage(value) -> str:
    return f"{float(value):.2f}"


def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(TEMPLATE_DIR),
        autoescape=select_autoescape(["html", "j2"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["format_percentage"] = format_percentage
    return env


def render_html(review: RepositoryReview) -> str:
    try:
        template = _environment().get_template(HTML_TEMPLATE)
        return template.render(review=review)
    except TemplateError as e:
        raise ReportError(f"Could not render the HTML report: {e}") from e


def render_json(review: RepositoryReview) -> str:
    return review.model_dump_json(indent=2)


def ensure_supported(output_type: OutputType) -> OutputType:
    output_type = OutputType(output_type)
    if output_type is OutputType.PDF:
        raise OutputNotImplementedError(f"Output type {output_type.value!r} is not implemented.")
    return output_type


def create_report(
    review: RepositoryReview,
    output_type: OutputType,
    output_dir: str | Path,
    timestamp: datetime | None = None,
) -> Path:
    """Render ``review`` in ``output_type`` and write it under ``output_dir``.

    Returns the path of the written file. PDF output is not implemented and
    raises OutputNotImplementedError before anything is written.
    """
    output_type = ensure_supported(output_type)
    if output_type is OutputType.HTML:
        body = render_html(review)
    else:
        body = render_json(review)

    directory = Path(output_dir)
    path = directory / report_filename(review.repository_name, output_type.value, timestamp or datetime.now())
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
    except OSError as e:
        raise ReportError(f"Could not write report to {path}: {e}") from e
    logger.info("Report written to %s", path)
    return path
