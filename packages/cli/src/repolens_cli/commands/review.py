"""review command: review a local repository and write the report."""

from __future__ import annotations

from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from repolens_core.exceptions import RepoLensError
from repolens_core.models import OutputType, RAGStatus, RepositoryReview, ReviewType
from repolens_core.report import create_report, ensure_supported
from repolens_core.reviewer import replay_report_path, resummarise, run_review

console = Console()

_RAG_STYLE = {RAGStatus.GREEN: "green", RAGStatus.AMBER: "yellow", RAGStatus.RED: "red"}


def rag_label(status: RAGStatus) -> str:
    style = _RAG_STYLE[status]
    return f"[{style}]{status.value}[/{style}]"


def print_language_table(review: RepositoryReview) -> None:
    table = Table(title=f"Languages in {review.repository_name}", show_header=True)
    table.add_column("Language", style="bold")
    table.add_column("Extension")
    table.add_column("Files", justify="right")
    table.add_column("LOC", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("%", justify="right")
    for lft in review.language_file_types:
        table.add_row(
            lft.language,
            lft.extension or "-",
            str(lft.file_count),
            str(lft.loc),
            str(lft.total_size),
            f"{lft.percentage:.2f}",
        )
    console.print(table)


def print_review_table(review: RepositoryReview) -> None:
    if review.file_reviews:
        table = Table(title="File Reviews", show_header=True)
        table.add_column("File")
        table.add_column("RAG")
        table.add_column("Errors", justify="right")
        table.add_column("Improvements", justify="right")
        table.add_column("Security", justify="right")
        for fr in review.file_reviews:
            table.add_row(
                fr.filename,
                rag_label(fr.file_rag_status),
                str(fr.error_count),
                str(fr.improvement_count),
                str(fr.security_issue_count),
            )
        console.print(table)

    sec = review.statistics.security_issues
    console.print(f"\n[bold]{review.repository_name}[/bold]: {rag_label(review.repository_rag_status)}")
    console.print(f"  Predominant language: {review.repository_type}")
    console.print(f"  Files: {review.num_files}  LOC: {review.sum_loc}")
    console.print(
        f"  Errors: {review.statistics.errors}  Improvements: {review.statistics.improvements}  "
        f"Security: {sec.total} (high {sec.high}, critical {sec.critical})"
    )
    if review.summary:
        console.print(f"\n{review.summary}")


@click.command("review")
@click.option("--repo-path", default=None, help="Local git repository to review. Overrides settings.")
@click.option(
    "--review-type",
    type=click.Choice([t.value for t in ReviewType]),
    default=None,
    help="Kind of review. Overrides settings.",
)
@click.option(
    "--output-type",
    type=click.Choice([t.value for t in OutputType]),
    default=None,
    help="Report format. Overrides settings.",
)
@click.option("--provider", default=None, help="Provider name from settings, e.g. openai, google, vertex.")
@click.option("--service", default=None, help="Service of the chosen provider, e.g. gpt-4o.")
@click.option("--output-dir", default=None, help="Directory for the report. Overrides settings.")
@click.option("--max-files", type=click.IntRange(min=1), default=None, help="Stop after reviewing this many files.")
@click.pass_context
def review_cmd(
    ctx,
    repo_path: str | None,
    review_type: str | None,
    output_type: str | None,
    provider: str | None,
    service: str | None,
    output_dir: str | None,
    max_files: int | None,
):
    """Review every source file of a local git repository with an LLM.

    Writes a timestamped report to the output directory and prints a
    summary. Settings come from the file named by --settings or
    SENSITIVE_SETTINGS_PATH; options here override it.
    """
    from repolens_core.config import load_settings

    settings_path = ctx.obj.get("settings_path") if ctx.obj else None
    overrides = {
        "repository_path": repo_path,
        "review_type": review_type,
        "output_type": output_type,
        "chosen_provider": provider,
        "chosen_service": service,
        "report_output_path": output_dir,
        "developer_mode": {"max_file_count": max_files},
    }

    try:
        settings = load_settings(settings_path, cli_overrides=overrides)
        ensure_supported(settings.output_type)
        now = datetime.now()
        replay = replay_report_path(settings)
        if replay is not None:
            console.print(f"[yellow]Developer mode: rerunning the summary of {replay}[/yellow]")
            review = resummarise(settings, replay, now=now)
        else:
            review = run_review(settings, now=now)
        path = create_report(review, settings.output_type, settings.report_output_path, timestamp=now)
    except RepoLensError as e:
        raise click.ClickException(str(e)) from e

    print_review_table(review)
    console.print(f"\n[green]Report written to {path}[/green]")
