"""stats command: language statistics for a repository, without an LLM."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from repolens_core.exceptions import RepoLensError
from repolens_core.models import ReviewType
from repolens_core.reviewer import run_review
from repolens_cli.commands.review import print_language_table

console = Console()


@click.command("stats")
@click.option("--repo-path", default=None, help="Local git repository. Overrides settings.")
@click.option("--top", default=10, show_default=True, help="Number of top contributors to show.")
@click.pass_context
def stats_cmd(ctx, repo_path: str | None, top: int):
    """Show language and contributor statistics for a repository.

    Runs the classification and line counting of a review but never
    contacts a provider, so no settings file or API key is needed.
    """
    from repolens_core.config import load_settings

    settings_path = ctx.obj.get("settings_path") if ctx.obj else None
    overrides = {"repository_path": repo_path, "review_type": ReviewType.CODESTATS.value}

    try:
        settings = load_settings(settings_path, cli_overrides=overrides, require_file=False)
        review = run_review(settings)
    except RepoLensError as e:
        raise click.ClickException(str(e)) from e

    if not review.language_file_types:
        console.print("[yellow]No reviewable source files found in this repository.[/yellow]")
        return

    console.print(f"\n[bold]Code statistics for [cyan]{review.repository_name}[/cyan][/bold]")
    console.print(f"  Predominant language: {review.repository_type}")
    console.print(f"  Files: {review.num_files}")
    console.print(f"  Lines of code: {review.sum_loc}")

    print_language_table(review)

    if review.contributors:
        table = Table(title=f"Top {top} Contributors", show_header=True)
        table.add_column("Name")
        table.add_column("Commits", justify="right")
        table.add_column("% of total", justify="right")
        table.add_column("Last contribution")
        for contributor in review.contributors[:top]:
            table.add_row(
                contributor.name,
                str(contributor.num_commits),
                f"{contributor.percentage}%",
                contributor.last_contribution.strftime("%Y-%m-%d"),
            )
        console.print(table)
