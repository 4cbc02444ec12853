"""resummarise command: rerun only the summary pass over a saved JSON report."""

from __future__ import annotations

from datetime import datetime

import click
from rich.console import Console

from repolens_core.exceptions import RepoLensError
from repolens_core.report import create_report
from repolens_core.reviewer import replay_report_path, resummarise
from repolens_cli.commands.review import print_review_table

console = Console()


@click.command("resummarise")
@click.option(
    "--report",
    "report_path",
    default=None,
    help="JSON report to replay. Defaults to developer_mode.test_path / test_file.",
)
@click.option("--provider", default=None, help="Provider name from settings.")
@click.option("--service", default=None, help="Service of the chosen provider.")
@click.option("--output-dir", default=None, help="Directory for the new report. Overrides settings.")
@click.pass_context
def resummarise_cmd(ctx, report_path: str | None, provider: str | None, service: str | None, output_dir: str | None):
    """Rebuild the totals of an existing report and ask for a fresh summary.

    Only the summary request is sent; the per-file reviews are reused as-is.
    """
    from repolens_core.config import load_settings

    settings_path = ctx.obj.get("settings_path") if ctx.obj else None
    overrides = {
        "chosen_provider": provider,
        "chosen_service": service,
        "report_output_path": output_dir,
        "output_type": "json",
    }

    try:
        settings = load_settings(settings_path, cli_overrides=overrides)
        path = report_path or replay_report_path(settings)
        if path is None:
            raise click.UsageError("No report given. Pass --report or set developer_mode.test_path.")
        now = datetime.now()
        review = resummarise(settings, path, now=now)
        written = create_report(review, settings.output_type, settings.report_output_path, timestamp=now)
    except RepoLensError as e:
        raise click.ClickException(str(e)) from e

    print_review_table(review)
    console.print(f"\n[green]Report written to {written}[/green]")
