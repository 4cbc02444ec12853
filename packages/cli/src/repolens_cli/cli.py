"""CLI entry point for repolens.

Commands:
  review       review a local git repository with the configured LLM provider
  stats        language statistics only, no provider calls
  resummarise  rerun the summary pass over an existing JSON report
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from repolens_cli.commands.resummarise import resummarise_cmd
from repolens_cli.commands.review import review_cmd
from repolens_cli.commands.stats import stats_cmd

LOG_FORMAT = "%(name)s  %(message)s"


@click.group()
@click.version_option(
    version=importlib.metadata.version("repolens"),
    prog_name="repolens",
)
@click.option(
    "--settings",
    "settings_path",
    default=None,
    help="Path to the runtime settings file (YAML).",
    envvar="SENSITIVE_SETTINGS_PATH",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, settings_path: str | None, verbose: bool):
    """LLM-assisted code review for local git repositories."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = settings_path


main.add_command(review_cmd)
main.add_command(stats_cmd)
main.add_command(resummarise_cmd)
