"""CLI interface for the pipeline report service.

Command groups are split by functionality: ``serve``, ``report`` and ``db``.
"""

import logging

import click
from dotenv import load_dotenv

from pipeline_report import __version__

# Deployment secrets usually live in .env
load_dotenv(override=True)

logger = logging.getLogger(__name__)


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    help="Show the pipeline-report version and exit.",
)
@click.pass_context
def main(ctx: click.Context, version: bool) -> None:
    """Pipeline Report - world optimization coverage and pipeline monitoring.

    \b
      pipeline-report serve             Start the HTTP server
      pipeline-report report generate   Run one world scan and write the report
      pipeline-report db setup          Create the monitoring tables
    """
    if version:
        click.echo(__version__)
        ctx.exit()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def register_commands() -> None:
    """Attach the serve, report and db groups to ``main``."""
    from pipeline_report.cli.db import db
    from pipeline_report.cli.report import report
    from pipeline_report.cli.serve import serve

    main.add_command(serve)
    main.add_command(report)
    main.add_command(db)


register_commands()

__all__ = ["main"]
