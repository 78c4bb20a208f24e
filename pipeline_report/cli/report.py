"""Report commands - one-shot world scan and report generation."""

import asyncio
import json
import logging
import os
from pathlib import Path

import click
from rich.console import Console

from pipeline_report.cli.logging import configure_cli_logging

logger = logging.getLogger(__name__)


def _live_console(plain: bool) -> Console | None:
    """Console for a live progress bar, or None for one line per 10%.

    Rich decides whether stdout is an interactive terminal (it honours
    ``FORCE_TERMINAL``); CI logs always get lines.
    """
    if plain or os.environ.get("CI"):
        return None
    console = Console()
    if not console.is_terminal or console.is_dumb_terminal:
        return None
    return console


@click.group()
def report() -> None:
    """Generate optimization coverage reports.

    \b
      pipeline-report report generate              Write report-data.json
      pipeline-report report generate -o out.json  Custom output path
    """


@report.command("generate")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("report-data.json"),
    show_default=True,
    help="Where to write the report blob",
)
@click.option(
    "--record-history",
    is_flag=True,
    help="Also store the scan summary in the optimization history table",
)
@click.option("--plain", is_flag=True, help="Print progress lines instead of a live bar")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def generate(output: Path, record_history: bool, plain: bool, verbose: bool) -> None:
    """Scan the world, reconcile optimization status and write the report.

    Exits non-zero when the scan fails; no file is written in that case.
    """
    from pipeline_report.settings import get_settings
    from pipeline_report.world.runner import run_report_generation

    configure_cli_logging("report", verbose=verbose)
    settings = get_settings()
    console = _live_console(plain)

    if console is not None:
        from rich.progress import (
            BarColumn,
            Progress,
            SpinnerColumn,
            TaskProgressColumn,
            TextColumn,
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting report generation...", total=100)

            def on_progress(percent: float, message: str) -> None:
                progress.update(task, completed=percent, description=message)

            result = asyncio.run(
                run_report_generation(settings=settings, on_progress=on_progress)
            )
            if result.success:
                progress.update(task, completed=100, description="Report generated")
    else:
        last_logged = -10.0

        def on_progress(percent: float, message: str) -> None:
            nonlocal last_logged
            if percent - last_logged >= 10:
                last_logged = percent
                click.echo(f"[{percent:3.0f}%] {message}")

        result = asyncio.run(
            run_report_generation(settings=settings, on_progress=on_progress)
        )

    if not result.success:
        raise click.ClickException(f"Report generation failed: {result.error}")

    output.write_text(json.dumps(result.report_data, separators=(",", ":")))

    if record_history and result.generated_at is not None:
        from pipeline_report.exceptions import StorageError
        from pipeline_report.monitoring.db import create_db_engine, setup_database
        from pipeline_report.monitoring.optimization_history import (
            OptimizationHistoryStore,
        )

        engine = create_db_engine(settings.database_url)
        try:
            setup_database(engine)
            OptimizationHistoryStore(engine).record(result.generated_at, result.stats)
        except StorageError as e:
            raise click.ClickException(f"Could not record history: {e}") from e
        finally:
            engine.dispose()

    stats = result.stats
    click.echo(
        f"Wrote {output}: {stats['totalScenes']} scenes, "
        f"{stats['optimizationPercentage']:.1f}% optimized"
        + (f", {result.failed_batches} failed batches" if result.failed_batches else "")
    )
    if result.worlds_stats:
        worlds = result.worlds_stats
        click.echo(
            f"Worlds: {worlds['totalWorlds']}, "
            f"{worlds['optimizationPercentage']:.1f}% optimized, "
            f"{worlds['failedWorlds']} failed"
        )
