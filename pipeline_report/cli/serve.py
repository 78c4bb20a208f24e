"""Serve command - HTTP server with the scheduled report generator."""

import logging

import click

from pipeline_report.cli.logging import configure_cli_logging

logger = logging.getLogger(__name__)


@click.command("serve")
@click.option(
    "--host",
    default=None,
    help="Host to bind (default: PIPELINE_REPORT_HOST or [tool.pipeline-report.server])",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Port to bind (default: PIPELINE_REPORT_PORT or [tool.pipeline-report.server])",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Set the logging level",
)
def serve(host: str | None, port: int | None, log_level: str) -> None:
    """Start the HTTP server.

    Report generation runs inside the server when REPORT_SCHEDULE_ENABLED
    is set; REPORT_RUN_ON_STARTUP triggers one run immediately.

    Examples:
        pipeline-report serve
        pipeline-report serve --host 0.0.0.0 --port 5001
        pipeline-report serve --log-level DEBUG
    """
    import uvicorn

    from pipeline_report.server import create_app
    from pipeline_report.settings import get_server_host, get_server_port, get_settings

    log_file = configure_cli_logging("serve", console_level=getattr(logging, log_level))
    logger.debug(f"Logging to {log_file}")

    host = host or get_server_host()
    port = port or get_server_port()
    settings = get_settings()
    if not settings.monitoring_secret:
        logger.warning("MONITORING_SECRET is not set; monitoring ingest will be rejected")

    logger.info(f"Starting pipeline report server on {host}:{port}")
    uvicorn.run(create_app(settings), host=host, port=port, log_level=log_level.lower())
