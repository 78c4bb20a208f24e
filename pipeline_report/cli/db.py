"""Database commands."""

import click

from pipeline_report.exceptions import StorageError


@click.group()
def db() -> None:
    """Manage the monitoring database."""


@db.command("setup")
@click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy URL (default: DATABASE_URL, POSTGRES_* or local SQLite)",
)
def setup(database_url: str | None) -> None:
    """Create the monitoring and history tables if they do not exist."""
    from pipeline_report.monitoring.db import create_db_engine, setup_database
    from pipeline_report.settings import get_database_url

    url = database_url or get_database_url()
    engine = create_db_engine(url)
    try:
        setup_database(engine)
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.dispose()
    click.echo(f"Database tables ready at {engine.url.render_as_string(hide_password=True)}")
