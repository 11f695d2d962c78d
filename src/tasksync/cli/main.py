"""Command-line interface for the tasksync application.

This is the main entry point that delegates to command modules.
"""

from pathlib import Path
from typing import Any, Optional

import click

from .. import __version__
from ..config import get_config
from ..utils.logging_config import configure_third_party_loggers, setup_logging
from .app import TaskSyncApp
from .commands import notification, sync, task


@click.group()
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Set logging level (default: TASKSYNC_LOG_LEVEL or WARNING)",
)
@click.option("--log-file", type=click.Path(), help="Log to file")
@click.version_option(__version__, prog_name="tasksync")
@click.pass_context
def cli(ctx: Any, log_level: Optional[str], log_file: Optional[str]) -> None:
    """Local-first task manager with offline sync.

    Tasks live in a local SQLite database. Every change is queued and pushed
    to the remote backend by ``tasksync sync`` or the background daemon.
    """
    config = get_config()

    # Set up logging
    setup_logging(
        log_level=log_level or config.log_level,
        log_file=Path(log_file) if log_file else None,
    )
    configure_third_party_loggers()

    app = TaskSyncApp(config)
    ctx.obj = app
    ctx.call_on_close(app.close)


# Register command groups
cli.add_command(sync)
cli.add_command(task)
cli.add_command(notification)


if __name__ == "__main__":
    cli()
