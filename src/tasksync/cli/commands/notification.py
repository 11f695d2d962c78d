"""Notification log commands."""

import logging

import click

from ...notifications import Notification, NotificationType, clear_log, read_log
from ..app import TaskSyncApp
from ..display import console

logger = logging.getLogger(__name__)


@click.group("notification")
def notification() -> None:
    """Inspect sync notifications."""
    pass


@notification.command("log")
@click.option("--clear", is_flag=True, help="Empty the notification log")
@click.pass_obj
def notification_log(app: TaskSyncApp, clear: bool) -> None:
    """Show the notification log."""
    path = app.config.notification_log_path
    try:
        if clear:
            clear_log(path)
            console.print("Notification log cleared")
            return
        lines = read_log(path)
    except OSError as e:
        raise click.ClickException(f"cannot access notification log {path}: {e}")

    if not lines:
        console.print("No notifications in log")
        return

    console.print("[bold]Notification Log:[/bold]")
    for line in lines:
        click.echo(line)


@notification.command("test")
@click.pass_obj
def notification_test(app: TaskSyncApp) -> None:
    """Send a test notification through every channel."""
    if not app.config.notifications_enabled:
        console.print("[yellow]Notifications are disabled[/yellow]")
        return

    try:
        app.notifier.send(
            Notification(
                NotificationType.TEST,
                "tasksync",
                "This is a test notification from tasksync",
            )
        )
    except OSError as e:
        raise click.ClickException(f"failed to send test notification: {e}")
    console.print("Test notification sent")
