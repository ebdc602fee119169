"""Main CLI entry point for notification-service management commands."""

import click

from notification_service.cli.commands import notifications, server
from notification_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="1.0.0", prog_name="notification-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Notification Service CLI.

    \b
    Commands:
      sweep      Send reminders to unresponsive recipients
      resend     Re-send one delivery attempt
      serve      Run the API server

    \b
    Quick Start:
      notification-service sweep --lookback-days 7
      notification-service resend 0190f3c1-...
      notification-service serve --port 8000
    """
    ctx.ensure_object(dict)


cli.add_command(notifications.sweep)
cli.add_command(notifications.resend)
cli.add_command(server.serve)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
