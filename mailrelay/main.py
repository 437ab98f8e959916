"""
Mail Relay - CLI Entry Point

Command-line interface for running and configuring the relay.
"""

import sys
from pathlib import Path

import click

from .core.config import get_config
from .core.logging_config import setup_logging


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-file", type=str, help="Log file path")
@click.pass_context
def cli(ctx, verbose, log_file):
    """Mail Relay CLI.

    Watches mail.tm inboxes and forwards new messages to Telegram.
    """
    ctx.ensure_object(dict)

    config = get_config()
    log_level = "DEBUG" if verbose else config.app.log_level
    setup_logging(log_level=log_level, log_file=log_file or config.app.log_file)

    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--host", default=None, help="Web server host (default from HOST)")
@click.option("--port", default=None, type=int, help="Web server port (default from PORT)")
@click.pass_context
def serve(ctx, host, port):
    """Start the relay and its HTTP API.

    Example:
        mailrelay serve --port 3000
    """
    from .web.app import run_server

    config = ctx.obj["config"]
    errors = config.validate()
    for error in errors:
        click.echo(f"⚠️  {error}", err=True)

    run_server(host=host, port=port)


@cli.command("check-config")
@click.pass_context
def check_config(ctx):
    """Validate configuration and report problems."""
    config = ctx.obj["config"]
    errors = config.validate()

    if errors:
        click.echo("❌ Configuration errors:")
        for error in errors:
            click.echo(f"  - {error}")
        sys.exit(1)

    click.echo("✅ Configuration OK")
    click.echo(f"  Mailbox API: {config.mailbox.base_url}")
    click.echo(f"  Poll interval: {config.app.poll_interval_seconds}s")
    click.echo(f"  Listening on: {config.server.host}:{config.server.port}")


@cli.command("init-config")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def init_config(ctx, force):
    """Write runtime settings to config.yaml."""
    config = ctx.obj["config"]

    if Path(config.config_file).exists() and not force:
        click.echo(f"❌ {config.config_file} already exists (use --force to overwrite)", err=True)
        sys.exit(1)

    config.save_yaml_config()
    click.echo(f"✅ Wrote {config.config_file}")


if __name__ == "__main__":
    cli()
