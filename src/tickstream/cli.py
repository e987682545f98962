"""tickstream CLI."""

import asyncio
import sys

import click
import yaml
from pydantic import ValidationError

from tickstream import __version__
from tickstream.config_loader import load_config_with_overrides
from tickstream.constants import APP_NAME
from tickstream.feed.parser import get_stock_files
from tickstream.server import MarketDataServer, setup_logging


@click.group()
@click.version_option(__version__, prog_name=APP_NAME)
def cli():
    """tickstream Command Line Interface."""
    pass


def _load(config, **overrides):
    try:
        return load_config_with_overrides(config, **overrides)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file (default: environment variables only)",
)
@click.option("--host", help="Listen address")
@click.option("--port", type=int, help="Listen port")
@click.option("--data-dir", type=click.Path(), help="Directory holding <symbol>.us.txt files")
@click.option("--speed", type=float, help="Replay speed multiplier")
@click.option("--loop/--no-loop", default=None, help="Restart replay at the end of the data")
@click.option("--symbols", help="Comma-separated symbol allow-list")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
)
def run(config, host, port, data_dir, speed, loop, symbols, log_level):
    """Start the market data server."""
    app_config = _load(
        config,
        host=host,
        port=port,
        data_dir=data_dir,
        speed=speed,
        loop=loop,
        symbols=symbols,
        log_level=log_level,
    )
    setup_logging(app_config.environment.log_level.value)

    try:
        server = MarketDataServer(app_config)
        asyncio.run(server.run())
    except KeyboardInterrupt:
        pass
    except OSError as e:
        click.echo(f"Fatal error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file (default: environment variables only)",
)
@click.option("--data-dir", type=click.Path(), help="Directory holding <symbol>.us.txt files")
def symbols(config, data_dir):
    """List the symbols available in the data directory."""
    app_config = _load(config, data_dir=data_dir)
    directory = app_config.data.directory

    try:
        files = get_stock_files(directory)
    except FileNotFoundError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    allowed = set(app_config.data.symbols)
    for stock_file in files:
        marker = "" if not allowed or stock_file.symbol in allowed else "  (not allowed)"
        click.echo(f"{stock_file.symbol:<10} {stock_file.path}{marker}")
    click.echo(f"{len(files)} file(s) in {directory}")


if __name__ == "__main__":
    cli()
