"""Dirwatch CLI entry point.

Provides command-line interface for running the agent, validating
connection configurations and listing available readers and modes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from dirwatch.backend import list_modes
from dirwatch.config import get_settings, load_connection_configs
from dirwatch.exceptions import ConfigurationError
from dirwatch.main import DirwatchAgent
from dirwatch.readers import get_reader, list_readers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create CLI app
app = typer.Typer(
    name="dirwatch",
    help="Dirwatch - watch folders for data files and ingest them into a time-series backend",
    add_completion=False,
)


@app.command()
def run(
    config: Annotated[
        str, typer.Option("--config", "-c", help="Path to agent settings YAML file")
    ] = "",
    mode: Annotated[
        str, typer.Option("--mode", "-m", help="Backend mode (lite|standard)")
    ] = "",
    folder: Annotated[
        Optional[list[Path]],
        typer.Option("--folder", "-f", help="Connection configuration folder (repeatable)"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose output")
    ] = False,
) -> None:
    """Run the agent until interrupted.

    Examples:
        # Watch with the in-memory backend
        dirwatch run --mode lite --folder ./connections

        # Use a settings file
        dirwatch run --config dirwatch.yaml
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = get_settings(config or None)
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)

    if mode:
        settings.mode = mode
    if folder:
        settings.configuration_folders = list(folder)
    if not verbose:
        logging.getLogger().setLevel(settings.log_level.upper())

    if settings.mode not in list_modes():
        typer.echo(f"❌ Invalid mode: {settings.mode}", err=True)
        typer.echo(f"   Valid modes: {', '.join(list_modes())}", err=True)
        raise typer.Exit(code=1)

    logger.info(f"Starting Dirwatch agent in {settings.mode} mode")
    try:
        DirwatchAgent(settings).run()
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)


@app.command("check-config")
def check_config(
    config: Annotated[
        str, typer.Option("--config", "-c", help="Path to agent settings YAML file")
    ] = "",
    folder: Annotated[
        Optional[list[Path]],
        typer.Option("--folder", "-f", help="Connection configuration folder (repeatable)"),
    ] = None,
) -> None:
    """Validate agent settings and connection configurations without watching anything."""
    try:
        settings = get_settings(config or None)
        configs = load_connection_configs(list(folder) if folder else settings.configuration_folders)
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)

    failed = False
    for connection in configs:
        try:
            get_reader(connection.reader, connection).initialize()
        except ConfigurationError as e:
            typer.echo(f"❌ {connection.id}: {e}", err=True)
            failed = True
            continue
        state = "enabled" if connection.enabled else "disabled"
        typer.echo(f"✅ {connection.id} ({connection.reader}, {state})")

    if failed:
        raise typer.Exit(code=1)
    typer.echo(f"{len(configs)} connection configurations are valid")


@app.command()
def readers() -> None:
    """List available readers."""
    typer.echo("Available readers:")
    for name in list_readers():
        typer.echo(f"  {name}")


@app.command()
def modes() -> None:
    """List available backend modes."""
    typer.echo("Available modes:")
    for name in list_modes():
        typer.echo(f"  {name}")


@app.command()
def version() -> None:
    """Show Dirwatch version information."""
    from dirwatch import __version__

    typer.echo(f"Dirwatch version: {__version__}")


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
