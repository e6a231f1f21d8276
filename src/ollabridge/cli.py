from __future__ import annotations

from functools import partial
from pathlib import Path

import anyio
import typer

from . import __version__
from .config import ConfigError, load_settings
from .logging import get_logger, setup_logging
from .runtime import run_bridge

logger = get_logger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def app_main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to an ollabridge.toml file.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug/--no-debug",
        help="Log Telegram and Ollama requests with a console renderer.",
    ),
) -> None:
    """Relay Telegram messages to a local Ollama model."""
    setup_logging(debug=debug)
    try:
        settings = load_settings(config)
    except ConfigError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1) from e
    try:
        anyio.run(partial(run_bridge, settings))
    except KeyboardInterrupt:
        logger.info("shutdown.interrupted")
        raise typer.Exit(code=130) from None


def create_app() -> typer.Typer:
    app = typer.Typer(
        add_completion=False,
        help="Telegram bridge for a local Ollama model.",
    )
    app.command()(app_main)
    return app


def main() -> None:
    app = create_app()
    app()


if __name__ == "__main__":
    main()
