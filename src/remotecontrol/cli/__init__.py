from __future__ import annotations

from pathlib import Path

import anyio
import typer

from .. import __version__
from ..config import ConfigError, load_config
from ..logging import get_logger, setup_logging
from ..loop import StartupError, run_bot

logger = get_logger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _fail(message: str) -> None:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=1)


def run(
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="Path to config.toml (defaults to the XDG config directory).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug/--no-debug",
        help="Log Telegram requests and responses.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Run the remote-control bot."""
    setup_logging(debug=debug)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        _fail(str(e))
        return
    if config.is_verbose and not debug:
        setup_logging(debug=True)
    try:
        anyio.run(run_bot, config)
    except StartupError as e:
        logger.error("startup.failed", error=str(e))
        _fail(str(e))


def create_app() -> typer.Typer:
    app = typer.Typer(add_completion=False)
    app.command()(run)
    return app


def main() -> None:
    create_app()()


if __name__ == "__main__":
    main()
