"""`remotecontrol-broadcast`: push a message to every chat the bot knows."""

from __future__ import annotations

import sys
from pathlib import Path

import httpx
import typer

from ..broadcast import BROADCAST_PATH, PARAM_MESSAGE
from ..config import DEFAULT_CLI_PORT, ConfigError, load_raw_config, parse_cli_endpoint

USAGE = """usage:
  remotecontrol-broadcast -m "MESSAGE_TO_BROADCAST"
  remotecontrol-broadcast "MESSAGE_TO_BROADCAST"
  echo "something" | remotecontrol-broadcast"""

REQUEST_TIMEOUT_S = 10.0


def _read_stdin() -> str:
    stream = sys.stdin
    if stream is None or stream.isatty():
        return ""
    return stream.read()


def compose_message(message: str | None, words: list[str] | None, stdin: str) -> str:
    text = message if message is not None else " ".join(words or [])
    if stdin:
        text = f"{stdin}\n\n{text}" if text else stdin
    return text


def resolve_endpoint(config_path: Path | None) -> tuple[int, str]:
    try:
        raw, cfg_path = load_raw_config(config_path)
        return parse_cli_endpoint(raw, cfg_path)
    except ConfigError as e:
        typer.echo(
            f"Failed to load config, using default port number: "
            f"{DEFAULT_CLI_PORT} ({e})",
            err=True,
        )
        return DEFAULT_CLI_PORT, ""


def post_broadcast(
    port: int,
    message: str,
    *,
    token: str = "",
    client: httpx.Client | None = None,
) -> None:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    url = f"http://localhost:{port}{BROADCAST_PATH}"
    http = client or httpx.Client(timeout=REQUEST_TIMEOUT_S)
    try:
        resp = http.post(url, data={PARAM_MESSAGE: message}, headers=headers)
        resp.raise_for_status()
    finally:
        if client is None:
            http.close()


def broadcast(
    words: list[str] | None = typer.Argument(
        None, help="Message to broadcast (joined with spaces)."
    ),
    message: str | None = typer.Option(
        None, "-m", "--message", help="Message to broadcast."
    ),
    config_path: Path | None = typer.Option(
        None, "--config", help="Path to the bot's config.toml."
    ),
) -> None:
    """Send a message to every chat through the running bot."""
    text = compose_message(message, words, _read_stdin())
    if not text.strip():
        typer.echo(USAGE, err=True)
        raise typer.Exit(code=1)

    port, token = resolve_endpoint(config_path)
    try:
        post_broadcast(port, text, token=token)
    except httpx.HTTPError as e:
        typer.echo(f"* Broadcast failed: {e}")
        raise typer.Exit(code=1) from None


def create_app() -> typer.Typer:
    app = typer.Typer(add_completion=False)
    app.command()(broadcast)
    return app


def main() -> None:
    create_app()()


if __name__ == "__main__":
    main()
