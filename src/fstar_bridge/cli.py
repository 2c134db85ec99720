from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from fstar_bridge import __version__
from fstar_bridge.server import server, start

app = typer.Typer(add_completion=False)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DEFAULT_TCP_HOST = "127.0.0.1"
_DEFAULT_TCP_PORT = 2087


def configure_logging(level: str, log_file: Path | None = None) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"unknown log level: {level}", param_hint="--log-level")
    # stdout carries the LSP stream, so logs never go there.
    if log_file is not None:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    logging.basicConfig(level=numeric, handlers=[handler], force=True)


@app.command("lsp")
def lsp(
    tcp: bool = typer.Option(False, "--tcp", help="Serve over TCP instead of stdio."),
    host: str = typer.Option(_DEFAULT_TCP_HOST, "--host"),
    port: int = typer.Option(_DEFAULT_TCP_PORT, "--port"),
    config: Optional[Path] = typer.Option(
        None, "--config", exists=True, dir_okay=False, help="Path to fstar_bridge.toml."
    ),
    log_level: str = typer.Option("INFO", "--log-level"),
    log_file: Optional[Path] = typer.Option(None, "--log-file"),
) -> None:
    """Run the F* language server bridge."""
    configure_logging(log_level, log_file)
    server.configure(config)
    if tcp:
        logging.getLogger(__name__).info("Listening on %s:%s", host, port)
        start(lambda: server.start_tcp(host, port))
    else:
        start()


@app.command("version")
def version() -> None:
    """Print the bridge version."""
    typer.echo(__version__)


def main() -> None:  # pragma: no cover
    app()
