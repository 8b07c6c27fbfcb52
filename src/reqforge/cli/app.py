"""Main Typer application, entry point for the ``reqforge`` CLI."""

from __future__ import annotations

import typer

from reqforge import __version__
from reqforge.cli.run import run_cmd

app = typer.Typer(
    name="reqforge",
    help="Fire one HTTP request concurrently and measure how it holds up.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Execute a request with concurrent workers.")(run_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"reqforge {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """ReqForge: concurrent HTTP request execution with live statistics."""
