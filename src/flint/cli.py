"""CLI entry point for Flint."""

import sys
from pathlib import Path
from typing import Annotated

import typer

from . import __version__
from .config import CONFIG_DIR_ENV_VAR
from .context import Context
from .errors import FlintError
from .groups import abbreviated_group, report_error
from .logging import console, error_console, get_logger, setup_logging

app = typer.Typer(
    name="flint",
    help="A command-line interface for managing platform environments.",
    cls=abbreviated_group("root"),
    no_args_is_help=True,
    rich_markup_mode=None,
)

logger = get_logger(__name__)

# Register command groups (imported here to avoid circular imports)
from .commands import auth, collections, config, environment, nats  # noqa: E402

app.add_typer(environment.app, name="environment")
app.add_typer(collections.app, name="collections")
app.add_typer(auth.app, name="auth")
app.add_typer(nats.app, name="nats")
app.add_typer(config.app, name="config")

_verbose = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"flint {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_dir: Annotated[
        Path | None,
        typer.Option(
            "--config-dir",
            help="Directory holding preferences and environments.",
            envvar=CONFIG_DIR_ENV_VAR,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            "--debug",
            help="Enable debug logging.",
            is_eager=True,
        ),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Flint - manage platform environments, records and messaging."""
    global _verbose
    setup_logging(verbose=verbose)

    try:
        context = Context.load(config_dir, verbose=verbose)
    except FlintError as e:
        report_error(e)
        raise typer.Exit(1) from None

    context.verbose = verbose or context.effective.debug
    setup_logging(verbose=context.verbose, colors=context.effective.colors_enabled)
    _verbose = context.verbose
    logger.debug(f"Using configuration directory {context.store.root}")

    ctx.obj = context


def cli() -> None:
    """Main entry point for the CLI."""
    try:
        app()
    except Exception as e:
        error_console.print(f"[red]Error: {e}[/red]")
        if _verbose:
            error_console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    cli()
