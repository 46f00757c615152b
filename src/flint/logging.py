"""Logging and console setup for Flint.

Command results go to ``console`` (stdout); errors, warnings and log records
go to ``error_console`` (stderr) so results stay pipeable.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()
error_console = Console(stderr=True)

# Libraries that log every request or reconnect at INFO/DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "nats")


def setup_logging(verbose: bool = False, colors: bool = True) -> None:
    """Configure logging for the CLI.

    May be called again once preferences are loaded; the previous handler
    is replaced.

    Args:
        verbose: If True, set log level to DEBUG and let client libraries log too.
        colors: If False, strip colors from both consoles.
    """
    console.no_color = not colors
    error_console.no_color = not colors

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=error_console,
                rich_tracebacks=True,
                show_time=verbose,
                show_path=verbose,
            )
        ],
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if verbose else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: The name of the logger (typically __name__).

    Returns:
        A configured logger instance.
    """
    return logging.getLogger(name)
