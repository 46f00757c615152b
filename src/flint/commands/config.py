"""Global preference commands for Flint."""

from __future__ import annotations

from typing import Annotated

import typer

from ..config import ENV_PREFIX, PREFERENCE_KEYS, OutputFormat
from ..context import get_context
from ..errors import ValidationError
from ..groups import abbreviated_group
from ..logging import console, get_logger
from ..output import output_data, print_info, print_success, print_warning

logger = get_logger(__name__)

app = typer.Typer(
    name="config",
    help="Show and change global preferences.",
    cls=abbreviated_group("config"),
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.command("show")
def show_config(
    ctx: typer.Context,
    output: Annotated[
        OutputFormat | None,
        typer.Option("--output", "-o", help="Output format."),
    ] = None,
) -> None:
    """Show the effective preferences.

    Values coming from FLINT_* environment variables are marked; they apply
    to the current invocation only.
    """
    app_ctx = get_context(ctx)
    data = app_ctx.effective.to_dict()

    if output is not None and output is not OutputFormat.TABLE:
        output_data(
            {
                "config_dir": str(app_ctx.store.root),
                "preferences": data,
                "overridden": list(app_ctx.overridden),
            },
            output,
        )
        return

    console.print(f"[bold]Configuration directory:[/bold] {app_ctx.store.root}")
    for key, value in data.items():
        marker = f"  [yellow](from ${ENV_PREFIX}{key.upper()})[/yellow]" if key in app_ctx.overridden else ""
        shown = value if value != "" else "(not set)"
        console.print(f"  {key:<20} {shown}{marker}")


@app.command("set")
def set_config(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help=f"Preference name ({'|'.join(PREFERENCE_KEYS)}).")],
    value: Annotated[str, typer.Argument(help="New value.")],
) -> None:
    """Change a stored preference.

    Examples:
        flint config set output_format table
        flint config set pagination_size 100
    """
    app_ctx = get_context(ctx)
    try:
        preferences = app_ctx.preferences.with_value(key, value)
    except KeyError:
        raise ValidationError(f"unknown preference '{key}'. Available: {', '.join(PREFERENCE_KEYS)}") from None
    except ValueError as e:
        raise ValidationError(f"invalid value for {key}: {e}") from e

    if key == "active_environment" and preferences.active_environment:
        # Only point at environments that exist
        app_ctx.store.load_environment(preferences.active_environment)

    app_ctx.save_preferences(preferences)
    logger.debug(f"Saved preference {key}={value}")
    print_success(f"{key} set to '{value}'")
    if key in app_ctx.overridden:
        print_warning(f"${ENV_PREFIX}{key.upper()} overrides this value for the current shell")
    elif key == "debug":
        print_info("Takes effect from the next command.")
