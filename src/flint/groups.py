"""Typer command groups that accept abbreviated sub-command names."""

from __future__ import annotations

from typing import Any

import typer
from rich.markup import escape
from typer.core import TyperCommand, TyperGroup

from .errors import FlintError, ResolutionError, format_error_with_hint
from .logging import error_console
from .resolver import get_resolver


def report_error(error: BaseException) -> None:
    """Print an error and its hint to stderr."""
    message, hint = format_error_with_hint(error)
    error_console.print(f"[red]Error: {escape(message)}[/red]")
    if hint:
        error_console.print(f"[dim]Hint: {escape(hint)}[/dim]")


class AbbreviatedGroup(TyperGroup):
    """A command group resolving unique prefixes of its commands.

    Subclasses set ``category`` to the resolver category listing the
    group's commands. Flint errors raised by commands are reported here
    and turned into exit code 1.
    """

    category = "root"

    def get_command(self, ctx: typer.Context, cmd_name: str) -> TyperCommand | TyperGroup | None:
        command = super().get_command(ctx, cmd_name)
        if command is not None:
            return command
        try:
            resolved = get_resolver().resolve(self.category, cmd_name)
        except ResolutionError as e:
            ctx.fail(str(e))
        return super().get_command(ctx, resolved)

    def resolve_command(
        self, ctx: typer.Context, args: list[str]
    ) -> tuple[str | None, TyperCommand | TyperGroup | None, list[str]]:
        # always report the full command name
        _, cmd, args = super().resolve_command(ctx, args)
        return cmd.name if cmd else None, cmd, args

    def invoke(self, ctx: typer.Context) -> Any:
        try:
            return super().invoke(ctx)
        except FlintError as e:
            report_error(e)
            raise typer.Exit(1) from None


def abbreviated_group(category: str) -> type[AbbreviatedGroup]:
    """Create an AbbreviatedGroup subclass bound to a resolver category."""
    return type(f"{category.title()}Group", (AbbreviatedGroup,), {"category": category})


class ExactGroup(AbbreviatedGroup):
    """A command group whose command names must be typed in full."""

    def get_command(self, ctx: typer.Context, cmd_name: str) -> TyperCommand | TyperGroup | None:
        # skip prefix resolution, look up registered names only
        command = super(AbbreviatedGroup, self).get_command(ctx, cmd_name)
        if command is not None:
            return command
        try:
            get_resolver().require_exact(self.category, cmd_name)
        except ResolutionError as e:
            ctx.fail(str(e))
        return None


def exact_group(category: str) -> type[ExactGroup]:
    """Create an ExactGroup subclass bound to a resolver category."""
    return type(f"{category.title()}ExactGroup", (ExactGroup,), {"category": category})
