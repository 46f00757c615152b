"""Unified output formatting for Flint.

Command results are rendered as JSON, YAML or a rich table depending on the
selected output format. All result output goes through these functions.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import yaml
from rich.table import Table

from .config import Environment, OutputFormat
from .logging import console, error_console

if TYPE_CHECKING:
    from .client import RecordPage

HIDDEN = "***HIDDEN***"
MAX_CELL_WIDTH = 50

# Columns shown first when rendering records of these collections
COLLECTION_COLUMNS: dict[str, list[str]] = {
    "users": ["id", "email", "first_name", "last_name", "current_organization_id", "active"],
    "organizations": ["id", "name", "code", "account_name", "active"],
    "edges": ["id", "name", "code", "type", "region", "active"],
    "things": ["id", "name", "code", "type", "edge_id", "active"],
    "locations": ["id", "name", "code", "type", "path"],
}
DEFAULT_COLUMNS = ["id", "name", "code", "type", "created"]


def output_json(data: Any) -> None:
    """Output data as JSON.

    Uses plain print() to avoid Rich console formatting.

    Args:
        data: JSON-serializable data.
    """
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def output_yaml(data: Any) -> None:
    """Output data as YAML."""
    print(yaml.safe_dump(_plain(data), sort_keys=False, allow_unicode=True, default_flow_style=False), end="")


def _plain(data: Any) -> Any:
    # safe_dump only knows builtin types
    return json.loads(json.dumps(data, default=str))


def truncate(value: str, max_len: int = MAX_CELL_WIDTH) -> str:
    """Shorten a string to max_len characters, marking the cut with "..."."""
    if len(value) <= max_len:
        return value
    return value[: max_len - 3] + "..."


def truncate_token(token: str) -> str:
    """Show the start and end of a long token."""
    if len(token) <= 50:
        return token
    return f"{token[:20]}...{token[-20:]}"


def format_cell(value: Any) -> str:
    """Render one table cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (dict, list)):
        return truncate(json.dumps(value, ensure_ascii=False, default=str))
    return truncate(str(value))


def output_table(rows: list[Mapping[str, Any]], columns: list[str] | None = None, title: str | None = None) -> None:
    """Output rows as a table.

    Args:
        rows: The rows to show.
        columns: Column order; defaults to the union of row keys in first-seen order.
        title: Optional table title.
    """
    if columns is None:
        columns = []
        for row in rows:
            columns.extend(key for key in row if key not in columns)

    table = Table(title=title, show_lines=False)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(format_cell(row.get(column)) for column in columns))
    console.print(table)


def output_mapping_table(data: Mapping[str, Any], title: str | None = None) -> None:
    """Output a single mapping as a two-column field/value table."""
    table = Table(title=title, show_header=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(str(key), format_cell(value))
    console.print(table)


def output_data(data: Any, fmt: OutputFormat) -> None:
    """Output data in the selected format.

    Args:
        data: A mapping, a list of mappings or any JSON-serializable value.
        fmt: The output format.
    """
    if fmt is OutputFormat.YAML:
        output_yaml(data)
    elif fmt is OutputFormat.TABLE and isinstance(data, Mapping):
        output_mapping_table(data)
    elif fmt is OutputFormat.TABLE and isinstance(data, list) and all(isinstance(row, Mapping) for row in data):
        output_table(data)
    else:
        output_json(data)


def record_columns(collection: str, items: list[Mapping[str, Any]]) -> list[str]:
    """Pick the table columns for records of a collection."""
    preferred = COLLECTION_COLUMNS.get(collection, DEFAULT_COLUMNS)
    present = {key for item in items for key in item}
    columns = [column for column in preferred if column in present]
    return columns or sorted(present)[:6]


def output_record_page(page: RecordPage, collection: str, fmt: OutputFormat) -> None:
    """Output one page of records with pagination hints in table mode."""
    if fmt is not OutputFormat.TABLE:
        output_data(page.to_dict(), fmt)
        return

    if not page.items:
        console.print(f"No {collection} found.")
        return

    first = (page.page - 1) * page.per_page + 1
    last = min(page.page * page.per_page, page.total_items)
    output_table(
        page.items,
        record_columns(collection, page.items),
        title=f"{collection.replace('_', ' ').title()} ({first}-{last} of {page.total_items} total)",
    )

    if page.total_pages > 1:
        hints = []
        if page.page > 1:
            hints.append(f"Previous: --offset {(page.page - 2) * page.per_page}")
        if page.page < page.total_pages:
            hints.append(f"Next: --offset {page.page * page.per_page}")
        hints.append(f"Page {page.page} of {page.total_pages}")
        console.print("[dim]" + "  ".join(hints) + "[/dim]")


def masked_environment(env: Environment) -> dict[str, Any]:
    """Get an environment as a dictionary with secrets hidden."""
    data = env.to_dict()
    backend = data["pocketbase"]
    if backend.get("auth_token"):
        backend["auth_token"] = HIDDEN
    if backend.get("auth_record"):
        backend["auth_record"] = {k: v for k, v in backend["auth_record"].items() if k in ("id", "email", "username")}
    messaging = data["nats"]
    for key in ("password", "token"):
        if messaging.get(key):
            messaging[key] = HIDDEN
    return data


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    error_console.print(f"[yellow]Warning:[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[dim]{message}[/dim]")
