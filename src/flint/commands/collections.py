"""Record management commands for Flint.

Usage is ``flint collections <collection> <action> [args]``. The collection
name must be typed exactly; the action may be abbreviated.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from ..client import page_for_offset
from ..config import DEFAULT_COLLECTIONS, Environment, OutputFormat
from ..context import Context, get_context
from ..errors import ValidationError
from ..groups import abbreviated_group, exact_group
from ..logging import console, get_logger
from ..output import output_data, output_record_page, print_success, print_warning
from ..validation import validate_create_data, validate_update_data

logger = get_logger(__name__)

app = typer.Typer(
    name="collections",
    help="Manage records of platform collections.",
    cls=exact_group("platform_collections"),
    no_args_is_help=True,
    rich_markup_mode=None,
)

OutputOption = Annotated[
    OutputFormat | None,
    typer.Option("--output", "-o", help="Output format (json|yaml|table)."),
]


def _collection_name(ctx: typer.Context) -> str:
    """Get the collection the invoked action belongs to."""
    parent = ctx.parent
    if parent is None or not parent.command.name:
        raise ValidationError("record actions must be invoked under a collection")
    return parent.command.name


def _split(values: list[str] | None) -> list[str]:
    items: list[str] = []
    for value in values or []:
        items.extend(v.strip() for v in value.split(",") if v.strip())
    return items


def _read_payload(data: str | None, file: Path | None) -> dict[str, Any]:
    """Load a JSON record payload from an argument or a file.

    Raises:
        ValidationError: If no payload was given, or it is not a JSON object.
    """
    if data and file:
        raise ValidationError("pass record data either as an argument or with --file, not both")
    if file:
        try:
            data = file.read_text(encoding="utf-8")
        except OSError as e:
            raise ValidationError(f"cannot read {file}: {e.strerror or e}") from e
    if not data:
        raise ValidationError("record data is required (JSON argument or --file)")
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ValidationError("record data must be a JSON object")
    return payload


def _prepare(ctx: typer.Context) -> tuple[Context, Environment, str]:
    """Load the authenticated environment and check the collection is enabled in it."""
    app_ctx = get_context(ctx)
    collection = _collection_name(ctx)
    env = app_ctx.authenticated_environment()
    if collection not in env.backend.collections:
        raise ValidationError(
            f"collection '{collection}' is not available in environment '{env.name}'. "
            f"Available: {', '.join(env.backend.collections)}"
        )
    return app_ctx, env, collection


def list_records(
    ctx: typer.Context,
    offset: Annotated[int, typer.Option("--offset", help="Number of records to skip.")] = 0,
    limit: Annotated[
        int | None,
        typer.Option("--limit", help="Maximum number of records (1-500, defaults to the page size preference)."),
    ] = None,
    filter_expr: Annotated[
        str | None,
        typer.Option("--filter", help="Filter expression, e.g. 'active=true && name~\"test\"'."),
    ] = None,
    sort: Annotated[str | None, typer.Option("--sort", help="Sort expression, e.g. '-created'.")] = None,
    fields: Annotated[
        list[str] | None,
        typer.Option("--fields", help="Fields to return (comma-separated)."),
    ] = None,
    expand: Annotated[
        list[str] | None,
        typer.Option("--expand", help="Relations to expand (comma-separated)."),
    ] = None,
    output: OutputOption = None,
) -> None:
    """List records of the collection."""
    app_ctx, env, collection = _prepare(ctx)
    page, per_page = page_for_offset(offset, limit or app_ctx.effective.pagination_size)
    logger.debug(f"Listing {collection}: page {page}, {per_page} per page")

    with app_ctx.backend_client(env) as client:
        result = client.list_records(
            collection,
            page=page,
            per_page=per_page,
            filter=filter_expr,
            sort=sort,
            fields=_split(fields),
            expand=_split(expand),
        )
    output_record_page(result, collection, output or app_ctx.output_format)


def get_record(
    ctx: typer.Context,
    record_id: Annotated[str, typer.Argument(help="Record ID.")],
    expand: Annotated[
        list[str] | None,
        typer.Option("--expand", help="Relations to expand (comma-separated)."),
    ] = None,
    output: OutputOption = None,
) -> None:
    """Show a single record."""
    app_ctx, env, collection = _prepare(ctx)
    with app_ctx.backend_client(env) as client:
        record = client.get_record(collection, record_id, expand=_split(expand))
    output_data(record, output or app_ctx.output_format)


def create_record(
    ctx: typer.Context,
    data: Annotated[str | None, typer.Argument(help="Record data as a JSON object.")] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", help="Read record data from a JSON file."),
    ] = None,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only print the new record.")] = False,
    output: OutputOption = None,
) -> None:
    """Create a record from JSON data.

    Examples:
        flint collections organizations create '{"name":"Acme","code":"acme","account_name":"acme"}'
        flint collections edges cr --file edge.json
    """
    app_ctx, env, collection = _prepare(ctx)
    payload = _read_payload(data, file)
    for warning in validate_create_data(collection, payload):
        print_warning(warning)

    with app_ctx.backend_client(env) as client:
        record = client.create_record(collection, payload)
    if not quiet:
        print_success(f"Created {collection} record {record.get('id', '')}")
    output_data(record, output or app_ctx.output_format)


def update_record(
    ctx: typer.Context,
    record_id: Annotated[str, typer.Argument(help="Record ID.")],
    data: Annotated[str | None, typer.Argument(help="Changed fields as a JSON object.")] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", help="Read changed fields from a JSON file."),
    ] = None,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only print the updated record.")] = False,
    output: OutputOption = None,
) -> None:
    """Update fields of a record."""
    app_ctx, env, collection = _prepare(ctx)
    payload = _read_payload(data, file)
    for warning in validate_update_data(collection, payload):
        print_warning(warning)

    with app_ctx.backend_client(env) as client:
        record = client.update_record(collection, record_id, payload)
    if not quiet:
        print_success(f"Updated {collection} record {record_id}")
    output_data(record, output or app_ctx.output_format)


def delete_record(
    ctx: typer.Context,
    record_id: Annotated[str, typer.Argument(help="Record ID.")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Skip the confirmation prompt.")] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Suppress the success message.")] = False,
) -> None:
    """Delete a record."""
    app_ctx, env, collection = _prepare(ctx)
    if not force:
        if collection == "organizations":
            print_warning("Deleting an organization may affect all associated resources")
        if not typer.confirm(f"Delete {collection} record {record_id}?", default=False):
            console.print("Cancelled.")
            raise typer.Exit(0)

    with app_ctx.backend_client(env) as client:
        client.delete_record(collection, record_id)
    if not quiet:
        print_success(f"Deleted {collection} record {record_id}")


ACTIONS = {
    "list": list_records,
    "get": get_record,
    "create": create_record,
    "update": update_record,
    "delete": delete_record,
}


def _collection_app(collection: str) -> typer.Typer:
    sub = typer.Typer(
        name=collection,
        help=f"Manage {collection.replace('_', ' ')} records.",
        cls=abbreviated_group("collections"),
        no_args_is_help=True,
        rich_markup_mode=None,
    )
    for action, func in ACTIONS.items():
        sub.command(action)(func)
    return sub


for _name in DEFAULT_COLLECTIONS:
    app.add_typer(_collection_app(_name), name=_name)
