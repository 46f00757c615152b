"""Environment management commands for Flint."""

from __future__ import annotations

from typing import Annotated

import typer

from ..config import (
    DEFAULT_COLLECTIONS,
    AuthCollection,
    BackendConfig,
    Environment,
    MessagingAuthMethod,
    MessagingConfig,
    OutputFormat,
    parse_enum,
    validate_environment_name,
)
from ..context import get_context
from ..errors import BackendError, EnvironmentExistsError, UnauthenticatedError, ValidationError
from ..groups import abbreviated_group
from ..logging import console, get_logger
from ..output import masked_environment, output_data, print_info, print_success, print_warning
from ..session import SessionState, session_state
from ..time_utils import format_remaining, format_timestamp
from ..validation import validate_url

logger = get_logger(__name__)

app = typer.Typer(
    name="environment",
    help="Manage environments (named connection contexts).",
    cls=abbreviated_group("environment"),
    no_args_is_help=True,
    rich_markup_mode=None,
)


def _split_servers(values: list[str]) -> list[str]:
    servers = []
    for value in values:
        servers.extend(s.strip() for s in value.split(",") if s.strip())
    return servers


@app.command("create")
def create_environment(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Environment name (letters, digits, - and _).")],
    pb_url: Annotated[
        str,
        typer.Option("--pb-url", help="Document database URL."),
    ],
    nats_servers: Annotated[
        list[str],
        typer.Option("--nats-servers", help="Messaging server URLs (comma-separated or repeated)."),
    ],
    pb_auth_collection: Annotated[
        str,
        typer.Option(
            "--pb-auth-collection",
            help="Identity collection (users|clients|edges|things|service_users).",
        ),
    ] = AuthCollection.USERS.value,
    organization_id: Annotated[
        str | None,
        typer.Option("--organization-id", help="Organization ID (can be set later)."),
    ] = None,
    nats_auth_method: Annotated[
        str,
        typer.Option("--nats-auth-method", help="Messaging auth method (user_pass|token|creds)."),
    ] = MessagingAuthMethod.CREDS.value,
    no_tls: Annotated[
        bool,
        typer.Option("--no-tls", help="Connect to the messaging servers without TLS."),
    ] = False,
    no_tls_verify: Annotated[
        bool,
        typer.Option("--no-tls-verify", help="Do not verify messaging server certificates."),
    ] = False,
) -> None:
    """Create a new environment.

    Examples:
        flint environment create production --pb-url https://api.example.io --nats-servers nats://nats.example.io:4222
        flint env cr dev --pb-url http://localhost:8090 --nats-servers nats://localhost:4222 --nats-auth-method user_pass
    """
    app_ctx = get_context(ctx)

    validate_environment_name(name)
    validate_url(pb_url)
    servers = _split_servers(nats_servers)
    if not servers:
        raise ValidationError("--nats-servers is required")
    collection = parse_enum(AuthCollection, pb_auth_collection, "auth collection")
    method = parse_enum(MessagingAuthMethod, nats_auth_method, "messaging auth method")

    if app_ctx.store.environment_exists(name):
        raise EnvironmentExistsError(name)

    env = Environment(
        name=name,
        backend=BackendConfig(
            url=pb_url.rstrip("/"),
            auth_collection=collection,
            organization_id=organization_id or None,
            collections=list(DEFAULT_COLLECTIONS),
        ),
        messaging=MessagingConfig(
            servers=servers,
            auth_method=method,
            tls_enabled=not no_tls,
            tls_verify=not no_tls_verify,
        ),
    )
    app_ctx.store.save_environment(env)

    print_success(f"Environment '{name}' created")
    console.print(f"  Backend URL:      {env.backend.url}")
    console.print(f"  Auth collection:  {collection.display_name}")
    if env.backend.organization_id:
        console.print(f"  Organization ID:  {env.backend.organization_id}")
    console.print(f"  Messaging:        {', '.join(servers)} ({method.value})")
    print_info(f"\nNext: flint environment select {name} && flint auth pb")


@app.command("list")
def list_environments(
    ctx: typer.Context,
    output: Annotated[
        OutputFormat | None,
        typer.Option("--output", "-o", help="Output format (json or yaml for machine-readable output)."),
    ] = None,
) -> None:
    """List all environments, marking the active one."""
    app_ctx = get_context(ctx)
    names = app_ctx.store.list_environments()
    active = app_ctx.effective.active_environment

    if output is not None and output is not OutputFormat.TABLE:
        output_data({"environments": names, "active": active or None}, output)
        return

    if not names:
        console.print("No environments found.")
        print_info("Create one with: flint environment create <name> --pb-url URL --nats-servers URL")
        return

    for name in names:
        marker = "[green]*[/green]" if name == active else " "
        console.print(f"{marker} {name}")
    print_info(f"\nTotal: {len(names)} environments")


@app.command("select")
def select_environment(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Environment to make active.")],
) -> None:
    """Make an environment the active one."""
    app_ctx = get_context(ctx)
    app_ctx.select_environment(name)
    print_success(f"Active environment is now '{name}'")

    env = app_ctx.store.load_environment(name)
    if session_state(env.backend.session) is not SessionState.VALID:
        print_info("Not authenticated. Run 'flint auth pb' to sign in.")


@app.command("show")
def show_environment(
    ctx: typer.Context,
    name: Annotated[
        str | None,
        typer.Argument(help="Environment to show (defaults to the active one)."),
    ] = None,
    output: Annotated[
        OutputFormat | None,
        typer.Option("--output", "-o", help="Output format."),
    ] = None,
) -> None:
    """Show an environment's settings with secrets hidden."""
    app_ctx = get_context(ctx)
    env = app_ctx.store.load_environment(name) if name else app_ctx.active_environment()
    fmt = output or app_ctx.output_format

    data = masked_environment(env)
    session = env.backend.session
    state = session_state(session)
    data["session"] = {
        "state": state.value,
        "expires": session.expires.isoformat() if session.expires else None,
    }
    data["active"] = app_ctx.is_active(env.name)

    if fmt is not OutputFormat.TABLE:
        output_data(data, fmt)
        return

    console.print(f"[bold]{env.name}[/bold]" + (" [green](active)[/green]" if data["active"] else ""))
    console.print(f"  Backend URL:      {env.backend.url}")
    console.print(f"  Auth collection:  {env.backend.auth_collection.display_name}")
    console.print(f"  Organization ID:  {env.backend.organization_id or '(not set)'}")
    console.print(f"  Session:          {state.value}")
    if session.expires:
        console.print(
            f"  Expires:          {format_timestamp(session.expires)} ({format_remaining(session.expires)})"
        )
    console.print(f"  Messaging:        {', '.join(env.messaging.servers)}")
    console.print(f"  Messaging auth:   {env.messaging.auth_method.value}")
    tls = "off"
    if env.messaging.tls_enabled:
        tls = "on" if env.messaging.tls_verify else "on (no verify)"
    console.print(f"  TLS:              {tls}")


@app.command("delete")
def delete_environment(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Environment to delete.")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip the confirmation prompt."),
    ] = False,
) -> None:
    """Delete an environment and all of its files."""
    app_ctx = get_context(ctx)
    env = app_ctx.store.load_environment(name)

    if not force:
        if app_ctx.is_active(name):
            print_warning(f"'{name}' is the active environment")
        if not typer.confirm(f"Delete environment '{name}'?", default=False):
            console.print("Cancelled.")
            raise typer.Exit(0)

    was_active = app_ctx.delete_environment(env.name)
    print_success(f"Environment '{name}' deleted")
    if was_active:
        print_info("No environment is active now. Use 'flint environment select <name>' to pick one.")


@app.command("organization")
def set_organization(
    ctx: typer.Context,
    organization_id: Annotated[str, typer.Argument(help="Organization ID to work in.")],
) -> None:
    """Set the organization of the active environment.

    With a valid session, membership is checked and the user's current
    organization is updated on the server as well.
    """
    app_ctx = get_context(ctx)
    env = app_ctx.active_environment()
    session = env.backend.session

    if not organization_id:
        raise ValidationError("organization ID cannot be empty")

    state = session_state(session)
    if state is SessionState.UNAUTHENTICATED:
        raise UnauthenticatedError("not authenticated")

    if state is SessionState.VALID:
        with app_ctx.backend_client(env) as client:
            client.validate_organization_access(organization_id, session.record)
            logger.debug("Organization access validated")

            user_id = session.record.get("id")
            if env.backend.auth_collection is AuthCollection.USERS and user_id:
                try:
                    client.update_current_organization(user_id, organization_id)
                except BackendError as e:
                    print_warning(f"Failed to update current organization on the server: {e}")
    else:
        print_warning("Session expired - organization will be set locally only")

    env.backend.organization_id = organization_id
    app_ctx.store.save_environment(env)
    print_success(f"Organization set to '{organization_id}' for environment '{env.name}'")
