"""Authentication commands for Flint."""

from __future__ import annotations

import asyncio
import sys
from typing import Annotated

import typer

from ..client import BackendClient
from ..config import AuthCollection, Environment, MessagingAuthMethod, parse_enum
from ..context import Context, get_context
from ..errors import BackendError, MessagingError, UnauthenticatedError, ValidationError
from ..groups import abbreviated_group
from ..logging import console, get_logger
from ..messaging import resolve_creds_path, store_creds_path
from ..output import print_info, print_success, print_warning, truncate_token
from ..session import (
    Membership,
    OrganizationSelection,
    SelectionMode,
    SessionState,
    extract_membership,
    select_session_organization,
    session_from_auth,
    session_state,
)
from ..time_utils import format_remaining, format_timestamp

logger = get_logger(__name__)

app = typer.Typer(
    name="auth",
    help="Authenticate with the document database and the messaging service.",
    cls=abbreviated_group("auth"),
    no_args_is_help=True,
    rich_markup_mode=None,
)


def _is_interactive() -> bool:
    return sys.stdin.isatty()


def _prompt_organization(membership: Membership) -> str | None:
    """Ask the user to pick one of several organizations.

    Returns:
        The chosen organization id, or None when the user skips.
    """
    console.print("\nYou belong to multiple organizations:")
    for index, org in enumerate(membership, start=1):
        console.print(f"  {index}. {org.label()}")
    answer = typer.prompt(
        f"Select organization (1-{len(membership)}), or press Enter to set later",
        default="",
        show_default=False,
    ).strip()
    if not answer:
        return None
    if not answer.isdigit() or not 1 <= int(answer) <= len(membership):
        raise ValidationError("invalid organization selection")
    return membership.ids[int(answer) - 1]


def _resolve_organization(
    client: BackendClient,
    env: Environment,
    collection: AuthCollection,
    record: dict,
    requested: str | None,
) -> OrganizationSelection:
    selection = select_session_organization(collection, record, requested, env.backend.organization_id)
    if selection.mode is not SelectionMode.REQUIRES_PROMPT:
        return selection

    if not _is_interactive():
        print_warning("Several organizations available; organization left unset")
        return selection
    membership = client.complete_membership(Membership(selection.candidates), record.get("id"))
    chosen = _prompt_organization(membership)
    return OrganizationSelection(chosen, SelectionMode.EXPLICIT if chosen else SelectionMode.REQUIRES_PROMPT)


def _describe_selection(selection: OrganizationSelection, membership: Membership) -> None:
    org_id = selection.organization_id
    org = membership.get(org_id) if org_id else None
    label = org.label() if org else org_id
    if selection.mode is SelectionMode.SOLE_MEMBERSHIP:
        print_info(f"Automatically selected organization: {label}")
    elif selection.mode is SelectionMode.PREVIOUSLY_STORED:
        print_info(f"Using existing organization: {label}")
    elif selection.mode is SelectionMode.NONE:
        print_warning("Not a member of any organization")
    if org_id is None:
        print_info("Set one later with: flint environment organization <org_id>")


@app.command("pb")
def auth_pb(
    ctx: typer.Context,
    email: Annotated[
        str | None,
        typer.Option("--email", "-e", help="Email or username to sign in with."),
    ] = None,
    password: Annotated[
        str | None,
        typer.Option("--password", "-p", help="Password (prompted when omitted)."),
    ] = None,
    collection: Annotated[
        str | None,
        typer.Option(
            "--collection",
            "-c",
            help="Identity collection (users|clients|edges|things|service_users).",
        ),
    ] = None,
    organization: Annotated[
        str | None,
        typer.Option("--organization", "-o", help="Organization ID to bind the session to."),
    ] = None,
) -> None:
    """Authenticate with the document database.

    Examples:
        flint auth pb
        flint auth pb --email admin@example.com --organization abc123def456789
        flint auth pb --collection edges --email edge001@example.com
    """
    app_ctx = get_context(ctx)
    env = app_ctx.active_environment()
    auth_collection = parse_enum(AuthCollection, collection, "auth collection") if collection else (
        env.backend.auth_collection
    )

    identity = email or typer.prompt("Email")
    secret = password or typer.prompt("Password", hide_input=True)

    with app_ctx.backend_client(env, with_session=False) as client:
        print_info(f"Testing connection to {env.backend.url}...")
        client.health()

        print_info(f"Authenticating with {auth_collection.display_name}...")
        result = client.authenticate(auth_collection, identity, secret)

        selection = _resolve_organization(client, env, auth_collection, result.record, organization)
        membership = extract_membership(result.record) if auth_collection is AuthCollection.USERS else Membership()

        env.backend.auth_collection = auth_collection
        env.backend.session = session_from_auth(result.token, result.record)
        env.backend.organization_id = selection.organization_id
        app_ctx.store.save_environment(env)

        if auth_collection is AuthCollection.USERS:
            _describe_selection(selection, membership)
            user_id = result.record.get("id")
            if selection.organization_id and user_id:
                try:
                    client.update_current_organization(user_id, selection.organization_id)
                except BackendError as e:
                    print_warning(f"Failed to update current organization on the server: {e}")

    print_success("Authentication successful")
    console.print(f"  Collection:    {auth_collection.display_name}")
    console.print(f"  Identity:      {identity}")
    console.print(f"  Environment:   {env.name}")
    if env.backend.organization_id:
        console.print(f"  Organization:  {env.backend.organization_id}")
    if env.backend.session.expires:
        console.print(f"  Expires:       {format_timestamp(env.backend.session.expires)}")


@app.command("refresh")
def auth_refresh(ctx: typer.Context) -> None:
    """Renew the session token of the active environment."""
    app_ctx = get_context(ctx)
    env = app_ctx.active_environment()
    session = env.backend.session
    state = session_state(session)
    if state is SessionState.UNAUTHENTICATED:
        raise UnauthenticatedError()
    if state is SessionState.EXPIRED:
        print_warning("Session already expired; the server may reject the refresh")

    with app_ctx.backend_client(env) as client:
        result = client.refresh_auth(env.backend.auth_collection)

    env.backend.session = session_from_auth(result.token, result.record or session.record)
    app_ctx.store.save_environment(env)
    print_success(f"Session refreshed, valid until {format_timestamp(env.backend.session.expires)}")


@app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show the authentication state of the active environment."""
    app_ctx = get_context(ctx)
    env = app_ctx.active_environment()
    session = env.backend.session
    state = session_state(session)

    colors = {
        SessionState.VALID: "green",
        SessionState.NEAR_EXPIRY: "yellow",
        SessionState.EXPIRED: "red",
        SessionState.UNAUTHENTICATED: "red",
    }
    console.print(f"Environment:     {env.name}")
    console.print(f"Backend:         [{colors[state]}]{state.value}[/{colors[state]}]")
    if session.token:
        console.print(f"  Collection:    {env.backend.auth_collection.display_name}")
        identity = session.record.get("email") or session.record.get("username") or session.record.get("id")
        if identity:
            console.print(f"  Identity:      {identity}")
        console.print(f"  Token:         {truncate_token(session.token)}")
        if session.expires:
            console.print(
                f"  Expires:       {format_timestamp(session.expires)} ({format_remaining(session.expires)})"
            )
    console.print(f"  Organization:  {env.backend.organization_id or '(not set)'}")

    messaging = env.messaging
    configured = {
        MessagingAuthMethod.USER_PASS: bool(messaging.username and messaging.password),
        MessagingAuthMethod.TOKEN: bool(messaging.token),
        MessagingAuthMethod.CREDS: bool(messaging.creds_file),
    }[messaging.auth_method]
    console.print(
        f"Messaging:       {messaging.auth_method.value} ({'configured' if configured else 'not configured'})"
    )
    if state is not SessionState.VALID:
        print_info("Run 'flint auth pb' to authenticate.")


def _test_messaging(app_ctx: Context, env: Environment) -> None:
    async def _run() -> None:
        async with app_ctx.messaging_client(env):
            pass

    asyncio.run(_run())


@app.command("nats")
def auth_nats(
    ctx: typer.Context,
    method: Annotated[
        str | None,
        typer.Option("--method", help="Auth method (user_pass|token|creds)."),
    ] = None,
    username: Annotated[
        str | None,
        typer.Option("--username", "-u", help="Username for user_pass."),
    ] = None,
    password: Annotated[
        str | None,
        typer.Option("--password", "-p", help="Password for user_pass (prompted when omitted)."),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", help="Token for token auth."),
    ] = None,
    creds_file: Annotated[
        str | None,
        typer.Option("--creds-file", help="Credentials file for creds auth."),
    ] = None,
    test: Annotated[
        bool,
        typer.Option("--test", help="Test the connection after saving."),
    ] = False,
) -> None:
    """Configure messaging credentials of the active environment.

    Examples:
        flint auth nats --method creds --creds-file ~/.nats/user.creds
        flint auth nats --method user_pass --username operator
        flint auth nats --test
    """
    app_ctx = get_context(ctx)
    env = app_ctx.active_environment()
    messaging = env.messaging

    given = any(value is not None for value in (method, username, password, token, creds_file))
    if given:
        auth_method = parse_enum(MessagingAuthMethod, method, "messaging auth method") if method else (
            messaging.auth_method
        )
        env_dir = app_ctx.store.environment_dir(env.name)

        if auth_method is MessagingAuthMethod.USER_PASS:
            user = username or typer.prompt("Username", default=messaging.username or None)
            secret = password or typer.prompt("Password", hide_input=True)
            messaging.set_user_pass(user, secret)
        elif auth_method is MessagingAuthMethod.TOKEN:
            value = token or typer.prompt("Token", hide_input=True)
            if not value.startswith("eyJ"):
                print_warning("Token does not look like a JWT (should start with 'eyJ')")
            messaging.set_token(value)
        else:
            path = creds_file or typer.prompt("Credentials file path", default=messaging.creds_file or None)
            stored = store_creds_path(path, env_dir)
            if not resolve_creds_path(stored, env_dir).is_file():
                print_warning(f"Credentials file does not exist: {resolve_creds_path(stored, env_dir)}")
            messaging.set_creds_file(stored)

        app_ctx.store.save_environment(env)
        print_success(f"Messaging authentication set to {auth_method.value} for '{env.name}'")
    elif not test:
        raise ValidationError("nothing to do: pass --method and credentials, or --test")

    if test:
        print_info(f"Connecting to {', '.join(messaging.servers)}...")
        try:
            _test_messaging(app_ctx, env)
        except MessagingError:
            if given:
                print_warning("The credentials were saved, but the connection test failed.")
            raise
        print_success("Connection test successful")
