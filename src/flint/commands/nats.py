"""Messaging commands for Flint."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import timedelta
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from rich.markup import escape

from ..context import Context, get_context
from ..errors import ValidationError
from ..groups import abbreviated_group
from ..logging import console, get_logger
from ..messaging import DEFAULT_REQUEST_TIMEOUT, Message, MessagingClient
from ..output import print_info, print_success
from ..time_utils import parse_duration
from ..validation import parse_headers, validate_queue, validate_subject

logger = get_logger(__name__)

T = TypeVar("T")

app = typer.Typer(
    name="nats",
    help="Publish, subscribe and send requests over the messaging service.",
    cls=abbreviated_group("nats"),
    no_args_is_help=True,
    rich_markup_mode=None,
)

HeaderOption = Annotated[
    list[str] | None,
    typer.Option("--header", "-H", help="Message header as key=value (can be repeated)."),
]


def _duration(value: str, option: str) -> timedelta:
    try:
        duration = parse_duration(value)
    except ValueError as e:
        raise ValidationError(f"invalid {option}: {e}") from e
    if duration <= timedelta(0):
        raise ValidationError(f"{option} must be positive")
    return duration


def _payload(message: str | None, file: Path | None, as_json: bool) -> bytes:
    """Build the message body from an argument or a file.

    Raises:
        ValidationError: If both sources are given, or --json data is not JSON.
    """
    if message is not None and file is not None:
        raise ValidationError("pass the message either as an argument or with --file, not both")
    if file is not None:
        try:
            data = file.read_bytes()
        except OSError as e:
            raise ValidationError(f"cannot read {file}: {e.strerror or e}") from e
    elif message is not None:
        data = message.encode("utf-8")
    else:
        data = b""

    if as_json:
        try:
            parsed = json.loads(data or b"null")
        except json.JSONDecodeError as e:
            raise ValidationError(f"invalid JSON payload: {e}") from e
        data = json.dumps(parsed, separators=(",", ":")).encode("utf-8")
    return data


def _print_message(msg: Message, raw: bool, show_headers: bool, show_timestamp: bool) -> None:
    if raw:
        console.print(msg.text, markup=False, highlight=False)
        return
    prefix = f"[dim]{msg.timestamp.strftime('%H:%M:%S.%f')[:-3]}[/dim] " if show_timestamp else ""
    console.print(f"{prefix}[cyan]{escape(msg.subject)}[/cyan] ({msg.size} bytes)")
    if show_headers and msg.headers:
        for key, value in msg.headers.items():
            console.print(f"  [dim]{escape(key)}: {escape(value)}[/dim]", highlight=False)
    console.print(f"  {msg.text}", markup=False, highlight=False)


def _run(app_ctx: Context, operation: Callable[[MessagingClient], Awaitable[T]]) -> T:
    """Connect to the active environment's servers, run operation and disconnect."""
    env = app_ctx.active_environment()
    client = app_ctx.messaging_client(env)

    async def _main() -> T:
        async with client:
            return await operation(client)

    return asyncio.run(_main())


@app.command("publish")
def publish(
    ctx: typer.Context,
    subject: Annotated[str, typer.Argument(help="Subject to publish to (no wildcards).")],
    message: Annotated[str | None, typer.Argument(help="Message body.")] = None,
    header: HeaderOption = None,
    reply: Annotated[
        str | None,
        typer.Option("--reply", help="Reply subject to attach to the message."),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", help="Read the message body from a file."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Validate and compact the body as JSON."),
    ] = False,
) -> None:
    """Publish a message.

    Examples:
        flint nats publish telemetry.edge001 '{"temp": 21.5}' --json
        flint nats pub commands.reboot --header priority=high
    """
    app_ctx = get_context(ctx)
    validate_subject(subject, allow_wildcards=False)
    data = _payload(message, file, as_json)
    headers = parse_headers(header)

    async def _publish(client: MessagingClient) -> None:
        await client.publish(subject, data, headers=headers, reply=reply or "")

    _run(app_ctx, _publish)
    print_success(f"Published {len(data)} bytes to {subject}")


@app.command("subscribe")
def subscribe(
    ctx: typer.Context,
    subject: Annotated[str, typer.Argument(help="Subject to subscribe to (wildcards * and > allowed).")],
    queue: Annotated[
        str | None,
        typer.Option("--queue", "-q", help="Queue group to join."),
    ] = None,
    count: Annotated[
        int,
        typer.Option("--count", "-n", min=0, help="Stop after this many messages (0 = unlimited)."),
    ] = 0,
    timeout: Annotated[
        str,
        typer.Option("--timeout", help="Stop after this long, e.g. 30s, 5m or 1h30m (0 waits forever)."),
    ] = "30s",
    raw: Annotated[
        bool,
        typer.Option("--raw", help="Print only message bodies."),
    ] = False,
    show_headers: Annotated[
        bool,
        typer.Option("--headers", help="Print message headers."),
    ] = False,
    show_timestamp: Annotated[
        bool,
        typer.Option("--timestamp", help="Print the receive time of each message."),
    ] = False,
) -> None:
    """Print messages arriving on a subject until interrupted.

    Examples:
        flint nats subscribe 'telemetry.>'
        flint nats sub events.* --count 10 --timeout 1m
    """
    app_ctx = get_context(ctx)
    validate_subject(subject)
    if queue:
        validate_queue(queue)
    wait = _duration(timeout, "--timeout") if timeout.strip() not in ("", "0") else None

    def handle(msg: Message) -> None:
        _print_message(msg, raw, show_headers, show_timestamp)

    async def _subscribe(client: MessagingClient) -> int:
        return await client.subscribe(subject, handle, queue=queue or "", timeout=wait, max_messages=count)

    if not raw:
        print_info(f"Listening on {subject}" + (f" (queue {queue})" if queue else "") + ", Ctrl+C to stop")
    received = _run(app_ctx, _subscribe)
    if not raw:
        print_info(f"Received {received} messages")


@app.command("request")
def request(
    ctx: typer.Context,
    subject: Annotated[str, typer.Argument(help="Subject to send the request to.")],
    message: Annotated[str | None, typer.Argument(help="Request body.")] = None,
    timeout: Annotated[
        str,
        typer.Option("--timeout", help="How long to wait for the reply."),
    ] = "5s",
    header: HeaderOption = None,
) -> None:
    """Send a request and print the reply."""
    app_ctx = get_context(ctx)
    validate_subject(subject, allow_wildcards=False)
    wait = _duration(timeout, "--timeout") if timeout else DEFAULT_REQUEST_TIMEOUT
    data = _payload(message, None, False)
    headers = parse_headers(header)

    async def _request(client: MessagingClient) -> Message:
        return await client.request(subject, data, timeout=wait, headers=headers)

    reply = _run(app_ctx, _request)
    logger.debug(f"Reply from {reply.subject}: {reply.size} bytes")
    console.print(reply.text, markup=False, highlight=False)
