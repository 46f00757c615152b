"""Client for the platform's publish/subscribe messaging service (NATS)."""

from __future__ import annotations

import asyncio
import inspect
import signal
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import nats
from nats.errors import Error as NatsError

from . import __version__
from .config import MessagingAuthMethod, MessagingConfig
from .errors import MessagingError
from .logging import get_logger
from .time_utils import utc_now
from .validation import validate_queue, validate_subject

logger = get_logger(__name__)

CONNECTION_NAME = "flint-cli"
DEFAULT_MAX_RECONNECTS = 5
DEFAULT_RECONNECT_WAIT = 2
DEFAULT_PING_INTERVAL = 30
DEFAULT_MAX_PINGS_OUT = 3
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_DRAIN_TIMEOUT = 30
DEFAULT_REQUEST_TIMEOUT = timedelta(seconds=5)

# Failures raised by nats-py and the network layer underneath it
_CLIENT_ERRORS = (NatsError, OSError, asyncio.TimeoutError)


@dataclass
class Message:
    """A message received from the messaging service."""

    subject: str
    data: bytes
    reply: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_nats(cls, msg: Any) -> Message:
        """Create a Message from a nats-py message object."""
        return cls(
            subject=msg.subject,
            data=msg.data or b"",
            reply=msg.reply or "",
            headers=dict(msg.headers or {}),
        )

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "subject": self.subject,
            "data": self.text,
            "size": self.size,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.reply:
            result["reply"] = self.reply
        if self.headers:
            result["headers"] = self.headers
        return result


MessageHandler = Callable[[Message], "Awaitable[None] | None"]
ConnectFunc = Callable[..., Awaitable[Any]]


def resolve_creds_path(creds_file: str, environment_dir: Path | None) -> Path:
    """Resolve a credentials file path.

    Paths starting with "./" are relative to the environment directory.
    """
    if creds_file.startswith("./") and environment_dir is not None:
        return environment_dir / creds_file[2:]
    return Path(creds_file).expanduser()


def store_creds_path(creds_file: str, environment_dir: Path) -> str:
    """Get the form of a credentials path to store in an environment.

    Files inside the environment directory are stored as "./<relative path>"
    so they move together with the environment.
    """
    path = Path(creds_file).expanduser()
    if not path.is_absolute():
        return creds_file
    try:
        relative = path.resolve().relative_to(environment_dir.resolve())
    except ValueError:
        return str(path)
    return f"./{relative.as_posix()}"


class MessagingClient:
    """Async wrapper around a nats-py connection.

    Use as an async context manager; the connection is drained on exit::

        async with MessagingClient(env.messaging, store.environment_dir(env.name)) as client:
            await client.publish("telemetry.test", b"hello")
    """

    def __init__(
        self,
        config: MessagingConfig,
        environment_dir: Path | None = None,
        connect: ConnectFunc | None = None,
    ) -> None:
        self.config = config
        self.environment_dir = environment_dir
        self._connect = connect or nats.connect
        self._nc: Any = None

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def connect_options(self) -> dict[str, Any]:
        """Build keyword arguments for nats.connect from the configuration.

        Raises:
            MessagingError: If servers or the secret for the auth method are missing.
        """
        cfg = self.config
        if not cfg.servers:
            raise MessagingError("connect", None, "no messaging servers configured")

        options: dict[str, Any] = {
            "servers": list(cfg.servers),
            "name": CONNECTION_NAME,
            "max_reconnect_attempts": DEFAULT_MAX_RECONNECTS,
            "reconnect_time_wait": DEFAULT_RECONNECT_WAIT,
            "ping_interval": DEFAULT_PING_INTERVAL,
            "max_outstanding_pings": DEFAULT_MAX_PINGS_OUT,
            "connect_timeout": DEFAULT_CONNECT_TIMEOUT,
            "drain_timeout": DEFAULT_DRAIN_TIMEOUT,
            "error_cb": self._on_error,
            "disconnected_cb": self._on_disconnected,
            "reconnected_cb": self._on_reconnected,
        }

        if cfg.auth_method is MessagingAuthMethod.USER_PASS:
            if not cfg.username or not cfg.password:
                raise MessagingError("connect", None, "username and password are required for user_pass auth")
            options["user"] = cfg.username
            options["password"] = cfg.password
        elif cfg.auth_method is MessagingAuthMethod.TOKEN:
            if not cfg.token:
                raise MessagingError("connect", None, "token is required for token auth")
            options["token"] = cfg.token
        else:
            if not cfg.creds_file:
                raise MessagingError("connect", None, "credentials file is required for creds auth")
            path = resolve_creds_path(cfg.creds_file, self.environment_dir)
            if not path.is_file():
                raise MessagingError("connect", None, f"credentials file not found: {path}")
            options["user_credentials"] = str(path)

        if cfg.tls_enabled:
            context = ssl.create_default_context()
            if not cfg.tls_verify:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            options["tls"] = context

        return options

    async def connect(self) -> None:
        """Open the connection.

        Raises:
            MessagingError: If the connection cannot be established.
        """
        options = self.connect_options()
        logger.debug(f"Connecting to {', '.join(options['servers'])} as {CONNECTION_NAME}/{__version__}")
        try:
            self._nc = await self._connect(**options)
        except _CLIENT_ERRORS as e:
            raise MessagingError("connect", None, e) from e
        logger.debug("Connected")

    async def close(self) -> None:
        """Drain and close the connection, if open."""
        nc, self._nc = self._nc, None
        if nc is None or getattr(nc, "is_closed", False):
            return
        try:
            await nc.drain()
        except _CLIENT_ERRORS as e:
            logger.debug(f"Drain failed, closing: {e}")
            await nc.close()

    async def __aenter__(self) -> MessagingClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _require(self) -> Any:
        if self._nc is None:
            raise MessagingError("operation", None, "not connected")
        return self._nc

    async def _on_error(self, e: Exception) -> None:
        logger.debug(f"Messaging error: {e}")

    async def _on_disconnected(self) -> None:
        logger.debug("Disconnected from messaging server")

    async def _on_reconnected(self) -> None:
        logger.debug("Reconnected to messaging server")

    # -------------------------------------------------------------------------
    # Publish / request
    # -------------------------------------------------------------------------

    async def publish(
        self,
        subject: str,
        payload: bytes,
        headers: dict[str, str] | None = None,
        reply: str = "",
    ) -> None:
        """Publish a message and flush it to the server.

        Raises:
            ValidationError: If the subject is invalid or contains wildcards.
            MessagingError: If publishing fails.
        """
        validate_subject(subject, allow_wildcards=False)
        if reply:
            validate_subject(reply, allow_wildcards=False)
        nc = self._require()
        try:
            await nc.publish(subject, payload, reply=reply, headers=headers or None)
            await nc.flush(timeout=DEFAULT_CONNECT_TIMEOUT)
        except _CLIENT_ERRORS as e:
            raise MessagingError("publish", subject, e) from e
        logger.debug(f"Published {len(payload)} bytes to {subject}")

    async def request(
        self,
        subject: str,
        payload: bytes,
        timeout: timedelta = DEFAULT_REQUEST_TIMEOUT,
        headers: dict[str, str] | None = None,
    ) -> Message:
        """Send a request and wait for a single reply.

        Raises:
            ValidationError: If the subject is invalid or contains wildcards.
            MessagingError: If no reply arrives in time or the request fails.
        """
        validate_subject(subject, allow_wildcards=False)
        nc = self._require()
        try:
            msg = await nc.request(subject, payload, timeout=timeout.total_seconds(), headers=headers or None)
        except _CLIENT_ERRORS as e:
            raise MessagingError("request", subject, e) from e
        return Message.from_nats(msg)

    # -------------------------------------------------------------------------
    # Subscribe
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        subject: str,
        handler: MessageHandler,
        queue: str = "",
        timeout: timedelta | None = None,
        max_messages: int = 0,
    ) -> int:
        """Deliver messages to handler until interrupted.

        The wait ends on SIGINT/SIGTERM, when timeout elapses, or once
        max_messages messages were handled. The subscription is removed on
        every exit path. Handler exceptions are logged and delivery goes on.

        Returns:
            Number of messages delivered to the handler.

        Raises:
            ValidationError: If the subject or queue is invalid.
            MessagingError: If the subscription cannot be created.
        """
        validate_subject(subject)
        if queue:
            validate_queue(queue)
        nc = self._require()

        stop = asyncio.Event()
        delivered = 0

        async def on_message(msg: Any) -> None:
            nonlocal delivered
            if stop.is_set():
                return
            delivered += 1
            try:
                result = handler(Message.from_nats(msg))
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Message handler failed on {msg.subject}: {e}")
            if max_messages and delivered >= max_messages:
                stop.set()

        try:
            sub = await nc.subscribe(subject, queue=queue, cb=on_message)
        except _CLIENT_ERRORS as e:
            raise MessagingError("subscribe", subject, e) from e
        logger.debug(f"Subscribed to {subject}" + (f" (queue {queue})" if queue else ""))

        loop = asyncio.get_running_loop()
        restore = _install_stop_signals(loop, stop)
        try:
            if timeout is not None:
                try:
                    await asyncio.wait_for(stop.wait(), timeout.total_seconds())
                except asyncio.TimeoutError:
                    logger.debug(f"Subscription timeout of {timeout} reached")
            else:
                await stop.wait()
        finally:
            restore()
            try:
                await sub.unsubscribe()
            except _CLIENT_ERRORS as e:
                logger.debug(f"Unsubscribe failed: {e}")

        return delivered


def _install_stop_signals(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> Callable[[], None]:
    """Set stop on SIGINT/SIGTERM; return a function that undoes the handlers."""
    signals = [signal.SIGINT, signal.SIGTERM]
    try:
        for sig in signals:
            loop.add_signal_handler(sig, stop.set)
    except (NotImplementedError, RuntimeError):
        # No loop signal support (e.g. Windows or a non-main thread)
        previous: dict[int, Any] = {}
        for sig in signals:
            try:
                previous[sig] = signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))
            except ValueError:
                pass

        def restore_signals() -> None:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        return restore_signals

    def remove_handlers() -> None:
        for sig in signals:
            loop.remove_signal_handler(sig)

    return remove_handlers
